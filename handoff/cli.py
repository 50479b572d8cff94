from __future__ import annotations

"""Command-line interface
------------------------
Inspect configuration and catalogs, preview the step plan for a ticket, run
a forwarding, or conclude and forward a ticket from a catalog entry against a
live browser. Thin wrapper around the core engine.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import click

from handoff.core.catalog import CatalogEntry, find_entry, load_catalog
from handoff.core.engine import Engine, ExecutionOutcome
from handoff.core.errors import PreconditionError
from handoff.core.plan import WorkflowParameters, build_plan, make_parameters
from handoff.core.trigger import Trigger, parameters_from_record
from handoff.surface import PlaywrightSurface, open_page
from handoff.utils.config import Settings, get_settings
from handoff.utils.logger import get_logger, log_context, set_log_level


# -------- helpers --------


def _echo_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2, ensure_ascii=False))


def _resolve_params(
    service: Optional[str],
    problem: Optional[str],
    wait: bool,
    catalog: Optional[str],
    title: Optional[str],
) -> WorkflowParameters:
    """Parameters come either from --service/--problem or from a catalog entry."""
    if catalog:
        if not title:
            raise click.UsageError("--title is required with --catalog")
        entry = find_entry(load_catalog(catalog), title)
        if entry is None:
            raise PreconditionError(f"No catalog entry titled {title!r} in {catalog}")
        return parameters_from_record(entry, force_wait=wait)
    if service is None and problem is None:
        raise click.UsageError("Provide --service/--problem or --catalog/--title.")
    return make_parameters(service, problem, wait)


def _param_options(fn):
    fn = click.option("--title", type=str, default=None, help="Catalog entry title (with --catalog)")(fn)
    fn = click.option("--catalog", type=click.Path(dir_okay=False, exists=True), default=None,
                      help="JSON/YAML message catalog to take parameters from")(fn)
    fn = click.option("--wait/--no-wait", default=False, show_default=True,
                      help="Toggle 'wait for return' (with --catalog: force it on)")(fn)
    fn = click.option("--problem", type=str, default=None, help="Problem label (substring match)")(fn)
    fn = click.option("--service", type=str, default=None, help="Service label (exact match)")(fn)
    return fn


async def _drive(params: WorkflowParameters, settings: Settings, url: Optional[str], cdp_url: Optional[str]) -> ExecutionOutcome:
    async with open_page(settings, url=url, cdp_url=cdp_url) as page:
        surface = PlaywrightSurface(page, action_timeout_ms=settings.ACTION_TIMEOUT_MS)
        trigger = Trigger(Engine(surface, settings=settings))
        return await trigger.run(params)


async def _drive_finalize(
    entry: CatalogEntry,
    settings: Settings,
    url: Optional[str],
    cdp_url: Optional[str],
    contact: Optional[str],
    holder: bool,
    note: Optional[str],
    wait: bool,
) -> List[ExecutionOutcome]:
    async with open_page(settings, url=url, cdp_url=cdp_url) as page:
        surface = PlaywrightSurface(page, action_timeout_ms=settings.ACTION_TIMEOUT_MS)
        trigger = Trigger(Engine(surface, settings=settings))
        return await trigger.finalize(entry, contact=contact, holder=holder, note=note, force_wait=wait)


# -------- CLI root --------


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL from settings",
)
@click.version_option(package_name="handoff")
def cli(log_level: Optional[str]):
    _ = get_settings()
    if log_level:
        set_log_level(log_level.upper())


# -------- commands --------


@cli.command("config")
def cmd_config():
    """Print effective configuration (after .env & env vars)."""
    _echo_json(get_settings().model_dump(mode="json"))


@cli.command("catalog")
@click.argument("path", type=click.Path(dir_okay=False, exists=True))
@click.option("--external-only", is_flag=True, default=False, help="Only list entries forwarded to external support")
def cmd_catalog(path: str, external_only: bool):
    """List catalog entries in panel order."""
    try:
        entries = load_catalog(path)
    except ValueError as e:
        click.echo(f"ERR {path}  ->  {e}")
        sys.exit(1)

    if external_only:
        entries = [e for e in entries if e.externo]
    if not entries:
        click.echo("No entries found.")
        return

    click.echo(f"Found {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}:\n")
    for e in entries:
        flags = []
        if e.externo:
            flags.append(f"external: {e.servico or '-'} / {e.etiqueta_externo or '-'}")
        if e.aguardar:
            flags.append("wait")
        suffix = f"  ({', '.join(flags)})" if flags else ""
        click.echo(f" - [{e.id or '-'}] {e.titulo}{suffix}")


@cli.command("plan")
@_param_options
def cmd_plan(service, problem, wait, catalog, title):
    """Print the step plan a run would execute."""
    try:
        params = _resolve_params(service, problem, wait, catalog, title)
    except (PreconditionError, ValueError) as e:
        click.echo(f"ERR {e.__class__.__name__}: {e}")
        sys.exit(1)
    plan = build_plan(params, get_settings())
    _echo_json([{"index": i, **st.model_dump(mode="json", exclude_none=True)} for i, st in enumerate(plan.steps)])


def _run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _report(outcome: ExecutionOutcome, label: str = "") -> None:
    prefix = f"{label}: " if label else ""
    if outcome.ok:
        click.echo(f"{prefix}OK  {outcome.steps_completed}/{outcome.steps_total} steps in {outcome.elapsed_ms} ms")
    else:
        step_desc = f" [step {outcome.failed_step} {outcome.step_name or ''}]" if outcome.failed_step is not None else ""
        click.echo(f"{prefix}ERR{step_desc} -> {outcome.error_type}: {outcome.reason}")
    for a in outcome.anomalies:
        click.echo(f"WARN step {a.step_index}: {a.detail}")


def _write_json(json_out: Optional[str], payload) -> None:
    if not json_out:
        return
    outp = Path(json_out).resolve()
    outp.parent.mkdir(parents=True, exist_ok=True)
    outp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    click.echo(f"Wrote outcome: {outp}")


@cli.command("run")
@_param_options
@click.option("--url", type=str, default=None, help="Page to open before running (overrides START_URL)")
@click.option("--cdp-url", type=str, default=None, help="Attach to a running browser (overrides CDP_URL)")
@click.option("--json-out", type=click.Path(dir_okay=False), default=None, help="Write the outcome as JSON to this file")
def cmd_run(service, problem, wait, catalog, title, url, cdp_url, json_out):
    """
    Forward one ticket to external support.

    Examples:
      handoff run --service "Instalação" --problem "Sem sinal" --cdp-url http://localhost:9222
      handoff run --catalog mensagens.json --title "Sem sinal" --wait
    """
    settings = get_settings()
    log = get_logger(__name__)

    try:
        params = _resolve_params(service, problem, wait, catalog, title)
    except (PreconditionError, ValueError) as e:
        click.echo(f"ERR {e.__class__.__name__}: {e}")
        sys.exit(1)

    with log_context(run_id=_run_id()):
        try:
            outcome = asyncio.run(_drive(params, settings, url, cdp_url))
        except Exception as e:
            log.exception("Could not drive the browser:")
            outcome = ExecutionOutcome.failed(e)

    _report(outcome)
    _write_json(json_out, outcome.to_dict())
    sys.exit(0 if outcome.ok else 1)


@cli.command("finalize")
@click.option("--catalog", type=click.Path(dir_okay=False, exists=True), required=True,
              help="JSON/YAML message catalog")
@click.option("--title", type=str, required=True, help="Catalog entry title")
@click.option("--contact", type=str, default=None, help="Name of the person who got in touch")
@click.option("--holder", is_flag=True, default=False, help="The account holder got in touch (overrides --contact)")
@click.option("--note", type=str, default=None, help="Observation appended to the protocol message")
@click.option("--wait/--no-wait", default=False, show_default=True, help="Force 'wait for return' when forwarding")
@click.option("--url", type=str, default=None, help="Page to open before running (overrides START_URL)")
@click.option("--cdp-url", type=str, default=None, help="Attach to a running browser (overrides CDP_URL)")
@click.option("--json-out", type=click.Path(dir_okay=False), default=None, help="Write the outcomes as JSON to this file")
def cmd_finalize(catalog, title, contact, holder, note, wait, url, cdp_url, json_out):
    """
    Post the protocol message, tag and conclude a ticket, then forward it to
    external support when the catalog entry says so.

    Example:
      handoff finalize --catalog mensagens.json --title "Sem sinal" --contact "Maria" --cdp-url http://localhost:9222
    """
    settings = get_settings()
    log = get_logger(__name__)

    try:
        entry = find_entry(load_catalog(catalog), title)
    except ValueError as e:
        click.echo(f"ERR {e.__class__.__name__}: {e}")
        sys.exit(1)
    if entry is None:
        click.echo(f"ERR PreconditionError: No catalog entry titled {title!r} in {catalog}")
        sys.exit(1)

    with log_context(run_id=_run_id()):
        try:
            outcomes = asyncio.run(_drive_finalize(entry, settings, url, cdp_url, contact, holder, note, wait))
        except Exception as e:
            log.exception("Could not drive the browser:")
            outcomes = [ExecutionOutcome.failed(e)]

    for label, outcome in zip(("conclude", "forward"), outcomes):
        _report(outcome, label)
    _write_json(json_out, [o.to_dict() for o in outcomes])
    sys.exit(0 if all(o.ok for o in outcomes) else 1)


def main() -> None:
    cli(prog_name="handoff")


if __name__ == "__main__":
    main()

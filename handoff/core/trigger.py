from __future__ import annotations

import asyncio
from typing import Any, List, Mapping, Optional, Union

from handoff.core.catalog import CatalogEntry
from handoff.core.engine import Engine, ExecutionOutcome
from handoff.core.errors import PreconditionError, RunInProgressError
from handoff.core.plan import ConclusionParameters, WorkflowParameters, conclusion_from_mapping, make_parameters
from handoff.utils.logger import get_logger

log = get_logger(__name__)


def _as_entry(record: Union[CatalogEntry, Mapping[str, Any]]) -> CatalogEntry:
    if isinstance(record, CatalogEntry):
        return record
    try:
        return CatalogEntry.model_validate(dict(record))
    except ValueError as e:
        raise PreconditionError(f"Invalid catalog record: {e}") from e


def parameters_from_record(record: Union[CatalogEntry, Mapping[str, Any]], *, force_wait: bool = False) -> WorkflowParameters:
    """
    Map a catalog record onto run parameters.

    `force_wait` lets the operator switch waiting on for a record that does
    not ask for it; a record that asks for it cannot be switched off.
    """
    if isinstance(record, CatalogEntry):
        data = record.model_dump()
    else:
        data = dict(record)
    if "externo" in data and not data.get("externo"):
        raise PreconditionError(f"Record {data.get('titulo', '?')!r} is not forwarded to external support")
    return make_parameters(
        data.get("servico"),
        data.get("etiqueta_externo"),
        bool(data.get("aguardar")) or force_wait,
    )


def conclusion_from_record(
    record: Union[CatalogEntry, Mapping[str, Any]],
    *,
    contact: Optional[str] = None,
    holder: bool = False,
    note: Optional[str] = None,
    holder_label: str = "Titular",
) -> ConclusionParameters:
    """Protocol message and tag for a catalog record."""
    entry = _as_entry(record)
    message = entry.compose_message(contact=contact, holder=holder, note=note, holder_label=holder_label)
    return conclusion_from_mapping({"message": message, "tag": entry.etiqueta})


class Trigger:
    """
    Owns the one-run-at-a-time rule for a surface.

    The surface has no isolation between runs, so a second request while a
    run is in flight is refused with RunInProgressError instead of queued.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._lock = asyncio.Lock()
        self.last_outcome: Optional[ExecutionOutcome] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _claim(self) -> None:
        if self._lock.locked():
            raise RunInProgressError("a run is already in progress on this surface")

    async def run(self, params: Union[WorkflowParameters, Mapping[str, Any]]) -> ExecutionOutcome:
        self._claim()
        async with self._lock:
            outcome = await self.engine.run(params)
        self.last_outcome = outcome
        if not outcome.ok:
            log.warning(f"Forwarding failed at step {outcome.failed_step}: {outcome.reason}")
        return outcome

    async def run_record(self, record: Union[CatalogEntry, Mapping[str, Any]], *, force_wait: bool = False) -> ExecutionOutcome:
        try:
            params = parameters_from_record(record, force_wait=force_wait)
        except PreconditionError as e:
            log.error(f"Not starting run: {e}")
            return ExecutionOutcome.failed(e)
        return await self.run(params)

    async def finalize(
        self,
        record: Union[CatalogEntry, Mapping[str, Any]],
        *,
        contact: Optional[str] = None,
        holder: bool = False,
        note: Optional[str] = None,
        force_wait: bool = False,
    ) -> List[ExecutionOutcome]:
        """
        Close a ticket from a catalog record: post the message, tag and
        conclude, then forward to external support when the record says so.

        Both runs happen under one claim of the surface. Forwarding only
        starts after a successful conclusion. Returns one outcome per run
        that was attempted.
        """
        try:
            entry = _as_entry(record)
            conclusion = conclusion_from_record(
                entry,
                contact=contact,
                holder=holder,
                note=note,
                holder_label=self.engine.settings.HOLDER_LABEL,
            )
            forward = parameters_from_record(entry, force_wait=force_wait) if entry.externo else None
        except PreconditionError as e:
            log.error(f"Not finalizing: {e}")
            return [ExecutionOutcome.failed(e)]

        self._claim()
        async with self._lock:
            outcomes = [await self.engine.conclude(conclusion)]
            if forward is not None:
                if outcomes[0].ok:
                    outcomes.append(await self.engine.run(forward))
                else:
                    log.warning(f"Conclusion failed at step {outcomes[0].failed_step}; not forwarding")
        self.last_outcome = outcomes[-1]
        return outcomes

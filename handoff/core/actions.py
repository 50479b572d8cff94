# handoff/core/actions.py
from __future__ import annotations

"""Step handlers
----------------
One coroutine per StepKind. Each receives the step and a StepContext and
either returns (step done) or raises LocatorTimeout (step failed). Tolerated
oddities are recorded on the context as NonFatalAnomaly values.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from handoff.core.errors import LocatorTimeout, NonFatalAnomaly
from handoff.core.plan import Step, StepKind
from handoff.selectors.locator import Criterion, locate
from handoff.selectors.strategy import LocatorStrategy
from handoff.surface import Surface
from handoff.utils.timing import async_sleep_ms, measure

# Public API
__all__ = ["StepContext", "execute_step"]


@dataclass
class StepContext:
    surface: Surface
    strategy: LocatorStrategy
    index: int
    log: logging.Logger
    anomalies: List[NonFatalAnomaly] = field(default_factory=list)

    def anomaly(self, kind: str, detail: str, criterion: Optional[Criterion] = None) -> None:
        self.log.warning(detail)
        self.anomalies.append(NonFatalAnomaly(step_index=self.index, kind=kind, detail=detail, criterion=criterion))


async def _click_and_settle(ctx: StepContext, step: Step) -> None:
    await ctx.strategy.click(step.criterion, step.max_attempts, step.interval_ms)
    if step.post_click_delay_ms:
        await async_sleep_ms(step.post_click_delay_ms)


# ------------- Step executors -------------

@measure("generic step")
async def _do_generic(step: Step, ctx: StepContext) -> None:
    await _click_and_settle(ctx, step)


@measure("text entry step")
async def _do_text_entry(step: Step, ctx: StepContext) -> None:
    await ctx.strategy.click(step.criterion, step.max_attempts, step.interval_ms)

    if step.companion is None:
        return
    field_el = await locate(ctx.surface, step.companion)
    if field_el is None:
        ctx.anomaly(
            "companion_input_missing",
            f"Search field {step.companion.selector!r} not found; continuing without typing",
            step.companion,
        )
        return
    await ctx.surface.fill(field_el, step.fill_text or "")
    ctx.log.info(f"Typed into search field: {step.fill_text}")
    if step.post_click_delay_ms:
        await async_sleep_ms(step.post_click_delay_ms)


@measure("single scan step")
async def _do_single_scan(step: Step, ctx: StepContext) -> None:
    hit = await locate(ctx.surface, step.criterion)
    if hit is not None:
        ctx.log.info(f"Match found: {hit.text.strip()!r} contains {step.match_text!r}")
        await ctx.surface.click(hit)
        if step.post_click_delay_ms:
            await async_sleep_ms(step.post_click_delay_ms)
        return

    ctx.log.warning(f"No rendered option matches {step.match_text!r}; polling")
    await ctx.strategy.click(step.criterion, step.max_attempts, step.interval_ms)


@measure("open options step")
async def _do_open_options(step: Step, ctx: StepContext) -> None:
    options = step.options
    for attempt in range(1, step.max_attempts + 1):
        ctx.log.info(f"Attempt {attempt}/{step.max_attempts} to open {step.match_text!r}")
        control = await locate(ctx.surface, step.criterion)
        if control is not None:
            await ctx.surface.click(control)
            await async_sleep_ms(step.open_wait_ms)
            if options is None:
                return
            rendered = await ctx.surface.snapshot(options.selector)
            if rendered:
                ctx.log.info(f"Option list loaded with {len(rendered)} item(s)")
                return
        if attempt < step.max_attempts:
            await async_sleep_ms(step.interval_ms)

    ctx.anomaly(
        "options_not_populated",
        f"{step.match_text!r} did not open a populated list after {step.max_attempts} attempt(s)",
        step.criterion,
    )


@measure("exact selection step")
async def _do_select_exact(step: Step, ctx: StepContext) -> None:
    for attempt in range(1, step.max_attempts + 1):
        ctx.log.info(f"Attempt {attempt}/{step.max_attempts} to find {step.match_text!r}")

        # The list may have collapsed since the last look.
        if attempt > 1 and step.reopen is not None:
            control = await locate(ctx.surface, step.reopen)
            if control is not None:
                ctx.log.debug(f"Re-opening {step.reopen.text!r}")
                await ctx.surface.click(control)
                await async_sleep_ms(step.open_wait_ms)

        await async_sleep_ms(step.interval_ms)
        hit = await locate(ctx.surface, step.criterion)
        if hit is not None:
            ctx.log.info(f"Exact match found: {hit.text.strip()!r}")
            await ctx.surface.click(hit)
            if step.post_click_delay_ms:
                await async_sleep_ms(step.post_click_delay_ms)
            return

        if attempt < step.max_attempts:
            await async_sleep_ms(step.interval_ms)

    ctx.log.warning(f"No exact match for {step.match_text!r} after {step.max_attempts} attempt(s); polling")
    try:
        await ctx.strategy.click(step.criterion)
    except LocatorTimeout as e:
        raise LocatorTimeout(step.criterion, step.max_attempts + e.attempts) from e


@measure("fill step")
async def _do_fill(step: Step, ctx: StepContext) -> None:
    el = await ctx.strategy.find(step.criterion, step.max_attempts, step.interval_ms)
    await ctx.surface.click(el)
    await ctx.surface.fill(el, step.fill_text or "")
    ctx.log.info(f"Filled {step.criterion.selector!r} ({len(step.fill_text or '')} chars)")
    if step.post_click_delay_ms:
        await async_sleep_ms(step.post_click_delay_ms)


# ------------- Dispatcher -------------

_HANDLERS = {
    StepKind.generic: _do_generic,
    StepKind.text_entry: _do_text_entry,
    StepKind.single_scan: _do_single_scan,
    StepKind.open_options: _do_open_options,
    StepKind.select_exact: _do_select_exact,
    StepKind.fill: _do_fill,
}


async def execute_step(step: Step, ctx: StepContext) -> None:
    """
    Run one step against the surface, honouring its settle pre-delay.
    Raises LocatorTimeout when the step's target never showed up.
    """
    handler = _HANDLERS.get(step.kind)
    if handler is None:
        raise NotImplementedError(f"Unsupported step kind: {step.kind}")
    if step.pre_delay_ms:
        ctx.log.debug(f"Settling {step.pre_delay_ms} ms before {step.name!r}")
        await async_sleep_ms(step.pre_delay_ms)
    if step.skip_if is not None and await locate(ctx.surface, step.skip_if) is not None:
        ctx.log.info(f"Already done ({step.skip_if.describe()} is rendered); skipping {step.name!r}")
        return
    await handler(step, ctx)

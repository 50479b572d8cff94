from __future__ import annotations

"""Run engine
-------------
Validates run parameters, builds a fresh plan (forwarding or conclusion) and
walks it step by step against the surface, stopping at the first required
step whose target never appears.
Always returns an ExecutionOutcome; nothing is rolled back on failure.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from handoff.core.actions import StepContext, execute_step
from handoff.core.errors import (
    DeadlineExceeded,
    LocatorTimeout,
    NonFatalAnomaly,
    PreconditionError,
    StepTimeoutError,
)
from handoff.core.plan import (
    ConclusionParameters,
    Plan,
    WorkflowParameters,
    build_conclusion_plan,
    build_plan,
    conclusion_from_mapping,
    parameters_from_mapping,
)
from handoff.selectors.locator import Criterion
from handoff.selectors.strategy import LocatorStrategy
from handoff.surface import Surface
from handoff.utils.config import Settings, get_settings
from handoff.utils.logger import attach_file_logger, detach_file_logger, get_logger, log_context
from handoff.utils.timing import Stopwatch, async_sleep_ms


class StepState(str, Enum):
    pending = "pending"
    searching = "searching"
    advancing = "advancing"
    timed_out = "timed_out"


@dataclass
class ExecutionOutcome:
    """Terminal result of one run: Completed, or Failed at a step index."""
    ok: bool
    steps_total: int = 0
    steps_completed: int = 0
    failed_step: Optional[int] = None
    step_name: Optional[str] = None
    reason: Optional[str] = None
    error_type: Optional[str] = None
    criterion: Optional[Criterion] = None
    attempts: int = 0
    anomalies: List[NonFatalAnomaly] = field(default_factory=list)
    executed: List[str] = field(default_factory=list)
    elapsed_ms: int = 0

    @classmethod
    def completed(cls, plan: Plan, **kw: Any) -> "ExecutionOutcome":
        return cls(ok=True, steps_total=len(plan), steps_completed=len(plan), **kw)

    @classmethod
    def failed(cls, error: BaseException, **kw: Any) -> "ExecutionOutcome":
        return cls(ok=False, reason=str(error), error_type=error.__class__.__name__, **kw)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "ok": self.ok,
            "steps_total": self.steps_total,
            "steps_completed": self.steps_completed,
            "executed": list(self.executed),
            "elapsed_ms": self.elapsed_ms,
            "anomalies": [a.to_dict() for a in self.anomalies],
        }
        if not self.ok:
            d["error"] = self.reason
            d["error_type"] = self.error_type
            d["failed_step"] = {
                "index": self.failed_step,
                "name": self.step_name,
                "criterion": self.criterion.model_dump(mode="json") if self.criterion else None,
                "attempts": self.attempts,
            }
        return d


def _ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")


class Engine:
    """Runs step plans against one surface. Keeps no state between runs."""

    def __init__(self, surface: Surface, settings: Optional[Settings] = None) -> None:
        self.surface = surface
        self.settings = settings or get_settings()
        self.log = get_logger(__name__)

    def plan_for(self, params: WorkflowParameters) -> Plan:
        return build_plan(params, self.settings)

    async def run(self, params: Union[WorkflowParameters, Mapping[str, Any]]) -> ExecutionOutcome:
        """Execute one forwarding run. Never raises for surface-side failures."""
        try:
            if not isinstance(params, WorkflowParameters):
                params = parameters_from_mapping(params)
        except PreconditionError as e:
            self.log.error(f"Not starting run: {e}")
            return ExecutionOutcome.failed(e)

        with log_context(flow="forward", service=params.service_label, problem=params.problem_label):
            return await self._with_run_log(
                "forward",
                self.plan_for(params),
                f"Starting forwarding: service={params.service_label!r} problem={params.problem_label!r} "
                f"wait_for_return={params.wait_for_return}",
            )

    async def conclude(self, params: Union[ConclusionParameters, Mapping[str, Any]]) -> ExecutionOutcome:
        """Post the protocol message, tag the ticket and conclude it."""
        try:
            if not isinstance(params, ConclusionParameters):
                params = conclusion_from_mapping(params)
        except PreconditionError as e:
            self.log.error(f"Not starting conclusion: {e}")
            return ExecutionOutcome.failed(e)

        with log_context(flow="conclude", tag=params.tag):
            return await self._with_run_log(
                "conclude",
                build_conclusion_plan(params, self.settings),
                f"Starting conclusion: tag={params.tag!r} message={len(params.message)} chars",
            )

    async def _with_run_log(self, flow: str, plan: Plan, start_msg: str) -> ExecutionOutcome:
        s = self.settings
        handler = attach_file_logger(s.RUN_LOG_DIR / f"{flow}-{_ts()}.log") if s.RUN_LOG_DIR else None
        try:
            self.log.info(f"{start_msg} (steps={len(plan)})")
            return await self.execute_plan(plan)
        finally:
            if handler is not None:
                detach_file_logger(handler)

    async def execute_plan(self, plan: Plan) -> ExecutionOutcome:
        """
        Walk `plan` in order. The first required step whose target never shows
        up ends the run as Failed; optional steps that fail are recorded as
        anomalies and skipped.
        """
        s = self.settings
        log = self.log
        strategy = LocatorStrategy(self.surface, max_attempts=s.MAX_ATTEMPTS, interval_ms=s.ATTEMPT_INTERVAL_MS)
        anomalies: List[NonFatalAnomaly] = []
        executed: List[str] = []
        sw = Stopwatch().start()

        def _failed(error: BaseException, idx: int, **kw: Any) -> ExecutionOutcome:
            return ExecutionOutcome.failed(
                error,
                steps_total=len(plan),
                steps_completed=len(executed),
                failed_step=idx,
                step_name=plan.steps[idx].name,
                anomalies=anomalies,
                executed=executed,
                elapsed_ms=sw.elapsed_ms(),
                **kw,
            )

        if s.WARMUP_DELAY_MS:
            await async_sleep_ms(s.WARMUP_DELAY_MS)

        for idx, step in enumerate(plan.steps):
            if s.RUN_DEADLINE_MS and sw.elapsed_ms() >= s.RUN_DEADLINE_MS:
                err = DeadlineExceeded(idx, s.RUN_DEADLINE_MS)
                log.error(str(err))
                return _failed(err, idx, criterion=step.criterion)

            with log_context(step=idx, kind=step.kind.value):
                log.info(f"Step {idx + 1}/{len(plan)}: {step.name}")
                log.debug(f"{StepState.pending.value} -> {StepState.searching.value}: {step.criterion.describe()}")
                ctx = StepContext(surface=self.surface, strategy=strategy, index=idx, log=log, anomalies=anomalies)
                try:
                    await execute_step(step, ctx)
                except LocatorTimeout as lt:
                    if step.optional:
                        ctx.anomaly("optional_step_skipped", f"{step.name!r}: {lt}", lt.criterion)
                        continue
                    err = StepTimeoutError(idx, lt.criterion, lt.attempts)
                    log.error(f"{StepState.timed_out.value}: {err}")
                    return _failed(err, idx, criterion=lt.criterion, attempts=lt.attempts)
                except Exception as e:
                    if step.optional:
                        ctx.anomaly("optional_step_skipped", f"{step.name!r}: {e.__class__.__name__}: {e}", step.criterion)
                        continue
                    log.exception(f"Step {idx + 1} raised unexpectedly:")
                    return _failed(e, idx, criterion=step.criterion)
                log.debug(StepState.advancing.value)
                executed.append(step.name)

        log.info(f"Plan completed in {sw.elapsed_ms()} ms")
        return ExecutionOutcome.completed(plan, anomalies=anomalies, executed=executed, elapsed_ms=sw.elapsed_ms())


async def run_forwarding(surface: Surface, params: Union[WorkflowParameters, Mapping[str, Any]], settings: Optional[Settings] = None) -> ExecutionOutcome:
    eng = Engine(surface, settings=settings or get_settings())
    return await eng.run(params)

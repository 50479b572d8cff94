from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from handoff.selectors.locator import Criterion


class HandoffError(RuntimeError):
    pass


class PreconditionError(HandoffError):
    """Required run input missing or empty. Raised before any step executes."""


class LocatorTimeout(HandoffError):
    """A criterion never matched within its polling budget."""

    def __init__(self, criterion: "Criterion", attempts: int) -> None:
        self.criterion = criterion
        self.attempts = attempts
        super().__init__(f"element not found after {attempts} attempt(s): {criterion.describe()}")


class StepTimeoutError(HandoffError):
    def __init__(self, step_index: int, criterion: "Criterion", attempts: int = 0) -> None:
        self.step_index = step_index
        self.criterion = criterion
        self.attempts = attempts
        super().__init__(f"step {step_index} timed out: {criterion.describe()}")


class DeadlineExceeded(HandoffError):
    def __init__(self, step_index: int, deadline_ms: int) -> None:
        self.step_index = step_index
        self.deadline_ms = deadline_ms
        super().__init__(f"run deadline of {deadline_ms} ms reached before step {step_index}")


class RunInProgressError(HandoffError):
    """A second run was requested while one is still driving the surface."""


@dataclass(frozen=True)
class NonFatalAnomaly:
    """Something unexpected that the run tolerated; recorded, never raised."""
    step_index: int
    kind: str
    detail: str
    criterion: Optional["Criterion"] = None

    def to_dict(self) -> dict:
        return {
            "step_index": self.step_index,
            "kind": self.kind,
            "detail": self.detail,
            "criterion": self.criterion.describe() if self.criterion else None,
        }

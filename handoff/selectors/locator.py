# handoff/selectors/locator.py
from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from handoff.surface import Surface, SurfaceElement
from handoff.utils.logger import get_logger

log = get_logger(__name__)


class MatchMode(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"


class Criterion(BaseModel):
    """How to find one element: a CSS selector plus an optional text predicate."""

    model_config = ConfigDict(frozen=True)

    selector: str = Field(..., description="CSS selector evaluated against the surface")
    text: Optional[str] = Field(default=None, description="Text the element must carry (None = any)")
    mode: MatchMode = Field(default=MatchMode.EXACT)

    @field_validator("selector")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("criterion.selector cannot be empty")
        return v

    def describe(self) -> str:
        if self.text is None:
            return self.selector
        return f"{self.selector} [{self.mode.value}] {self.text!r}"


def normalize(text: Optional[str]) -> str:
    """Trim and case-fold element text for comparison."""
    return (text or "").strip().casefold()


def matches(element: SurfaceElement, criterion: Criterion) -> bool:
    if criterion.text is None:
        return True
    have = normalize(element.text)
    want = normalize(criterion.text)
    if criterion.mode == MatchMode.SUBSTRING:
        return want in have
    return have == want


def pick(elements: Iterable[SurfaceElement], criterion: Criterion) -> Optional[SurfaceElement]:
    """Return the first element satisfying the criterion, or None."""
    for el in elements:
        if matches(el, criterion):
            return el
    return None


async def locate(surface: Surface, criterion: Criterion) -> Optional[SurfaceElement]:
    """
    Resolve a criterion against the surface as it is right now.

    Exactly one snapshot is read; absence is a normal result, not an error.
    """
    elements = await surface.snapshot(criterion.selector)
    found = pick(elements, criterion)
    log.debug(f"locate {criterion.describe()}: {len(elements)} candidate(s), {'hit' if found else 'miss'}")
    return found

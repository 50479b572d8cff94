# handoff/selectors/strategy.py
from __future__ import annotations

from typing import Optional

from handoff.core.errors import LocatorTimeout
from handoff.selectors.locator import Criterion, locate
from handoff.surface import Surface, SurfaceElement
from handoff.utils.logger import get_logger
from handoff.utils.timing import async_sleep_ms

log = get_logger(__name__)


class LocatorStrategy:
    """
    Bounded polling around a single-snapshot lookup:
      - One lookup per attempt, strictly sequential
      - Return on the first hit with no trailing delay
      - Sleep a fixed interval between misses
      - Raise LocatorTimeout once the attempt ceiling is reached
    """

    def __init__(self, surface: Surface, *, max_attempts: int = 25, interval_ms: int = 200) -> None:
        self.surface = surface
        self.max_attempts = max(1, max_attempts)
        self.interval_ms = max(0, interval_ms)
        self.polls = 0  # total lookups issued through this strategy

    async def find(
        self,
        criterion: Criterion,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> SurfaceElement:
        ceiling = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        interval = max(0, interval_ms if interval_ms is not None else self.interval_ms)

        attempt = 0
        while True:
            attempt += 1
            self.polls += 1
            log.debug(f"Attempt {attempt}/{ceiling}: looking for {criterion.describe()}")
            found = await locate(self.surface, criterion)
            if found is not None:
                return found
            if attempt >= ceiling:
                raise LocatorTimeout(criterion, attempt)
            await async_sleep_ms(interval)

    async def click(
        self,
        criterion: Criterion,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> SurfaceElement:
        el = await self.find(criterion, max_attempts, interval_ms)
        await self.surface.click(el)
        log.info(f"Clicked: {criterion.text or criterion.selector}")
        return el

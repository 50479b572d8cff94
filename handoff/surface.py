from __future__ import annotations

"""External surface boundary
---------------------------
The engine only ever does three things to the page it drives: read a snapshot
of the elements matching a selector, click one of them, or set the text of
one and notify the page. `Surface` is that contract; `PlaywrightSurface`
implements it on top of a live Playwright page.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Protocol, runtime_checkable

from playwright.async_api import ElementHandle, Page, async_playwright

from handoff.utils.config import Settings, get_settings
from handoff.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class SurfaceElement:
    """
    A matched element as seen in one snapshot: its selector, position and text.

    `handle` pins the exact node that was read, so acting on the element
    cannot land on a sibling rendered into the same position later.
    """
    selector: str
    index: int
    text: str
    handle: Optional[Any] = field(default=None, compare=False, repr=False)


@runtime_checkable
class Surface(Protocol):
    async def snapshot(self, selector: str) -> List[SurfaceElement]:
        ...

    async def click(self, element: SurfaceElement) -> None:
        ...

    async def fill(self, element: SurfaceElement, text: str) -> None:
        ...


class PlaywrightSurface:
    """Surface backed by a Playwright page."""

    def __init__(self, page: Page, *, action_timeout_ms: int = 5000) -> None:
        self.page = page
        self.action_timeout_ms = action_timeout_ms

    async def snapshot(self, selector: str) -> List[SurfaceElement]:
        handles: List[ElementHandle] = await self.page.query_selector_all(selector)
        out = []
        for i, h in enumerate(handles):
            out.append(SurfaceElement(selector=selector, index=i, text=(await h.text_content()) or "", handle=h))
        return out

    def _handle(self, element: SurfaceElement) -> ElementHandle:
        if element.handle is None:
            raise ValueError(f"element {element.selector}[{element.index}] was not read from this page")
        return element.handle

    async def click(self, element: SurfaceElement) -> None:
        await self._handle(element).click(timeout=self.action_timeout_ms)

    async def fill(self, element: SurfaceElement, text: str) -> None:
        # fill() replaces the content and dispatches the input event
        await self._handle(element).fill(text, timeout=self.action_timeout_ms)


@asynccontextmanager
async def open_page(
    settings: Optional[Settings] = None,
    *,
    url: Optional[str] = None,
    cdp_url: Optional[str] = None,
) -> AsyncIterator[Page]:
    """
    Yield a page to drive.

    With a CDP endpoint we attach to the operator's running browser and reuse
    its first open page (the session is already logged in). Otherwise a
    browser is launched from settings and pointed at `url`.
    """
    s = settings or get_settings()
    cdp = cdp_url or s.CDP_URL
    target = url or s.START_URL

    async with async_playwright() as p:
        if cdp:
            log.info(f"Attaching to browser over CDP: {cdp}")
            browser = await p.chromium.connect_over_cdp(cdp)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
            if target:
                await page.goto(target, wait_until="domcontentloaded", timeout=s.PAGE_LOAD_TIMEOUT)
            try:
                yield page
            finally:
                # Leave the operator's browser running; only drop our connection.
                await browser.close()
            return

        browser_type = getattr(p, s.BROWSER_TYPE.value)
        browser = await browser_type.launch(**s.playwright_launch_kwargs())
        try:
            context = await browser.new_context(**s.playwright_context_kwargs())
            page = await context.new_page()
            if target:
                await page.goto(target, wait_until="domcontentloaded", timeout=s.PAGE_LOAD_TIMEOUT)
            yield page
        finally:
            await browser.close()

"""Screenshot capture with an ordered fallback chain.

Full-page requests walk three strategies, each attempted exactly once:

    standard-full-page -> clip-based-full-page -> fallback-viewport

Viewport requests have a single strategy, ``viewport``. The first strategy
that returns bytes wins and is recorded as the capture method; when all of
them fail the first strategy's error is raised as a CaptureError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from playwright.async_api import Error as PlaywrightError, Page

from pixelperfect.exceptions import CaptureError, StabilityError, is_crash
from pixelperfect.models.capture import (
    CaptureMethod,
    CaptureRequest,
    CaptureResult,
    PageDimensions,
    ViewportSize,
    utc_timestamp,
)
from pixelperfect.models.config import ViewportConfig

logger = logging.getLogger(__name__)

FULL_DIMENSIONS_JS = """() => {
    const body = document.body || document.documentElement;
    const html = document.documentElement;
    return {
        width: Math.max(body.scrollWidth, body.offsetWidth, html.clientWidth, html.scrollWidth, html.offsetWidth),
        height: Math.max(body.scrollHeight, body.offsetHeight, html.clientHeight, html.scrollHeight, html.offsetHeight),
    };
}"""

PAGE_DIMENSIONS_JS = """() => ({
    viewport_width: window.innerWidth,
    viewport_height: window.innerHeight,
    scroll_width: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
    scroll_height: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
})"""

MAX_CLIP_PX = 50000

Strategy = Callable[[Page, ViewportConfig], Awaitable[bytes]]


@dataclass
class CaptureOutcome:
    image: bytes
    method: CaptureMethod
    attempted: list[str] = field(default_factory=list)


class ScreenshotCapturer:
    def __init__(self, max_clip_px: int = MAX_CLIP_PX):
        self.max_clip_px = max_clip_px

    # -- strategies -----------------------------------------------------

    async def standard_full_page(self, page: Page, viewport: ViewportConfig) -> bytes:
        return await page.screenshot(full_page=True, type="png", animations="disabled", caret="hide")

    async def clip_based_full_page(self, page: Page, viewport: ViewportConfig) -> bytes:
        dims = await page.evaluate(FULL_DIMENSIONS_JS)
        width, height = int(dims.get("width") or 0), int(dims.get("height") or 0)
        if width <= 0 or height <= 0:
            raise CaptureError(f"Invalid page dimensions for clip capture: {width}x{height}")
        if width > self.max_clip_px or height > self.max_clip_px:
            raise CaptureError(
                f"Page dimensions {width}x{height} exceed the {self.max_clip_px}px clip limit"
            )
        logger.info("Using clip-based full page capture: %dx%d", width, height)
        return await page.screenshot(
            type="png",
            clip={"x": 0, "y": 0, "width": width, "height": height},
            animations="disabled",
            caret="hide",
        )

    async def viewport(self, page: Page, viewport: ViewportConfig) -> bytes:
        if viewport.width <= 0 or viewport.height <= 0:
            raise CaptureError("Invalid viewport dimensions for screenshot capture")
        return await page.screenshot(
            type="png",
            clip={"x": 0, "y": 0, "width": viewport.width, "height": viewport.height},
            animations="disabled",
            caret="hide",
        )

    def plan(self, full_page: bool) -> list[tuple[CaptureMethod, Strategy]]:
        """The ordered strategies applicable to a request."""
        if not full_page:
            return [(CaptureMethod.VIEWPORT, self.viewport)]
        return [
            (CaptureMethod.STANDARD_FULL_PAGE, self.standard_full_page),
            (CaptureMethod.CLIP_BASED_FULL_PAGE, self.clip_based_full_page),
            (CaptureMethod.FALLBACK_VIEWPORT, self.viewport),
        ]

    # -- state machine --------------------------------------------------

    async def capture(self, page: Page, request: CaptureRequest, viewport: ViewportConfig) -> CaptureOutcome:
        attempted: list[str] = []
        first_error: Exception | None = None

        for method, strategy in self.plan(request.full_page):
            attempted.append(method.value)
            try:
                image = await strategy(page, viewport)
            except (PlaywrightError, CaptureError) as e:
                if is_crash(e):
                    raise StabilityError(f"Page crashed during screenshot capture: {e}", url=request.url) from e
                logger.warning("Capture strategy %s failed for %s: %s", method.value, request.url, e)
                if first_error is None:
                    first_error = e
                continue
            if not image:
                logger.warning("Capture strategy %s returned no data for %s", method.value, request.url)
                if first_error is None:
                    first_error = CaptureError(f"{method.value} returned an empty image")
                continue

            if method == CaptureMethod.FALLBACK_VIEWPORT:
                logger.warning("Full page capture failed for %s, captured viewport only", request.url)
            logger.info(
                "Screenshot captured using method: %s (%d bytes)", method.value, len(image),
            )
            return CaptureOutcome(image=image, method=method, attempted=attempted)

        raise CaptureError(
            f"Screenshot capture failed for {request.url}: {first_error}", url=request.url,
        ) from first_error

    async def describe(
        self, page: Page, request: CaptureRequest, viewport: ViewportConfig, outcome: CaptureOutcome,
    ) -> CaptureResult:
        """Attach page metadata to a successful capture."""
        try:
            title = await page.title()
        except PlaywrightError:
            title = ""
        try:
            dims = PageDimensions(**await page.evaluate(PAGE_DIMENSIONS_JS))
        except PlaywrightError as e:
            logger.debug("Could not read final page dimensions: %s", e)
            dims = PageDimensions()

        return CaptureResult(
            image=outcome.image,
            final_url=page.url,
            title=title or "",
            timestamp=utc_timestamp(),
            viewport=ViewportSize(width=viewport.width, height=viewport.height),
            full_page=request.full_page,
            page_dimensions=dims,
            capture_method=outcome.method,
            attempted_methods=outcome.attempted,
        )

"""Single-URL capture pipeline: navigate, stabilize, load, capture."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from pixelperfect.browser.capturer import ScreenshotCapturer
from pixelperfect.browser.loader import ContentLoader, Sleep
from pixelperfect.browser.navigation import navigate
from pixelperfect.browser.session import BrowserSession
from pixelperfect.browser.stabilizer import PageStabilizer
from pixelperfect.exceptions import (
    CaptureError,
    ComparerError,
    NavigationTimeoutError,
    StabilityError,
    is_crash,
)
from pixelperfect.models.capture import CaptureRequest, CaptureResult
from pixelperfect.models.config import ComparerConfig

logger = logging.getLogger(__name__)


class CapturePipeline:
    """Runs one CaptureRequest on its own page of a BrowserSession.

    The page is opened at the start and closed on every exit path. Any
    Playwright error escaping a stage is converted into a ComparerError here,
    so callers only ever see the comparer taxonomy.
    """

    def __init__(
        self,
        stabilizer: PageStabilizer,
        loader: ContentLoader,
        capturer: ScreenshotCapturer,
        network_idle_timeout_ms: int = 15000,
        selector_timeout_ms: int = 20000,
        sleep: Sleep = asyncio.sleep,
    ):
        self.stabilizer = stabilizer
        self.loader = loader
        self.capturer = capturer
        self.network_idle_timeout_ms = network_idle_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ComparerConfig, sleep: Optional[Sleep] = None) -> "CapturePipeline":
        sleep = sleep or asyncio.sleep
        return cls(
            stabilizer=PageStabilizer(
                click_timeout_ms=config.cookie_click_timeout_ms,
                settle_ms=config.cookie_settle_ms,
            ),
            loader=ContentLoader(config.scroll, sleep=sleep),
            capturer=ScreenshotCapturer(max_clip_px=config.scroll.max_height_px),
            network_idle_timeout_ms=config.network_idle_timeout_ms,
            selector_timeout_ms=config.selector_timeout_ms,
            sleep=sleep,
        )

    async def run(self, session: BrowserSession, request: CaptureRequest) -> CaptureResult:
        async with session.page_scope() as page:
            try:
                await self.stabilizer.prepare(page)
                await navigate(
                    page, request,
                    network_idle_timeout_ms=self.network_idle_timeout_ms,
                    selector_timeout_ms=self.selector_timeout_ms,
                )
                await self.stabilizer.dismiss_cookie_banners(page)
                await self.stabilizer.apply_masks(page, request.mask_selectors)
                await self._sleep(request.stabilization_delay_ms / 1000)

                if request.full_page:
                    await self.loader.load(page)

                outcome = await self.capturer.capture(page, request, session.viewport)
                result = await self.capturer.describe(page, request, session.viewport, outcome)
            except ComparerError as e:
                if e.url is None:
                    e.url = request.url
                raise
            except PlaywrightError as e:
                raise _wrap_playwright_error(request.url, e) from e

        logger.info(
            "Captured %s: %s, %dx%d",
            request.url,
            "full page" if request.full_page else "viewport only",
            result.page_dimensions.scroll_width,
            result.page_dimensions.scroll_height,
        )
        return result


def _wrap_playwright_error(url: str, exc: PlaywrightError) -> ComparerError:
    if is_crash(exc):
        return StabilityError(f"Page crashed while capturing {url}: {exc}", url=url)
    if "timeout" in str(exc).lower():
        return NavigationTimeoutError(f"Timed out while capturing {url}: {exc}", url=url)
    return CaptureError(f"Screenshot capture failed for {url}: {exc}", url=url)

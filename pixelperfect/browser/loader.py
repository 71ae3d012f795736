"""Lazy-content loader — scroll until the page stops growing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from playwright.async_api import Error as PlaywrightError, Page

from pixelperfect.exceptions import StabilityError, is_crash
from pixelperfect.models.config import ScrollConfig

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

MEASURE_JS = """() => ({
    width: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
    height: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
})"""

SCROLL_TO_JS = "(y) => window.scrollTo(0, y)"

STOP_STABLE = "stable"
STOP_MAX_STEPS = "max_steps"
STOP_HEIGHT_CEILING = "height_ceiling"
STOP_ERROR = "error"


@dataclass
class LoadReport:
    steps: int
    width: int
    height: int
    stop_reason: str


class ContentLoader:
    """Scrolls a page in steps so lazy-loaded content materializes.

    This is a convergence loop: it stops once the page has been scrolled to
    the bottom and its dimensions have held still for ``stable_rounds``
    consecutive measurements. ``max_steps`` and ``max_height_px`` bound it
    for pages that keep growing forever.

    ``sleep`` takes seconds and defaults to ``asyncio.sleep``; tests pass a
    fake to run the loop without real timers.
    """

    def __init__(self, config: ScrollConfig | None = None, sleep: Sleep = asyncio.sleep):
        self.config = config or ScrollConfig()
        self._sleep = sleep

    async def _measure(self, page: Page) -> tuple[int, int]:
        dims = await page.evaluate(MEASURE_JS)
        return int(dims.get("width") or 0), int(dims.get("height") or 0)

    def step_size(self, height: int) -> int:
        cfg = self.config
        return int(min(cfg.step_max_px, max(cfg.step_min_px, height * cfg.step_fraction)))

    async def load(self, page: Page) -> LoadReport:
        """Scroll through *page*, then return to the origin.

        A non-fatal scripting error ends the scroll early; the report then
        carries the steps and dimensions reached before it.
        """
        cfg = self.config
        width = height = steps = 0
        stop_reason = STOP_MAX_STEPS
        try:
            width, height = await self._measure(page)
            logger.debug("Initial dimensions: %dx%d", width, height)

            position = 0
            unchanged = 0
            while steps < cfg.max_steps:
                position += self.step_size(height)
                await page.evaluate(SCROLL_TO_JS, position)
                await self._sleep(cfg.settle_ms / 1000)
                steps += 1

                new_width, new_height = await self._measure(page)
                if new_height > height or new_width > width:
                    logger.debug("New content loaded: %dx%d", new_width, new_height)
                    width, height = max(width, new_width), max(height, new_height)
                    unchanged = 0
                else:
                    unchanged += 1

                if height > cfg.max_height_px:
                    logger.info("Page is very long (%dpx), limiting scroll depth", height)
                    stop_reason = STOP_HEIGHT_CEILING
                    break
                if unchanged >= cfg.stable_rounds and position >= height:
                    stop_reason = STOP_STABLE
                    break
        except PlaywrightError as e:
            if is_crash(e):
                raise StabilityError(f"Page crashed while loading lazy content: {e}") from e
            logger.warning("Scroll loading failed after %d steps: %s", steps, e)
            stop_reason = STOP_ERROR

        await self._return_to_top(page)
        logger.info(
            "Content loading scroll completed in %d steps (%s): %dx%d",
            steps, stop_reason, width, height,
        )
        return LoadReport(steps=steps, width=width, height=height, stop_reason=stop_reason)

    async def _return_to_top(self, page: Page) -> None:
        try:
            await page.evaluate(SCROLL_TO_JS, 0)
        except PlaywrightError as e:
            if is_crash(e):
                raise StabilityError(f"Page crashed while loading lazy content: {e}") from e
            logger.debug("Could not scroll back to top: %s", e)
            return
        await self._sleep(self.config.final_settle_ms / 1000)

"""Browser session ownership — one browser process, one configured context."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from pixelperfect.exceptions import LifecycleError, ValidationError
from pixelperfect.models.config import MAX_VIEWPORT_DIMENSION, BrowserConfig, ViewportConfig

logger = logging.getLogger(__name__)


def validate_viewport(width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise ValidationError("Viewport dimensions must be positive numbers")
    if width > MAX_VIEWPORT_DIMENSION or height > MAX_VIEWPORT_DIMENSION:
        raise ValidationError(
            f"Viewport dimensions too large. Maximum supported: "
            f"{MAX_VIEWPORT_DIMENSION}x{MAX_VIEWPORT_DIMENSION}"
        )


async def launch_browser(playwright: Playwright, config: BrowserConfig) -> Browser:
    """Launch Chromium with the flags that keep headless rendering stable."""
    return await playwright.chromium.launch(
        headless=config.headless,
        args=list(config.launch_args),
    )


async def create_context(browser: Browser, config: BrowserConfig, viewport: ViewportConfig) -> BrowserContext:
    """Create a browsing context with fixed viewport, locale, timezone and UA."""
    return await browser.new_context(
        viewport=viewport.as_size(),
        device_scale_factor=viewport.device_scale_factor,
        user_agent=config.user_agent,
        locale=config.locale,
        timezone_id=config.timezone_id,
        ignore_https_errors=config.ignore_https_errors,
        extra_http_headers={"Accept-Language": f"{config.locale},en;q=0.9"},
    )


class BrowserSession:
    """Owns a browser process and a single isolated browsing context.

    The session is passed explicitly into every capture stage; nothing about
    it lives in module state. Pages opened from it share the context's
    cookies but nothing else.
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        viewport: Optional[ViewportConfig] = None,
        playwright_factory: Callable = async_playwright,
    ):
        self.config = config or BrowserConfig()
        self.viewport = (viewport or self.config.viewport).model_copy()
        validate_viewport(self.viewport.width, self.viewport.height)
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._disposed = False

    @property
    def started(self) -> bool:
        return self._context is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def start(self) -> "BrowserSession":
        if self._disposed:
            raise LifecycleError("Browser session has been disposed and cannot be restarted")
        if self._context is not None:
            return self

        logger.debug("Launching browser (headless=%s)", self.config.headless)
        self._playwright = await self._playwright_factory().start()
        try:
            self._browser = await launch_browser(self._playwright, self.config)
            self._context = await create_context(self._browser, self.config, self.viewport)
        except Exception:
            await self.dispose()
            raise
        logger.info(
            "Browser session ready (%dx%d, %s, %s)",
            self.viewport.width, self.viewport.height, self.config.locale, self.config.timezone_id,
        )
        return self

    async def open_page(self) -> Page:
        """Open a fresh page bound to this session's context."""
        if self._disposed:
            raise LifecycleError("Cannot open a page: browser session has been disposed")
        if self._context is None:
            await self.start()
        page = await self._context.new_page()
        await page.set_viewport_size(self.viewport.as_size())
        return page

    @asynccontextmanager
    async def page_scope(self) -> AsyncIterator[Page]:
        """Open a page and guarantee it is closed on every exit path."""
        page = await self.open_page()
        try:
            yield page
        finally:
            await close_page(page)

    async def set_viewport(self, width: int, height: int) -> None:
        """Change the viewport used for pages opened from now on."""
        validate_viewport(width, height)
        if self._disposed:
            raise LifecycleError("Cannot resize a disposed browser session")
        self.viewport = self.viewport.model_copy(update={"width": width, "height": height})
        logger.info("Viewport updated to %dx%d", width, height)

    async def dispose(self) -> None:
        """Close context, browser and driver. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None
        if context is not None:
            await context.close()
        if browser is not None:
            await browser.close()
        if playwright is not None:
            await playwright.stop()
        logger.debug("Browser session disposed")

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()


async def close_page(page: Page) -> None:
    try:
        await page.close()
    except Exception as e:
        # Crashed or already-closed pages refuse to close; nothing left to release.
        logger.debug("Page close failed: %s", e)


class SessionManager:
    """Hands out a shared BrowserSession, reused across sequential comparisons.

    ``session_factory`` is injectable so tests can substitute a fake
    automation backend.
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        session_factory: Callable[..., BrowserSession] = BrowserSession,
    ):
        self.config = config or BrowserConfig()
        self._session_factory = session_factory
        self._session: Optional[BrowserSession] = None
        self._lock = asyncio.Lock()

    async def get(self, viewport: Optional[ViewportConfig] = None) -> BrowserSession:
        async with self._lock:
            if self._session is None or self._session.disposed:
                self._session = self._session_factory(self.config, viewport=viewport)
                await self._session.start()
            return self._session

    async def reset(self, viewport: Optional[ViewportConfig] = None) -> BrowserSession:
        """Replace the shared session with one built for *viewport*.

        Device scale factor is fixed per context, so a viewport change gets a
        new context rather than a resize.
        """
        if viewport is not None:
            validate_viewport(viewport.width, viewport.height)
        await self.close()
        return await self.get(viewport)

    async def close(self) -> None:
        async with self._lock:
            session, self._session = self._session, None
        if session is not None:
            await session.dispose()

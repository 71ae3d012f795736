"""Pytest configuration and shared fixtures."""

import io
from typing import Iterable
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image, ImageDraw
from playwright.async_api import Browser, BrowserContext, Page

from pixelperfect.models.capture import (
    CaptureMethod,
    CaptureRequest,
    CaptureResult,
    PageDimensions,
    ViewportSize,
)
from pixelperfect.models.config import (
    BrowserConfig,
    ComparerConfig,
    ScrollConfig,
    ViewportConfig,
)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def viewport_config() -> ViewportConfig:
    """Create a test viewport configuration."""
    return ViewportConfig(width=800, height=600, name="test")


@pytest.fixture
def browser_config(viewport_config: ViewportConfig) -> BrowserConfig:
    """Create a test browser configuration."""
    return BrowserConfig(viewport=viewport_config)


@pytest.fixture
def scroll_config() -> ScrollConfig:
    """Scroll tuning with small numbers so loops stay short."""
    return ScrollConfig(
        step_max_px=800,
        step_min_px=200,
        step_fraction=0.25,
        settle_ms=300,
        final_settle_ms=500,
        stable_rounds=3,
        max_steps=20,
        max_height_px=50000,
    )


@pytest.fixture
def comparer_config(browser_config: BrowserConfig, scroll_config: ScrollConfig) -> ComparerConfig:
    """Create a test comparer configuration."""
    return ComparerConfig(browser=browser_config, scroll=scroll_config)


@pytest.fixture
def capture_request() -> CaptureRequest:
    return CaptureRequest(
        url="https://example.com",
        wait_for="networkidle",
        full_page=True,
        mask_selectors=(".ads",),
        timeout_ms=45000,
        stabilization_delay_ms=0,
    )


# ============================================================================
# Image Helpers
# ============================================================================


WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def make_png(
    width: int,
    height: int,
    color: tuple = WHITE,
    boxes: Iterable[tuple] = (),
) -> bytes:
    """Render a solid PNG with optional (x, y, w, h, fill) rectangles."""
    img = Image.new("RGBA", (width, height), color)
    draw = ImageDraw.Draw(img)
    for x, y, w, h, fill in boxes:
        draw.rectangle([x, y, x + w - 1, y + h - 1], fill=fill)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGBA")


def make_capture_result(image: bytes, url: str = "https://example.com", **overrides) -> CaptureResult:
    fields = dict(
        image=image,
        final_url=url,
        title="Example",
        timestamp="2025-01-01T00:00:00.000Z",
        viewport=ViewportSize(width=800, height=600),
        full_page=True,
        page_dimensions=PageDimensions(viewport_width=800, viewport_height=600, scroll_width=800, scroll_height=600),
        capture_method=CaptureMethod.STANDARD_FULL_PAGE,
        attempted_methods=["standard-full-page"],
    )
    fields.update(overrides)
    return CaptureResult(**fields)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com/"
    page.title.return_value = "Example Page"
    page.screenshot = AsyncMock(return_value=make_png(10, 10))
    page.goto = AsyncMock()
    page.evaluate = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.wait_for_selector = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.add_init_script = AsyncMock()
    page.add_style_tag = AsyncMock()
    page.emulate_media = AsyncMock()
    page.set_viewport_size = AsyncMock()
    page.close = AsyncMock()
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context."""
    context = AsyncMock(spec=BrowserContext)
    context.new_page = AsyncMock(return_value=mock_page)
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser."""
    browser = AsyncMock(spec=Browser)
    browser.new_context = AsyncMock(return_value=mock_context)
    return browser


@pytest.fixture
def playwright_factory(mock_browser: AsyncMock) -> Mock:
    """Stand-in for ``async_playwright`` that never starts a real driver."""
    playwright = Mock()
    playwright.chromium = Mock()
    playwright.chromium.launch = AsyncMock(return_value=mock_browser)
    playwright.stop = AsyncMock()

    manager = Mock()
    manager.start = AsyncMock(return_value=playwright)
    factory = Mock(return_value=manager)
    factory.playwright = playwright
    return factory


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()

"""Integration tests for the comparer.

These run the real session manager, capture pipeline, diff engine and
orchestrator together. Only the browser itself is mocked: each fake page
"renders" a PNG chosen by the URL it navigated to.
"""

import io
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import ImageDraw
from playwright.async_api import Error as PlaywrightError, Page

from conftest import BLACK, WHITE, make_png, open_png
from pixelperfect.browser.capturer import FULL_DIMENSIONS_JS, PAGE_DIMENSIONS_JS
from pixelperfect.browser.loader import MEASURE_JS, SCROLL_TO_JS
from pixelperfect.browser.pipeline import CapturePipeline
from pixelperfect.browser.session import BrowserSession, SessionManager
from pixelperfect.exceptions import DnsError
from pixelperfect.models.capture import CaptureMethod
from pixelperfect.models.config import ComparerConfig, ViewportConfig
from pixelperfect.orchestrator import ComparisonOrchestrator

URL_A = "https://a.example.com"
URL_B = "https://b.example.com"

SITES = {
    URL_A: make_png(800, 600),
    URL_B: make_png(800, 600, boxes=[(100, 100, 100, 100, BLACK)]),
}

# Elements that a mask selector hides, as (x, y, w, h) boxes on the white page.
AD_SLOT = {".ad-slot": (100, 100, 100, 100)}


def _hide(png: bytes, boxes) -> bytes:
    """Paint hidden elements over with the page background."""
    img = open_png(png)
    draw = ImageDraw.Draw(img)
    for x, y, w, h in boxes:
        draw.rectangle([x, y, x + w - 1, y + h - 1], fill=WHITE)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeBrowserWorld:
    """Creates pages that serve screenshots from a URL -> PNG map."""

    def __init__(self, sites, unresolvable=(), full_page_broken=(), masks=None):
        self.sites = sites
        self.masks = masks or {}
        self.unresolvable = set(unresolvable)
        self.full_page_broken = set(full_page_broken)
        self.pages: list[AsyncMock] = []
        self.launches = 0

    def new_page(self):
        page = AsyncMock(spec=Page)
        page.url = "about:blank"
        state = {"url": None, "hidden": []}

        async def goto(url, **kwargs):
            if url in self.unresolvable:
                raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
            state["url"] = url
            page.url = url + "/"

        async def evaluate(script, arg=None):
            if script in (MEASURE_JS, FULL_DIMENSIONS_JS):
                return {"width": 800, "height": 600}
            if script == SCROLL_TO_JS:
                return None
            if script == PAGE_DIMENSIONS_JS:
                return {"viewport_width": 800, "viewport_height": 600, "scroll_width": 800, "scroll_height": 600}
            raise AssertionError(f"unexpected script: {script}")

        async def screenshot(**kwargs):
            if kwargs.get("full_page") and state["url"] in self.full_page_broken:
                raise PlaywrightError("Protocol error (Page.captureScreenshot): Unable to capture screenshot")
            png = self.sites[state["url"]]
            return _hide(png, state["hidden"]) if state["hidden"] else png

        async def add_style_tag(content="", **kwargs):
            for rule in content.splitlines():
                selector = rule.split(" {", 1)[0]
                if selector in self.masks:
                    state["hidden"].append(self.masks[selector])

        page.goto = AsyncMock(side_effect=goto)
        page.evaluate = AsyncMock(side_effect=evaluate)
        page.screenshot = AsyncMock(side_effect=screenshot)
        page.add_style_tag = AsyncMock(side_effect=add_style_tag)
        page.query_selector = AsyncMock(return_value=None)
        page.title = AsyncMock(return_value="Fake site")
        self.pages.append(page)
        return page

    def playwright_factory(self):
        context = AsyncMock()
        context.new_page = AsyncMock(side_effect=self.new_page)
        browser = AsyncMock()
        browser.new_context = AsyncMock(return_value=context)

        async def launch(**kwargs):
            self.launches += 1
            return browser

        playwright = Mock()
        playwright.chromium.launch = AsyncMock(side_effect=launch)
        playwright.stop = AsyncMock()
        manager = Mock()
        manager.start = AsyncMock(return_value=playwright)
        return manager


def _orchestrator(world: FakeBrowserWorld, fake_sleep) -> ComparisonOrchestrator:
    config = ComparerConfig()
    sessions = SessionManager(
        config.browser,
        session_factory=lambda cfg, viewport=None: BrowserSession(
            cfg, viewport=viewport, playwright_factory=world.playwright_factory,
        ),
    )
    return ComparisonOrchestrator(
        config, sessions=sessions, pipeline=CapturePipeline.from_config(config, sleep=fake_sleep),
    )


@pytest.mark.integration
class TestEndToEnd:
    """Full compare flow over a fake browser."""

    @pytest.mark.asyncio
    async def test_same_page_twice(self, fake_sleep):
        world = FakeBrowserWorld(SITES)
        orchestrator = _orchestrator(world, fake_sleep)
        result = await orchestrator.compare(URL_A, URL_A)
        await orchestrator.close()

        assert result.metrics.changed_pixels == 0
        assert result.capture_a.capture_method == CaptureMethod.STANDARD_FULL_PAGE
        assert all(p.close.await_count == 1 for p in world.pages)

    @pytest.mark.asyncio
    async def test_black_square(self, fake_sleep):
        world = FakeBrowserWorld(SITES)
        orchestrator = _orchestrator(world, fake_sleep)
        result = await orchestrator.compare(URL_A, URL_B, {"diffThreshold": 0.1, "stabilizationDelay": 0})
        await orchestrator.close()

        assert result.metrics.changed_pixels == 10000
        assert result.metrics.to_payload()["mismatchPercent"] == 2.08
        assert result.capture_b.final_url == URL_B + "/"
        assert len(world.pages) == 2

    @pytest.mark.asyncio
    async def test_masked_region_does_not_count(self, fake_sleep):
        world = FakeBrowserWorld(SITES, masks=AD_SLOT)
        orchestrator = _orchestrator(world, fake_sleep)
        masked = await orchestrator.compare(URL_A, URL_B, {"maskSelectors": [".ad-slot"]})
        unmasked = await orchestrator.compare(URL_A, URL_B, {"maskSelectors": []})
        await orchestrator.close()

        assert masked.metrics.changed_pixels == 0
        assert unmasked.metrics.changed_pixels == 10000

    @pytest.mark.asyncio
    async def test_invalid_mask_selector_keeps_other_masks(self, fake_sleep):
        world = FakeBrowserWorld(SITES, masks=AD_SLOT)
        orchestrator = _orchestrator(world, fake_sleep)
        result = await orchestrator.compare(URL_A, URL_B, {"maskSelectors": ["div[", ".ad-slot"]})
        await orchestrator.close()

        assert result.metrics.changed_pixels == 0

    @pytest.mark.asyncio
    async def test_full_page_failure_falls_back_to_clip(self, fake_sleep):
        world = FakeBrowserWorld(SITES, full_page_broken={URL_B})
        orchestrator = _orchestrator(world, fake_sleep)
        result = await orchestrator.compare(URL_A, URL_B)
        await orchestrator.close()

        assert result.capture_b.capture_method == CaptureMethod.CLIP_BASED_FULL_PAGE
        assert result.capture_b.attempted_methods == ["standard-full-page", "clip-based-full-page"]

    @pytest.mark.asyncio
    async def test_unresolvable_host(self, fake_sleep):
        world = FakeBrowserWorld(SITES, unresolvable={URL_B})
        orchestrator = _orchestrator(world, fake_sleep)
        with pytest.raises(DnsError):
            await orchestrator.compare(URL_A, URL_B)
        await orchestrator.close()
        assert all(p.close.await_count == 1 for p in world.pages)

    @pytest.mark.asyncio
    async def test_browser_reused_between_comparisons(self, fake_sleep):
        world = FakeBrowserWorld(SITES)
        orchestrator = _orchestrator(world, fake_sleep)
        await orchestrator.compare(URL_A, URL_B)
        await orchestrator.compare(URL_A, URL_B)
        await orchestrator.close()
        assert world.launches == 1

    @pytest.mark.asyncio
    async def test_multi_viewport(self, fake_sleep):
        world = FakeBrowserWorld(SITES)
        orchestrator = _orchestrator(world, fake_sleep)
        viewports = [ViewportConfig(width=800, height=600, name="Desktop"),
                     ViewportConfig(width=400, height=300, name="Small")]
        result = await orchestrator.compare_viewports(URL_A, URL_B, viewports)

        assert result.summary()["successful"] == 2
        assert world.launches == 2
        assert result.outcomes[1].result.capture_a.viewport.width == 400

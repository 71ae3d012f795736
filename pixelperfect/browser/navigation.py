"""Page navigation and wait strategies.

Navigation itself only waits for ``domcontentloaded``; the request's wait
strategy is applied afterwards so a page that never goes network-idle
(websockets, long-polling analytics) still gets captured.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeout

from pixelperfect.exceptions import ContentError, StabilityError, classify_navigation_error, is_crash
from pixelperfect.models.capture import CaptureRequest
from pixelperfect.models.config import CSS_WAIT_PREFIX

logger = logging.getLogger(__name__)


async def goto(page: Page, url: str, timeout_ms: int) -> None:
    logger.info("Navigating to: %s", url)
    try:
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
    except PlaywrightError as exc:
        error = classify_navigation_error(url, exc)
        logger.warning("Navigation to %s failed (%s): %s", url, error.code, exc)
        raise error from exc


async def wait_for_ready(
    page: Page,
    request: CaptureRequest,
    network_idle_timeout_ms: int = 15000,
    selector_timeout_ms: int = 20000,
) -> None:
    """Apply the request's wait strategy after the DOM has loaded."""
    strategy = request.wait_for

    if strategy.startswith(CSS_WAIT_PREFIX):
        selector = strategy[len(CSS_WAIT_PREFIX):].strip()
        timeout = min(selector_timeout_ms, request.timeout_ms)
        try:
            await page.wait_for_selector(selector, timeout=timeout)
        except PlaywrightTimeout as exc:
            raise ContentError(
                f'Required element "{selector}" not found on page. '
                "Please check the selector or use a different wait strategy.",
                url=request.url,
            ) from exc
        except PlaywrightError as exc:
            if is_crash(exc):
                raise StabilityError(f"Page crashed while waiting for {selector}: {exc}", url=request.url) from exc
            raise ContentError(f'Could not wait for "{selector}": {exc}', url=request.url) from exc
        return

    timeout = min(network_idle_timeout_ms, request.timeout_ms)
    try:
        await page.wait_for_load_state(strategy, timeout=timeout)
    except PlaywrightTimeout:
        logger.warning("%s not reached within %dms for %s, proceeding anyway", strategy, timeout, request.url)
    except PlaywrightError as exc:
        if is_crash(exc):
            raise StabilityError(f"Page crashed while loading {request.url}: {exc}", url=request.url) from exc
        raise classify_navigation_error(request.url, exc) from exc


async def navigate(
    page: Page,
    request: CaptureRequest,
    network_idle_timeout_ms: int = 15000,
    selector_timeout_ms: int = 20000,
) -> None:
    await goto(page, request.url, request.timeout_ms)
    await wait_for_ready(page, request, network_idle_timeout_ms, selector_timeout_ms)

"""Page stabilization — remove run-to-run visual noise before capture."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from playwright.async_api import Error as PlaywrightError, Page

from pixelperfect.exceptions import StabilityError, is_crash

logger = logging.getLogger(__name__)

FREEZE_CSS = """
*, *::before, *::after {
  animation-duration: 0s !important;
  animation-delay: 0s !important;
  transition-duration: 0s !important;
  transition-delay: 0s !important;
  caret-color: transparent !important;
}
html {
  scroll-behavior: auto !important;
}
.carousel, .slider, .rotating {
  animation: none !important;
}
"""

# Runs before any page script, so the override is in place for first paint.
_FREEZE_INIT_SCRIPT = """
(() => {
  const css = %s;
  const install = () => {
    if (document.getElementById('__visual-stabilizer__')) return;
    const style = document.createElement('style');
    style.id = '__visual-stabilizer__';
    style.textContent = css;
    (document.head || document.documentElement).appendChild(style);
  };
  if (document.head || document.documentElement) {
    install();
  } else {
    document.addEventListener('DOMContentLoaded', install);
  }
})();
"""


@dataclass(frozen=True)
class DismissCandidate:
    selector: str
    kind: str  # attribute, handler, text


# Walked in order; the first visible match is clicked and the walk stops.
COOKIE_DISMISS_CANDIDATES: tuple[DismissCandidate, ...] = (
    DismissCandidate('button[aria-label*="Accept"]', "attribute"),
    DismissCandidate('button[aria-label*="accept"]', "attribute"),
    DismissCandidate("#onetrust-accept-btn-handler", "handler"),
    DismissCandidate("#CybotCookiebotDialogBodyButtonAccept", "handler"),
    DismissCandidate(".cookie-accept", "handler"),
    DismissCandidate('[data-testid="cookie-accept"]', "handler"),
    DismissCandidate('[data-cy="cookie-accept"]', "handler"),
    DismissCandidate('button:has-text("Accept")', "text"),
    DismissCandidate('button:has-text("I agree")', "text"),
    DismissCandidate('button:has-text("Got it")', "text"),
    DismissCandidate('button:has-text("OK")', "text"),
)


MASK_RULE = "{ visibility: hidden !important; opacity: 0 !important; }"


def build_mask_css(selectors: Iterable[str]) -> str:
    # One rule per selector, so an invalid selector only drops its own rule.
    return "\n".join(f"{s} {MASK_RULE}" for s in selectors if s)


class PageStabilizer:
    """Freezes motion, dismisses consent banners and hides volatile regions."""

    def __init__(
        self,
        click_timeout_ms: int = 3000,
        settle_ms: int = 500,
        candidates: tuple[DismissCandidate, ...] = COOKIE_DISMISS_CANDIDATES,
    ):
        self.click_timeout_ms = click_timeout_ms
        self.settle_ms = settle_ms
        self.candidates = candidates

    async def prepare(self, page: Page) -> None:
        """Install the motion freeze and reduced-motion preference. Call before navigating."""
        await page.add_init_script(script=_FREEZE_INIT_SCRIPT % json.dumps(FREEZE_CSS))
        await page.emulate_media(reduced_motion="reduce")

    async def _try_dismiss(self, page: Page, candidate: DismissCandidate) -> bool:
        try:
            button = await page.query_selector(candidate.selector)
            if button is None or not await button.is_visible():
                return False
            await button.click(timeout=self.click_timeout_ms)
        except PlaywrightError as e:
            if is_crash(e):
                raise StabilityError(f"Page crashed while dismissing consent banner: {e}") from e
            logger.debug("Cookie dismissal via %s failed: %s", candidate.selector, e)
            return False
        await page.wait_for_timeout(self.settle_ms)
        return True

    async def dismiss_cookie_banners(self, page: Page) -> Optional[str]:
        """Click the first visible consent button. Single shot, best effort.

        Returns the selector that was clicked, or None.
        """
        for candidate in self.candidates:
            if await self._try_dismiss(page, candidate):
                logger.info("Dismissed cookie banner using selector: %s", candidate.selector)
                return candidate.selector
        logger.debug("No cookie banner found")
        return None

    async def apply_masks(self, page: Page, selectors: Iterable[str]) -> bool:
        """Hide every element matching *selectors*. Only a crashed page makes this fatal."""
        css = build_mask_css(selectors)
        if not css:
            return False
        try:
            await page.add_style_tag(content=css)
        except PlaywrightError as e:
            if is_crash(e):
                raise StabilityError(f"Page crashed while applying masks: {e}") from e
            logger.warning("Could not apply mask selectors: %s", e)
            return False
        return True

"""Capture request/result data structures."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CaptureMethod(str, Enum):
    STANDARD_FULL_PAGE = "standard-full-page"
    CLIP_BASED_FULL_PAGE = "clip-based-full-page"
    VIEWPORT = "viewport"
    FALLBACK_VIEWPORT = "fallback-viewport"


class ViewportSize(BaseModel):
    width: int
    height: int


class PageDimensions(BaseModel):
    viewport_width: int = 0
    viewport_height: int = 0
    scroll_width: int = 0
    scroll_height: int = 0


class CaptureRequest(BaseModel):
    """What to capture and how. Never mutated once issued."""

    model_config = ConfigDict(frozen=True)

    url: str
    wait_for: str = "networkidle"
    full_page: bool = True
    mask_selectors: tuple[str, ...] = ()
    timeout_ms: int = 45000
    stabilization_delay_ms: int = 1000


class CaptureResult(BaseModel):
    """One stabilized screenshot plus the metadata describing how it was taken."""

    image: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    final_url: str
    title: str = ""
    timestamp: str  # ISO timestamp, UTC
    viewport: ViewportSize
    full_page: bool = True
    page_dimensions: PageDimensions = Field(default_factory=PageDimensions)
    capture_method: CaptureMethod
    attempted_methods: list[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """A full page was asked for but only the viewport was captured."""
        return self.full_page and self.capture_method == CaptureMethod.FALLBACK_VIEWPORT

    def release(self) -> None:
        self.image = None

    def to_metadata(self) -> dict:
        return {
            "url": self.final_url,
            "title": self.title,
            "timestamp": self.timestamp,
            "viewport": self.viewport.model_dump(),
            "fullPage": self.full_page,
            "pageDimensions": {
                "viewportWidth": self.page_dimensions.viewport_width,
                "viewportHeight": self.page_dimensions.viewport_height,
                "scrollWidth": self.page_dimensions.scroll_width,
                "scrollHeight": self.page_dimensions.scroll_height,
            },
            "captureMethod": self.capture_method.value,
            "attemptedMethods": list(self.attempted_methods),
            "degraded": self.degraded,
        }

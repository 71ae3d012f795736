"""Configuration models for the page comparer."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pixelperfect.models.capture import CaptureRequest

MAX_VIEWPORT_DIMENSION = 10000
MAX_TIMEOUT_MS = 120000
MIN_TIMEOUT_MS = 1000
MAX_STABILIZATION_DELAY_MS = 5000

WAIT_LOAD_STATES = ("networkidle", "load", "domcontentloaded")
CSS_WAIT_PREFIX = "css:"

DEFAULT_USER_AGENT = "PixelPerfect-Comparer/1.0 (+Playwright)"

DEFAULT_MASK_SELECTORS = [
    ".cookie",
    "#cookie",
    ".banner",
    ".ads",
    '[data-testid="cookie"]',
    ".popup",
    ".modal",
    ".notification",
    ".alert",
]


class ViewportConfig(BaseModel):
    width: int = 1440
    height: int = 900
    name: str = "desktop"
    device_scale_factor: float = 1

    def as_size(self) -> dict:
        return {"width": self.width, "height": self.height}


DEFAULT_VIEWPORTS = [
    ViewportConfig(width=1440, height=900, name="Desktop"),
    ViewportConfig(width=768, height=1024, name="Tablet", device_scale_factor=2),
    ViewportConfig(width=390, height=844, name="Mobile", device_scale_factor=3),
]

VIEWPORT_PRESETS = [
    ViewportConfig(width=1440, height=900, name="Desktop"),
    ViewportConfig(width=1920, height=1080, name="Desktop Large"),
    ViewportConfig(width=768, height=1024, name="Tablet", device_scale_factor=2),
    ViewportConfig(width=390, height=844, name="Mobile", device_scale_factor=3),
    ViewportConfig(width=320, height=568, name="Mobile Small", device_scale_factor=2),
]


class BrowserConfig(BaseModel):
    headless: bool = True
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    timezone_id: str = "UTC"
    ignore_https_errors: bool = True
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-web-security",
            "--disable-features=VizDisplayCompositor",
        ]
    )


class ScrollConfig(BaseModel):
    """Tuning for the lazy-content scroll loop.

    None of these numbers are sacred; they trade capture time against the
    chance of missing late-loading content.
    """

    step_max_px: int = 800
    step_min_px: int = 200
    step_fraction: float = 0.25
    settle_ms: int = 300
    final_settle_ms: int = 500
    stable_rounds: int = 3
    max_steps: int = 20
    max_height_px: int = 50000


def validate_wait_strategy(value: str) -> str:
    value = (value or "networkidle").strip()
    if value in WAIT_LOAD_STATES:
        return value
    if value.startswith(CSS_WAIT_PREFIX) and value[len(CSS_WAIT_PREFIX):].strip():
        return value
    raise ValueError(
        f"Unsupported wait strategy '{value}'. Use one of {', '.join(WAIT_LOAD_STATES)} or 'css:<selector>'"
    )


def dedupe_selectors(selectors: Any) -> list[str]:
    """Drop blanks and duplicates while keeping first-seen order."""
    if selectors is None:
        return []
    if isinstance(selectors, str):
        selectors = [selectors]
    seen: dict[str, None] = {}
    for sel in selectors:
        sel = str(sel).strip()
        if sel:
            seen.setdefault(sel, None)
    return list(seen)


class ComparisonOptions(BaseModel):
    """Per-comparison options, validated and clamped once at the boundary."""

    model_config = ConfigDict(populate_by_name=True)

    wait_for: str = Field(default="networkidle", alias="waitFor")
    full_page: bool = Field(default=True, alias="fullPage")
    mask_selectors: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MASK_SELECTORS), alias="maskSelectors",
    )
    diff_threshold: float = Field(default=0.1, alias="diffThreshold")
    include_aa: bool = Field(default=True, alias="includeAA")
    timeout_ms: int = Field(default=45000, alias="timeout")
    stabilization_delay_ms: int = Field(default=1000, alias="stabilizationDelay")

    @field_validator("wait_for", mode="before")
    @classmethod
    def check_wait_for(cls, v: Optional[str]) -> str:
        return validate_wait_strategy(v or "networkidle")

    @field_validator("mask_selectors", mode="before")
    @classmethod
    def clean_selectors(cls, v: Any) -> list[str]:
        if v is None:
            return list(DEFAULT_MASK_SELECTORS)
        return dedupe_selectors(v)

    @field_validator("diff_threshold", mode="before")
    @classmethod
    def clamp_threshold(cls, v: Any) -> float:
        if v is None:
            return 0.1
        value = float(v)
        if not math.isfinite(value):
            raise ValueError("diffThreshold must be a finite number")
        return min(max(value, 0.0), 1.0)

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def clamp_timeout(cls, v: Any) -> int:
        if v is None:
            return 45000
        return int(min(max(int(v), MIN_TIMEOUT_MS), MAX_TIMEOUT_MS))

    @field_validator("stabilization_delay_ms", mode="before")
    @classmethod
    def clamp_delay(cls, v: Any) -> int:
        if v is None:
            return 1000
        return int(min(max(int(v), 0), MAX_STABILIZATION_DELAY_MS))

    def to_capture_request(self, url: str) -> CaptureRequest:
        return CaptureRequest(
            url=url,
            wait_for=self.wait_for,
            full_page=self.full_page,
            mask_selectors=tuple(self.mask_selectors),
            timeout_ms=self.timeout_ms,
            stabilization_delay_ms=self.stabilization_delay_ms,
        )


class ComparerConfig(BaseModel):
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    scroll: ScrollConfig = Field(default_factory=ScrollConfig)
    options: ComparisonOptions = Field(default_factory=ComparisonOptions)
    viewports: list[ViewportConfig] = Field(
        default_factory=lambda: [v.model_copy() for v in DEFAULT_VIEWPORTS]
    )

    # Waits
    network_idle_timeout_ms: int = 15000
    selector_timeout_ms: int = 20000
    cookie_click_timeout_ms: int = 3000
    cookie_settle_ms: int = 500

    # Diff rendering
    diff_alpha: float = 0.2

    # Output
    output_dir: str = "./comparisons"

    @classmethod
    def load(cls, path: str | Path) -> "ComparerConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(by_alias=False), f, indent=2)


def describe_options() -> dict:
    """Defaults and capabilities, as advertised to API clients."""
    defaults = ComparisonOptions()
    return {
        "defaultOptions": {
            "waitFor": defaults.wait_for,
            "fullPage": defaults.full_page,
            "diffThreshold": defaults.diff_threshold,
            "includeAA": defaults.include_aa,
            "timeout": defaults.timeout_ms,
            "stabilizationDelay": defaults.stabilization_delay_ms,
        },
        "waitStrategies": [*WAIT_LOAD_STATES, "css:selector"],
        "maxTimeout": MAX_TIMEOUT_MS,
        "maxStabilizationDelay": MAX_STABILIZATION_DELAY_MS,
        "supportedFormats": ["png"],
        "defaultMaskSelectors": list(DEFAULT_MASK_SELECTORS),
        "viewportPresets": [
            {"name": v.name, "width": v.width, "height": v.height, "dpr": v.device_scale_factor}
            for v in VIEWPORT_PRESETS
        ],
    }

"""Diff metrics and comparison result data structures."""

from __future__ import annotations

import base64
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pixelperfect.models.capture import CaptureRequest, CaptureResult
from pixelperfect.models.config import ViewportConfig


class DiffMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    total_pixels: int
    changed_pixels: int
    mismatch_percent: float
    ssim_score: float
    threshold: float
    include_aa: bool

    @model_validator(mode="after")
    def check_consistency(self) -> "DiffMetrics":
        if self.total_pixels != self.width * self.height:
            raise ValueError("total_pixels must equal width * height")
        if not 0 <= self.changed_pixels <= self.total_pixels:
            raise ValueError("changed_pixels must be within [0, total_pixels]")
        expected = 100.0 * self.changed_pixels / self.total_pixels
        if abs(self.mismatch_percent - expected) > 1e-9:
            raise ValueError("mismatch_percent must equal 100 * changed_pixels / total_pixels")
        return self

    @classmethod
    def from_counts(
        cls, width: int, height: int, changed_pixels: int, threshold: float, include_aa: bool,
    ) -> "DiffMetrics":
        total = width * height
        mismatch = 100.0 * changed_pixels / total
        return cls(
            width=width,
            height=height,
            total_pixels=total,
            changed_pixels=changed_pixels,
            mismatch_percent=mismatch,
            # Cheap proxy, not a structural similarity computation.
            ssim_score=1 - mismatch / 100,
            threshold=threshold,
            include_aa=include_aa,
        )

    def to_payload(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "totalPixels": self.total_pixels,
            "changedPixels": self.changed_pixels,
            "mismatchPercent": round(self.mismatch_percent, 2),
            "ssimScore": round(self.ssim_score, 4),
            "threshold": self.threshold,
            "includeAA": self.include_aa,
        }


def _b64(data: Optional[bytes]) -> str:
    return base64.b64encode(data).decode("ascii") if data else ""


class ComparisonResult(BaseModel):
    """The unit handed back to callers; only ever built fully populated."""

    id: str
    request_a: CaptureRequest
    request_b: CaptureRequest
    capture_a: CaptureResult
    capture_b: CaptureResult
    metrics: DiffMetrics
    image_a: bytes = Field(exclude=True, repr=False)
    image_b: bytes = Field(exclude=True, repr=False)
    diff_image: bytes = Field(exclude=True, repr=False)
    compared_at: str
    duration_ms: int = 0

    def to_payload(self, include_images: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "urls": {"A": self.request_a.url, "B": self.request_b.url},
            "metadata": {
                "A": self.capture_a.to_metadata(),
                "B": self.capture_b.to_metadata(),
                "comparedAt": self.compared_at,
            },
            "metrics": self.metrics.to_payload(),
            "performance": {"duration": self.duration_ms, "timestamp": self.compared_at},
        }
        if include_images:
            payload["images"] = {
                "A": _b64(self.image_a),
                "B": _b64(self.image_b),
                "diff": _b64(self.diff_image),
            }
        return payload


class ViewportOutcome(BaseModel):
    viewport: ViewportConfig
    result: Optional[ComparisonResult] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.result is None


class MultiViewportResult(BaseModel):
    url_a: str
    url_b: str
    outcomes: list[ViewportOutcome] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def successful(self) -> list[ViewportOutcome]:
        return [o for o in self.outcomes if not o.failed]

    def summary(self) -> dict:
        ok = self.successful
        avg = sum(o.result.metrics.mismatch_percent for o in ok) / len(ok) if ok else 0.0
        return {
            "total": len(self.outcomes),
            "successful": len(ok),
            "failed": len(self.outcomes) - len(ok),
            "avgMismatch": round(avg, 2),
        }

    def to_payload(self, include_images: bool = True) -> dict[str, Any]:
        results = []
        for outcome in self.outcomes:
            vp = {"name": outcome.viewport.name, "width": outcome.viewport.width,
                  "height": outcome.viewport.height, "dpr": outcome.viewport.device_scale_factor}
            if outcome.failed:
                results.append({"viewport": vp, "error": outcome.error, "code": outcome.code, "failed": True})
            else:
                entry = outcome.result.to_payload(include_images=include_images)
                entry["viewport"] = vp
                results.append(entry)
        return {
            "urlA": self.url_a,
            "urlB": self.url_b,
            "results": results,
            "summary": self.summary(),
            "performance": {"duration": self.duration_ms},
        }

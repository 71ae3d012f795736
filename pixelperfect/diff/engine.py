"""Diff engine — turns two PNG buffers into metrics and a diff image."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from pixelperfect.diff.pixelmatch import pixelmatch
from pixelperfect.exceptions import ComparisonError, ImageProcessingError
from pixelperfect.models.comparison import DiffMetrics

logger = logging.getLogger(__name__)

MAX_IMAGE_DIMENSION = 10000


@dataclass
class DiffOutput:
    metrics: DiffMetrics
    image_a: bytes  # cropped A, PNG
    image_b: bytes  # cropped B, PNG
    diff_image: bytes  # PNG


def _encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class DiffEngine:
    """Compares two rasters after cropping both to their common top-left area."""

    def __init__(self, alpha: float = 0.2, max_dimension: int = MAX_IMAGE_DIMENSION):
        self.alpha = alpha
        self.max_dimension = max_dimension

    def decode(self, data: bytes, label: str = "") -> Image.Image:
        """Decode a raster buffer into an RGBA image."""
        if not data:
            raise ImageProcessingError(
                f"Image processing failed: no image data received{f' for {label}' if label else ''}"
            )
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageProcessingError(
                "Image processing failed: Invalid or corrupted image data received"
            ) from e
        if img.width == 0 or img.height == 0:
            raise ImageProcessingError("Image processing failed: Invalid image dimensions")
        return img.convert("RGBA")

    def normalized_size(self, img_a: Image.Image, img_b: Image.Image) -> tuple[int, int]:
        width = min(img_a.width, img_b.width)
        height = min(img_a.height, img_b.height)
        if width <= 0 or height <= 0:
            raise ImageProcessingError("Image processing failed: Invalid image dimensions")
        if width > self.max_dimension or height > self.max_dimension:
            raise ImageProcessingError(
                "Image processing failed: Image is too large to process "
                f"({width}x{height}, maximum {self.max_dimension}x{self.max_dimension})"
            )
        return width, height

    def compare(
        self,
        buffer_a: bytes,
        buffer_b: bytes,
        threshold: float = 0.1,
        include_aa: bool = True,
    ) -> DiffOutput:
        img_a = self.decode(buffer_a, "A")
        img_b = self.decode(buffer_b, "B")
        width, height = self.normalized_size(img_a, img_b)

        if img_a.size != img_b.size:
            logger.debug(
                "Normalizing %dx%d and %dx%d to %dx%d",
                img_a.width, img_a.height, img_b.width, img_b.height, width, height,
            )
        crop_a = img_a.crop((0, 0, width, height))
        crop_b = img_b.crop((0, 0, width, height))

        arr_a = np.asarray(crop_a, dtype=np.uint8)
        arr_b = np.asarray(crop_b, dtype=np.uint8)
        try:
            match = pixelmatch(arr_a, arr_b, threshold=threshold, include_aa=include_aa, alpha=self.alpha)
        except ValueError as e:
            raise ComparisonError(
                "Image comparison failed: Could not compute visual differences"
            ) from e

        metrics = DiffMetrics.from_counts(
            width=width,
            height=height,
            changed_pixels=match.changed_pixels,
            threshold=threshold,
            include_aa=include_aa,
        )
        logger.debug(
            "Diff %dx%d: %d changed (%.2f%%), %d anti-aliased",
            width, height, metrics.changed_pixels, metrics.mismatch_percent, match.antialiased_pixels,
        )
        return DiffOutput(
            metrics=metrics,
            image_a=_encode_png(crop_a),
            image_b=_encode_png(crop_b),
            diff_image=_encode_png(Image.fromarray(match.diff)),
        )

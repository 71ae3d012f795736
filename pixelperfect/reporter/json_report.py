"""Comparison artifacts on disk: the three PNGs plus a JSON summary."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pixelperfect.models.comparison import ComparisonResult, MultiViewportResult
from pixelperfect.url_utils import url_slug

logger = logging.getLogger(__name__)

IMAGE_FILES = {"A": "A.png", "B": "B.png", "diff": "diff.png"}


def write_comparison(result: ComparisonResult, output_dir: Path) -> Path:
    """Write ``<output_dir>/<id>/{A,B,diff}.png`` and ``result.json``.

    Returns the directory the artifacts were written to.
    """
    run_dir = Path(output_dir) / result.id
    run_dir.mkdir(parents=True, exist_ok=True)

    (run_dir / IMAGE_FILES["A"]).write_bytes(result.image_a)
    (run_dir / IMAGE_FILES["B"]).write_bytes(result.image_b)
    (run_dir / IMAGE_FILES["diff"]).write_bytes(result.diff_image)

    report = result.to_payload(include_images=False)
    report["images"] = dict(IMAGE_FILES)
    with open(run_dir / "result.json", "w") as f:
        json.dump(report, f, indent=2, default=str)

    logger.info("Comparison artifacts written to %s", run_dir)
    return run_dir


def write_multi(result: MultiViewportResult, output_dir: Path) -> Path:
    """Write every successful viewport's artifacts plus one summary JSON."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = result.to_payload(include_images=False)
    for entry, outcome in zip(report["results"], result.outcomes):
        if not outcome.failed:
            entry["artifacts"] = str(write_comparison(outcome.result, output_dir))

    path = output_dir / f"multi_{url_slug(result.url_a)}_{url_slug(result.url_b)}.json"
    with open(path, "w") as f:
        json.dump(report, f, indent=2, default=str)
    logger.info("Multi-viewport summary written to %s", path)
    return path

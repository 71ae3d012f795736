"""Perceptual pixel matching over RGBA arrays.

Colour distance is measured in YIQ space, so differences the eye barely
notices (small chroma shifts) weigh less than brightness changes. A pixel
counts as changed when its squared YIQ distance exceeds
``MAX_YIQ_DELTA * threshold ** 2``. Pixels that differ but look like
anti-aliased edges can optionally be excluded from the count.

Everything is vectorised with numpy; the anti-aliasing check only runs
over the pixels that already failed the colour test.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Largest possible squared YIQ distance between two colours.
MAX_YIQ_DELTA = 35215.0

DIFF_COLOR = (255, 0, 0)
DIFF_COLOR_ALT = (0, 255, 0)
AA_COLOR = (255, 255, 0)

# Neighbour offsets as (dx, dy), x-major so ties resolve deterministically.
_NEIGHBOURS = ((-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1))


@dataclass
class MatchResult:
    changed_pixels: int
    antialiased_pixels: int
    diff: np.ndarray  # (H, W, 4) uint8


def _blend_white(rgba: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Composite over white so transparency reads as the page background."""
    rgb = rgba[..., :3].astype(np.float64)
    alpha = rgba[..., 3:4].astype(np.float64) / 255.0
    blended = 255.0 + (rgb - 255.0) * alpha
    return blended[..., 0], blended[..., 1], blended[..., 2]


def _rgb2y(r, g, b):
    return r * 0.29889531 + g * 0.58662247 + b * 0.11448223


def _rgb2i(r, g, b):
    return r * 0.59597799 - g * 0.27417610 - b * 0.32180189


def _rgb2q(r, g, b):
    return r * 0.21147017 - g * 0.52261711 + b * 0.31114694


def color_delta(img_a: np.ndarray, img_b: np.ndarray) -> np.ndarray:
    """Signed squared YIQ distance per pixel; negative when A is brighter."""
    r1, g1, b1 = _blend_white(img_a)
    r2, g2, b2 = _blend_white(img_b)
    y1 = _rgb2y(r1, g1, b1)
    y2 = _rgb2y(r2, g2, b2)
    y = y1 - y2
    i = _rgb2i(r1, g1, b1) - _rgb2i(r2, g2, b2)
    q = _rgb2q(r1, g1, b1) - _rgb2q(r2, g2, b2)
    delta = 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q
    delta = np.where(y1 > y2, -delta, delta)
    identical = np.all(img_a == img_b, axis=-1)
    delta[identical] = 0.0
    return delta


def _brightness(img: np.ndarray) -> np.ndarray:
    return _rgb2y(*_blend_white(img))


def _packed(img: np.ndarray) -> np.ndarray:
    """One uint32 per pixel so exact-colour equality is a single compare."""
    return (
        (img[..., 0].astype(np.uint32) << 24)
        | (img[..., 1].astype(np.uint32) << 16)
        | (img[..., 2].astype(np.uint32) << 8)
        | img[..., 3].astype(np.uint32)
    )


def _neighbour_coords(xs: np.ndarray, ys: np.ndarray, width: int, height: int):
    """Yield (nx, ny, valid) for each of the 8 neighbour offsets."""
    for dx, dy in _NEIGHBOURS:
        nx = xs + dx
        ny = ys + dy
        valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
        yield np.clip(nx, 0, width - 1), np.clip(ny, 0, height - 1), valid


def _on_edge(xs: np.ndarray, ys: np.ndarray, width: int, height: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _has_many_siblings(packed: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """True where at least three neighbours share the exact same colour."""
    height, width = packed.shape
    centre = packed[ys, xs]
    count = _on_edge(xs, ys, width, height).astype(np.int32)
    for nx, ny, valid in _neighbour_coords(xs, ys, width, height):
        count += (valid & (packed[ny, nx] == centre)).astype(np.int32)
    return count > 2


def _antialiased(
    brightness: np.ndarray,
    packed: np.ndarray,
    other_packed: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
) -> np.ndarray:
    """Vectorised anti-aliasing heuristic for the pixels at (xs, ys).

    A pixel is treated as anti-aliased when it sits between a darker and a
    brighter neighbour, has at most two equal-brightness neighbours, and the
    darkest or brightest neighbour lies inside a flat region in both images.
    """
    height, width = brightness.shape
    n = xs.shape[0]
    centre = brightness[ys, xs]

    deltas = np.empty((n, len(_NEIGHBOURS)), dtype=np.float64)
    valid_all = np.empty((n, len(_NEIGHBOURS)), dtype=bool)
    nxs = np.empty((n, len(_NEIGHBOURS)), dtype=np.intp)
    nys = np.empty((n, len(_NEIGHBOURS)), dtype=np.intp)
    for k, (nx, ny, valid) in enumerate(_neighbour_coords(xs, ys, width, height)):
        deltas[:, k] = centre - brightness[ny, nx]
        valid_all[:, k] = valid
        nxs[:, k] = nx
        nys[:, k] = ny

    zeroes = _on_edge(xs, ys, width, height).astype(np.int32)
    zeroes += np.sum(valid_all & (deltas == 0), axis=1)

    lows = np.where(valid_all, deltas, np.inf)
    highs = np.where(valid_all, deltas, -np.inf)
    min_idx = np.argmin(lows, axis=1)
    max_idx = np.argmax(highs, axis=1)
    rows = np.arange(n)
    min_delta = lows[rows, min_idx]
    max_delta = highs[rows, max_idx]

    candidate = (zeroes <= 2) & (min_delta < 0) & (max_delta > 0)
    result = np.zeros(n, dtype=bool)
    if not candidate.any():
        return result

    sel = np.nonzero(candidate)[0]
    min_x, min_y = nxs[sel, min_idx[sel]], nys[sel, min_idx[sel]]
    max_x, max_y = nxs[sel, max_idx[sel]], nys[sel, max_idx[sel]]
    darkest_flat = _has_many_siblings(packed, min_x, min_y) & _has_many_siblings(other_packed, min_x, min_y)
    brightest_flat = _has_many_siblings(packed, max_x, max_y) & _has_many_siblings(other_packed, max_x, max_y)
    result[sel] = darkest_flat | brightest_flat
    return result


def _gray_background(img: np.ndarray, alpha: float) -> np.ndarray:
    y = _rgb2y(
        img[..., 0].astype(np.float64),
        img[..., 1].astype(np.float64),
        img[..., 2].astype(np.float64),
    )
    a = alpha * img[..., 3].astype(np.float64) / 255.0
    val = np.clip(255.0 + (y - 255.0) * a, 0, 255).astype(np.uint8)
    out = np.empty(img.shape, dtype=np.uint8)
    out[..., 0] = val
    out[..., 1] = val
    out[..., 2] = val
    out[..., 3] = 255
    return out


def pixelmatch(
    img_a: np.ndarray,
    img_b: np.ndarray,
    threshold: float = 0.1,
    include_aa: bool = True,
    alpha: float = 0.2,
) -> MatchResult:
    """Compare two same-sized RGBA arrays.

    ``threshold`` runs from 0 (any difference counts) to 1 (nothing counts).
    With ``include_aa`` False, differing pixels that look like anti-aliasing
    are painted yellow and left out of ``changed_pixels``.
    """
    if img_a.shape != img_b.shape:
        raise ValueError(f"Image sizes do not match: {img_a.shape} vs {img_b.shape}")
    if img_a.ndim != 3 or img_a.shape[2] != 4:
        raise ValueError(f"Expected RGBA arrays, got shape {img_a.shape}")

    diff = _gray_background(img_a, alpha)
    if np.array_equal(img_a, img_b):
        return MatchResult(changed_pixels=0, antialiased_pixels=0, diff=diff)

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    delta = color_delta(img_a, img_b)
    over = np.abs(delta) > max_delta

    ys, xs = np.nonzero(over)
    aa = np.zeros(ys.shape[0], dtype=bool)
    if not include_aa and ys.size:
        packed_a = _packed(img_a)
        packed_b = _packed(img_b)
        aa = _antialiased(_brightness(img_a), packed_a, packed_b, xs, ys)
        aa |= _antialiased(_brightness(img_b), packed_b, packed_a, xs, ys)

    changed = ~aa
    cy, cx = ys[changed], xs[changed]
    alt = delta[cy, cx] < 0
    diff[cy[~alt], cx[~alt], :3] = DIFF_COLOR
    diff[cy[alt], cx[alt], :3] = DIFF_COLOR_ALT
    diff[ys[aa], xs[aa], :3] = AA_COLOR

    return MatchResult(
        changed_pixels=int(changed.sum()),
        antialiased_pixels=int(aa.sum()),
        diff=diff,
    )

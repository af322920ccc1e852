"""Visual Comparator: perceptual pixel diff between two screenshots.

Follows the pixelmatch algorithm (YIQ colour distance, anti-aliasing
detection on the 3x3 neighbourhood) but runs it vectorised over numpy
arrays instead of pixel by pixel.

Inputs of different size are cropped to the overlapping top-left region;
nothing is scaled. Anti-aliased pixels are tolerated and drawn yellow,
mismatches are drawn red, everything else is a faded grey copy of the
first image.
"""

import logging
from typing import Iterator, Tuple

import numpy as np
from PIL import Image

from .image_utils import decode_image, encode_png
from .models import DiffResult

logger = logging.getLogger(__name__)

# 35215 is the maximum possible YIQ delta between two RGB colours
MAX_YIQ_DELTA = 35215.0
DEFAULT_THRESHOLD = 0.1
FADED_ALPHA = 0.1
AA_COLOR = (255, 255, 0)
DIFF_COLOR = (255, 0, 0)

# Neighbour visiting order (x outer, y inner); first-occurrence ties follow it
NEIGHBOUR_OFFSETS = tuple(
    (dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)
)


def compare(image_a: str, image_b: str, threshold: float = DEFAULT_THRESHOLD) -> DiffResult:
    """Compare two base64 PNG snapshots.

    Args:
        image_a: Reference snapshot (base64, data-URL prefix tolerated).
        image_b: Candidate snapshot.
        threshold: Per-pixel sensitivity in [0, 1]; smaller is stricter.

    Returns:
        DiffResult over the min(width) x min(height) region.

    Raises:
        ImageDecodeError: Either input cannot be decoded or has zero area.
    """
    img_a = decode_image(image_a, label="image A")
    img_b = decode_image(image_b, label="image B")

    width = min(img_a.width, img_b.width)
    height = min(img_a.height, img_b.height)
    if img_a.size != img_b.size:
        logger.debug(
            f"Cropping to overlap {width}x{height} "
            f"(A={img_a.width}x{img_a.height}, B={img_b.width}x{img_b.height})"
        )

    rgba_a = np.ascontiguousarray(np.asarray(img_a.crop((0, 0, width, height)), dtype=np.uint8))
    rgba_b = np.ascontiguousarray(np.asarray(img_b.crop((0, 0, width, height)), dtype=np.uint8))

    diff_pixels, output = pixel_diff(rgba_a, rgba_b, threshold)
    total_pixels = width * height
    score = round(100.0 * diff_pixels / total_pixels, 2)

    logger.info(f"Visual diff: {diff_pixels}/{total_pixels} pixels ({score}%)")
    return DiffResult(
        score=score,
        total_pixels=total_pixels,
        diff_pixels=int(diff_pixels),
        diff_image=encode_png(Image.fromarray(output)),
        width=width,
        height=height,
    )


def pixel_diff(rgba_a: np.ndarray, rgba_b: np.ndarray, threshold: float = DEFAULT_THRESHOLD) -> Tuple[int, np.ndarray]:
    """Count mismatched pixels between two equally sized RGBA arrays.

    Returns:
        (mismatch count, H x W x 4 uint8 diff visualisation)
    """
    max_delta = MAX_YIQ_DELTA * threshold * threshold

    same_raw = _packed(rgba_a) == _packed(rgba_b)
    y_a, i_a, q_a = _yiq(_blend_on_white(rgba_a))
    y_b, i_b, q_b = _yiq(_blend_on_white(rgba_b))

    dy = y_a - y_b
    di = i_a - i_b
    dq = q_a - q_b
    delta = 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq
    delta[same_raw] = 0.0

    candidates = delta > max_delta
    if candidates.any():
        aa = _antialiased(rgba_a, y_a, rgba_b) | _antialiased(rgba_b, y_b, rgba_a)
        aa_pixels = candidates & aa
        diff_mask = candidates & ~aa
    else:
        aa_pixels = candidates
        diff_mask = candidates

    output = _faded(rgba_a)
    output[aa_pixels, :3] = AA_COLOR
    output[diff_mask, :3] = DIFF_COLOR
    return int(diff_mask.sum()), output


# ---------------------------------------------------------------------------
# Colour space
# ---------------------------------------------------------------------------


def _packed(rgba: np.ndarray) -> np.ndarray:
    """One uint32 per pixel so whole-pixel equality is a single compare."""
    return rgba.view(np.uint32)[..., 0]


def _blend_on_white(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    alpha = rgba[..., 3:4].astype(np.float64) / 255.0
    return 255.0 + (rgb - 255.0) * alpha


def _yiq(rgb: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    y = r * 0.29889531 + g * 0.58662247 + b * 0.11448223
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def _faded(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    y = rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223
    alpha = FADED_ALPHA * rgba[..., 3].astype(np.float64) / 255.0
    value = np.clip(255.0 + (y - 255.0) * alpha, 0, 255).astype(np.uint8)

    output = np.empty(rgba.shape, dtype=np.uint8)
    output[..., 0] = value
    output[..., 1] = value
    output[..., 2] = value
    output[..., 3] = 255
    return output


# ---------------------------------------------------------------------------
# Anti-aliasing detection
# ---------------------------------------------------------------------------


def _neighbours(shape: Tuple[int, int]) -> Iterator[Tuple[int, int, np.ndarray, Tuple[slice, slice], Tuple[slice, slice]]]:
    """Yield (dx, dy, valid mask, target slices, source slices) per neighbour.

    target/source slices line up each pixel with its (x+dx, y+dy) neighbour
    over the region where that neighbour exists.
    """
    height, width = shape
    for dx, dy in NEIGHBOUR_OFFSETS:
        valid = np.zeros(shape, dtype=bool)
        target = (
            slice(max(0, -dy), height - max(0, dy)),
            slice(max(0, -dx), width - max(0, dx)),
        )
        source = (
            slice(max(0, dy), height - max(0, -dy)),
            slice(max(0, dx), width - max(0, -dx)),
        )
        valid[target] = True
        yield dx, dy, valid, target, source


def _edge_mask(shape: Tuple[int, int]) -> np.ndarray:
    height, width = shape
    edge = np.zeros(shape, dtype=bool)
    edge[0, :] = True
    edge[-1, :] = True
    edge[:, 0] = True
    edge[:, -1] = True
    return edge


def _many_siblings(rgba: np.ndarray) -> np.ndarray:
    """Pixels with more than two identical neighbours (edge counts as one)."""
    packed = _packed(rgba)
    zeroes = _edge_mask(packed.shape).astype(np.int16)
    for _dx, _dy, _valid, target, source in _neighbours(packed.shape):
        zeroes[target] += packed[target] == packed[source]
    return zeroes > 2


def _antialiased(rgba: np.ndarray, y: np.ndarray, other: np.ndarray) -> np.ndarray:
    """Per-pixel anti-aliasing verdict for rgba, checked against other.

    A pixel is anti-aliased when its neighbourhood has both a darker and a
    brighter neighbour, at most two identical-brightness neighbours
    (edge counts as one), and the darkest or brightest neighbour sits in a
    flat area in both images.
    """
    shape = y.shape
    height, width = shape
    zeroes = _edge_mask(shape).astype(np.int16)
    min_delta = np.zeros(shape)
    max_delta = np.zeros(shape)
    min_dx = np.zeros(shape, dtype=np.int64)
    min_dy = np.zeros(shape, dtype=np.int64)
    max_dx = np.zeros(shape, dtype=np.int64)
    max_dy = np.zeros(shape, dtype=np.int64)

    for dx, dy, valid, target, source in _neighbours(shape):
        delta = np.zeros(shape)
        delta[target] = y[target] - y[source]

        zeroes += valid & (delta == 0)

        lower = valid & (delta < min_delta)
        min_delta[lower] = delta[lower]
        min_dx[lower] = dx
        min_dy[lower] = dy

        higher = valid & ~lower & (delta > max_delta)
        max_delta[higher] = delta[higher]
        max_dx[higher] = dx
        max_dy[higher] = dy

    candidate = (zeroes <= 2) & (min_delta < 0) & (max_delta > 0)
    if not candidate.any():
        return candidate

    flat = _many_siblings(rgba) & _many_siblings(other)
    rows, cols = np.indices((height, width))
    darkest_flat = flat[rows + min_dy, cols + min_dx]
    brightest_flat = flat[rows + max_dy, cols + max_dx]
    return candidate & (darkest_flat | brightest_flat)

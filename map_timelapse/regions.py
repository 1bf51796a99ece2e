"""Detection of the stable map region inside a reference screenshot."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from map_timelapse.errors import RegionNotFound
from map_timelapse.models import SEA_COLOR, VOID_COLOR, BoundingBox, PxColor


def _matches(image: np.ndarray, x: int, y: int, color: PxColor) -> bool:
    height, width = image.shape[:2]
    if not (0 <= x < width and 0 <= y < height):
        return False
    b, g, r = (int(channel) for channel in image[y, x, :3])
    return (r, g, b) == (color.r, color.g, color.b)


def _first_diagonal_match(image: np.ndarray, color: PxColor, *, reverse: bool) -> tuple[int, int]:
    """Return the first pixel on the main diagonal matching ``color`` exactly."""
    height, width = image.shape[:2]
    steps = np.arange(min(width, height))
    xs = (width - 1 - steps) if reverse else steps
    ys = (height - 1 - steps) if reverse else steps
    diagonal = image[ys, xs, :3]
    hits = np.all(diagonal == np.array(color.to_bgr(), dtype=image.dtype), axis=1)
    if not hits.any():
        corner = "bottom-right" if reverse else "top-left"
        raise RegionNotFound(
            f"No pixel matching {color} on the diagonal from the {corner} corner"
        )
    index = int(np.argmax(hits))
    return int(xs[index]), int(ys[index])


def has_sea_color(image: np.ndarray) -> bool:
    """Return ``True`` when the sea colour appears on the main diagonal."""
    try:
        _first_diagonal_match(image, SEA_COLOR, reverse=False)
    except RegionNotFound:
        return False
    return True


def find_map_region(image: np.ndarray, padding: int) -> BoundingBox:
    """Locate the rendered map in a BGR screenshot using the sentinel colours.

    The box is square, padded on every side and deliberately not clamped to the
    raster, so its origin may be negative and it may extend past the edges.
    """
    left, top = _first_diagonal_match(image, SEA_COLOR, reverse=False)
    while _matches(image, left - 1, top, SEA_COLOR):
        left -= 1
    while _matches(image, left, top - 1, SEA_COLOR):
        top -= 1

    right, bottom = _first_diagonal_match(image, VOID_COLOR, reverse=True)
    while _matches(image, right + 1, bottom, VOID_COLOR):
        right += 1
    while _matches(image, right, bottom + 1, VOID_COLOR):
        bottom += 1

    size = max(right - left, bottom - top)
    if size + padding * 2 <= 0:
        raise RegionNotFound(
            f"Degenerate map region: sea corner ({left}, {top}), void corner ({right}, {bottom})"
        )
    return BoundingBox(
        x=left - padding,
        y=top - padding,
        size=size + padding * 2,
    )


def load_reference_region(screenshot_path: Path, padding: int) -> BoundingBox:
    image = cv2.imread(str(screenshot_path), cv2.IMREAD_COLOR)
    if image is None:
        raise RegionNotFound(f"Unable to read reference screenshot: {screenshot_path}")
    return find_map_region(image, padding)


__all__ = ["find_map_region", "has_sea_color", "load_reference_region"]

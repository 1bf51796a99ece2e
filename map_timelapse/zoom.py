"""Per-frame zoom window tracking from transparency overlays."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from map_timelapse.errors import MalformedArtifact
from map_timelapse.models import BoundingBox


def region_alpha(overlay: np.ndarray, region: BoundingBox) -> np.ndarray:
    """Return an 8-bit coverage mask of the overlay in region-local coordinates.

    Pixels of the region lying outside the overlay raster are fully transparent.
    """
    if overlay.ndim != 3 or overlay.shape[2] != 4:
        raise MalformedArtifact("Overlay raster has no alpha channel")

    size = int(region.size)
    rx, ry = int(region.x), int(region.y)
    height, width = overlay.shape[:2]
    local = np.zeros((size, size), dtype=np.uint8)

    x0, y0 = max(0, rx), max(0, ry)
    x1, y1 = min(width, rx + size), min(height, ry + size)
    if x1 > x0 and y1 > y0:
        opaque = overlay[y0:y1, x0:x1, 3] > 0
        local[y0 - ry:y1 - ry, x0 - rx:x1 - rx] = np.where(opaque, 255, 0)
    return local


def find_zoom_window(alpha: np.ndarray, padding: int) -> BoundingBox:
    """Find the padded square around every non-transparent pixel of ``alpha``.

    The result always lies inside the plane: ``0 <= x``, ``0 <= y``,
    ``x + size <= width`` and ``y + size <= height``. A blank plane yields the
    largest square anchored at the origin.
    """
    height, width = alpha.shape[:2]
    limit = min(width, height)

    mask = alpha if alpha.dtype == np.uint8 else (alpha > 0).astype(np.uint8)
    coords = cv2.findNonZero(mask)
    if coords is None:
        return BoundingBox(x=0, y=0, size=limit)

    min_x, min_y, w, h = cv2.boundingRect(coords)
    # boundingRect counts pixels inclusively; the window spans max - min.
    size = max(1, max(w - 1, h - 1) + padding * 2)
    x = min_x - padding
    y = min_y - padding

    size = min(size, limit)
    if x + size > width:
        x -= x + size - width
    if y + size > height:
        y -= y + size - height
    x = max(0, x)
    y = max(0, y)
    return BoundingBox(x=x, y=y, size=size)


def load_zoom_window(overlay_path: Path, region: BoundingBox, padding: int) -> BoundingBox:
    overlay = cv2.imread(str(overlay_path), cv2.IMREAD_UNCHANGED)
    if overlay is None:
        raise MalformedArtifact(f"Unable to read overlay: {overlay_path}")
    try:
        alpha = region_alpha(overlay, region)
    except MalformedArtifact as exc:
        raise MalformedArtifact(f"{exc}: {overlay_path}") from exc
    return find_zoom_window(alpha, padding)


__all__ = ["find_zoom_window", "load_zoom_window", "region_alpha"]

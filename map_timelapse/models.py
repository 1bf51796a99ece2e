"""Data models used across the map timelapse pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple


@dataclass(frozen=True)
class PxColor:
    """An exact RGB value used as a structural marker in a rendered map."""

    r: int
    g: int
    b: int

    def to_bgr(self) -> Tuple[int, int, int]:
        """Return the colour in OpenCV channel order."""
        return (self.b, self.g, self.r)


SEA_COLOR = PxColor(75, 111, 120)
VOID_COLOR = PxColor(5, 3, 4)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned square described by its origin and side length."""

    x: float
    y: float
    size: float

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError(f"BoundingBox size must be positive, got {self.size}")

    @property
    def right(self) -> float:
        return self.x + self.size

    @property
    def bottom(self) -> float:
        return self.y + self.size

    def lerp(self, other: "BoundingBox", t: float) -> "BoundingBox":
        """Linearly interpolate towards ``other``; ``t=0`` is self, ``t=1`` is other."""
        return BoundingBox(
            x=self.x + (other.x - self.x) * t,
            y=self.y + (other.y - self.y) * t,
            size=self.size + (other.size - self.size) * t,
        )


@dataclass
class CheckpointArtifact:
    """One persisted checkpoint to be rendered and captured."""

    artifact_id: str
    session_id: Optional[str]
    timestamp: datetime
    image_name: str
    source_path: Optional[Path] = None
    has_screenshot: bool = False
    has_overlay: bool = False

    @property
    def is_acquired(self) -> bool:
        return self.has_screenshot and self.has_overlay

    def mark_acquired(self) -> None:
        self.has_screenshot = True
        self.has_overlay = True


@dataclass(frozen=True)
class Frame:
    """A checkpoint's acquired rasters plus its tracked zoom window."""

    artifact: CheckpointArtifact
    screenshot_path: Path
    overlay_path: Path
    zoom: BoundingBox


__all__ = [
    "BoundingBox",
    "CheckpointArtifact",
    "Frame",
    "PxColor",
    "SEA_COLOR",
    "VOID_COLOR",
]

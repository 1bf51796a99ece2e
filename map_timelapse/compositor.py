"""Composition of tracked frames into a smooth pan/zoom frame stream."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from map_timelapse.config import CompositionSettings
from map_timelapse.errors import MalformedArtifact
from map_timelapse.models import BoundingBox, Frame


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def motion_metric(previous: BoundingBox, current: BoundingBox, normalization: float) -> float:
    """Scale factor for the transition length between two zoom windows."""
    delta = max(
        abs(current.x - previous.x),
        abs(current.y - previous.y),
        abs(current.size - previous.size),
    )
    return 1.0 + delta / normalization


def transition_frame_count(
    previous: BoundingBox,
    current: BoundingBox,
    *,
    base_frames: int,
    normalization: float,
) -> int:
    return max(1, round_half_up(base_frames * motion_metric(previous, current, normalization)))


def transition_windows(
    previous: BoundingBox,
    current: BoundingBox,
    count: int,
) -> List[Tuple[float, BoundingBox]]:
    """Return ``count + 1`` evenly spaced ``(t, window)`` pairs from previous to current."""
    steps = []
    for index in range(count + 1):
        t = index / count
        steps.append((t, previous.lerp(current, t)))
    return steps


def load_screenshot(frame: Frame) -> np.ndarray:
    image = cv2.imread(str(frame.screenshot_path), cv2.IMREAD_COLOR)
    if image is None:
        raise MalformedArtifact(f"Unable to read screenshot: {frame.screenshot_path}")
    return image


class TimelapseCompositor:
    """Turn an ordered frame sequence into a stream of output rasters.

    Frames are consumed strictly in order and one output raster is yielded at a
    time; the caller encodes it before the next one is produced.
    """

    def __init__(
        self,
        region: BoundingBox,
        settings: CompositionSettings,
        *,
        logger: logging.Logger,
    ) -> None:
        self.region = region
        self.settings = settings
        self.logger = logger
        self.full_window = BoundingBox(x=0, y=0, size=region.size)

    # ------------------------------------------------------------------
    # Raster helpers
    # ------------------------------------------------------------------

    def crop(self, screenshot: np.ndarray, window: BoundingBox) -> np.ndarray:
        """Sample ``window`` (region-local) from a screenshot at output resolution."""
        resolution = self.settings.output_resolution
        scale = resolution / window.size
        origin_x = self.region.x + window.x
        origin_y = self.region.y + window.y
        matrix = np.array(
            [
                [scale, 0.0, -origin_x * scale],
                [0.0, scale, -origin_y * scale],
            ],
            dtype=np.float64,
        )
        return cv2.warpAffine(
            screenshot,
            matrix,
            (resolution, resolution),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=self.settings.background_color,
        )

    @staticmethod
    def blend(below: np.ndarray, above: np.ndarray, opacity: float) -> np.ndarray:
        if opacity <= 0.0:
            return below
        if opacity >= 1.0:
            return above
        return cv2.addWeighted(below, 1.0 - opacity, above, opacity, 0.0)

    # ------------------------------------------------------------------
    # Frame planning
    # ------------------------------------------------------------------

    def transition_count(self, previous: BoundingBox, current: BoundingBox) -> int:
        return transition_frame_count(
            previous,
            current,
            base_frames=self.settings.base_transition_frames,
            normalization=self.settings.normalization,
        )

    def expected_frame_count(self, frames: Sequence[Frame]) -> int:
        """Number of rasters `render` yields when every screenshot is readable."""
        if not frames:
            return 0
        total = self.settings.initial_hold_frames
        if self.settings.intro_zoom:
            total += self.transition_count(self.full_window, frames[0].zoom) + 1
        for previous, current in zip(frames, frames[1:]):
            total += self.transition_count(previous.zoom, current.zoom) + 1
        # One settled frame precedes every transition except an un-introduced first one.
        pairs = len(frames) - 1
        total += pairs if self.settings.intro_zoom else max(0, pairs - 1)
        return total + self.settings.final_hold_frames

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _loaded(self, frames: Iterable[Frame]) -> Iterator[Tuple[Frame, np.ndarray]]:
        for frame in frames:
            try:
                yield frame, load_screenshot(frame)
            except MalformedArtifact as exc:
                self.logger.warning("Skipping frame %s: %s", frame.artifact.image_name, exc)

    def _transition(
        self,
        below: np.ndarray,
        above: np.ndarray,
        start: BoundingBox,
        end: BoundingBox,
    ) -> Iterator[np.ndarray]:
        for t, window in transition_windows(start, end, self.transition_count(start, end)):
            if below is above:
                yield self.crop(above, window)
            else:
                yield self.blend(self.crop(below, window), self.crop(above, window), t)

    def render(self, frames: Iterable[Frame]) -> Iterator[np.ndarray]:
        loaded = self._loaded(frames)
        current: Optional[Tuple[Frame, np.ndarray]] = next(loaded, None)
        if current is None:
            self.logger.warning("No readable frames to compose")
            return

        frame, image = current
        initial = self.crop(image, self.full_window)
        for _ in range(self.settings.initial_hold_frames):
            yield initial

        settled_pending = False
        if self.settings.intro_zoom:
            yield from self._transition(image, image, self.full_window, frame.zoom)
            settled_pending = True

        while True:
            upcoming = next(loaded, None)
            if upcoming is None:
                settled = self.crop(image, frame.zoom)
                for _ in range(self.settings.final_hold_frames):
                    yield settled
                return

            if settled_pending:
                yield self.crop(image, frame.zoom)

            next_frame, next_image = upcoming
            yield from self._transition(image, next_image, frame.zoom, next_frame.zoom)
            frame, image = next_frame, next_image
            settled_pending = True


__all__ = [
    "TimelapseCompositor",
    "load_screenshot",
    "motion_metric",
    "round_half_up",
    "transition_frame_count",
    "transition_windows",
]

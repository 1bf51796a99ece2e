"""Exception types raised by the map timelapse pipeline."""

from __future__ import annotations

from typing import Sequence, Tuple


class AcquisitionError(RuntimeError):
    """Raised when the render collaborator fails to produce a checkpoint's rasters."""


class RegionNotFound(RuntimeError):
    """Raised when the reference screenshot never shows the expected sentinel colours."""


class MalformedArtifact(RuntimeError):
    """Raised when a checkpoint's source data or rasters cannot be read."""


class AggregateAcquisitionFailure(RuntimeError):
    """Raised after the scheduler drains its queue with permanently failed jobs."""

    def __init__(self, failed_ids: Sequence[str]) -> None:
        self.failed_ids: Tuple[str, ...] = tuple(failed_ids)
        super().__init__(
            f"{self.count} checkpoint(s) failed acquisition: {', '.join(self.failed_ids)}"
        )

    @property
    def count(self) -> int:
        return len(self.failed_ids)


__all__ = [
    "AcquisitionError",
    "AggregateAcquisitionFailure",
    "MalformedArtifact",
    "RegionNotFound",
]

"""
Map timelapse pipeline: capture one rendering per checkpoint and compose the
captures into a smooth pan/zoom animation.
"""

from .app import MapTimelapse
from .errors import (
    AcquisitionError,
    AggregateAcquisitionFailure,
    MalformedArtifact,
    RegionNotFound,
)
from .models import BoundingBox, CheckpointArtifact, Frame, PxColor

__all__ = [
    "MapTimelapse",
    "AcquisitionError",
    "AggregateAcquisitionFailure",
    "MalformedArtifact",
    "RegionNotFound",
    "BoundingBox",
    "CheckpointArtifact",
    "Frame",
    "PxColor",
]

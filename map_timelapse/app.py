"""
Map timelapse facade.
Acquires a rendered screenshot and overlay per checkpoint, then composes them
into one smooth pan/zoom animation.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from map_timelapse.acquisition import AcquisitionSession, ArtifactStorage, RenderServiceSession
from map_timelapse.checkpoints import (
    discover_checkpoints,
    group_by_session,
    import_checkpoints,
    mark_existing_outputs,
    select_session,
)
from map_timelapse.compositor import TimelapseCompositor
from map_timelapse.config import Config, load_config
from map_timelapse.encoding import FfmpegEncoder
from map_timelapse.errors import AggregateAcquisitionFailure, MalformedArtifact, RegionNotFound
from map_timelapse.logging_setup import DEFAULT_LOG_FILENAME, configure_logging
from map_timelapse.models import BoundingBox, CheckpointArtifact, Frame
from map_timelapse.regions import load_reference_region
from map_timelapse.scheduler import AcquisitionReport, AcquisitionScheduler
from map_timelapse.zoom import load_zoom_window

EXIT_OK = 0
EXIT_FAILURE = 1


class MapTimelapse:
    def __init__(self, config_file: str = "config.json", *, config: Optional[Config] = None):
        load_dotenv()
        self.config = config if config is not None else load_config(Path(config_file))
        self.storage = ArtifactStorage(
            screenshots_dir=self.config.screenshots_dir,
            overlays_dir=self.config.overlays_dir,
        )
        self.setup_logging()

    def setup_logging(self) -> None:
        log_file = self.config.log_file or (self.config.output_dir / DEFAULT_LOG_FILENAME)
        self.logger = configure_logging("map_timelapse", log_file=log_file)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def open_session(self) -> AcquisitionSession:
        """Create one worker's render session."""
        settings = self.config.acquisition
        return RenderServiceSession(
            settings.render_url,
            self.storage,
            logger=self.logger,
            http_timeout=settings.http_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
        )

    def import_checkpoints_if_empty(self) -> int:
        """Seed an empty saves directory from the configured import directory."""
        import_dir = self.config.import_dir
        saves_dir = self.config.saves_dir
        if import_dir is None:
            return 0
        if saves_dir.exists() and any(saves_dir.iterdir()):
            return 0
        return import_checkpoints(
            import_dir,
            saves_dir,
            self.config.checkpoint_suffix,
            logger=self.logger,
        )

    def collect_checkpoints(self) -> tuple[Optional[str], List[CheckpointArtifact]]:
        self.import_checkpoints_if_empty()
        artifacts = discover_checkpoints(
            self.config.saves_dir,
            self.config.checkpoint_suffix,
            logger=self.logger,
        )
        session_id, session_artifacts = select_session(
            group_by_session(artifacts),
            self.config.session,
        )
        mark_existing_outputs(session_artifacts, self.storage.screenshots_dir, self.storage.overlays_dir)
        return session_id, session_artifacts

    def acquire(self, artifacts: Sequence[CheckpointArtifact]) -> AcquisitionReport:
        pending = [artifact for artifact in artifacts if not artifact.is_acquired]
        self.logger.info(
            "Found %s checkpoints, %s already captured, %s to process",
            len(artifacts),
            len(artifacts) - len(pending),
            len(pending),
        )
        settings = self.config.acquisition
        scheduler = AcquisitionScheduler(
            self.open_session,
            logger=self.logger,
            workers=settings.workers,
            max_retries=settings.max_retries,
            job_timeout=settings.job_timeout_seconds,
        )
        return scheduler.run(pending)

    # ------------------------------------------------------------------
    # Image pipeline
    # ------------------------------------------------------------------

    def build_frames(
        self,
        artifacts: Sequence[CheckpointArtifact],
        region: BoundingBox,
    ) -> List[Frame]:
        """Track the zoom window of every acquired artifact, in timestamp order."""
        frames: List[Frame] = []
        padding = self.config.detection.zoom_padding
        for artifact in sorted(artifacts, key=lambda a: (a.timestamp, a.image_name)):
            if not artifact.is_acquired:
                continue
            overlay_path = self.storage.overlay_path(artifact)
            try:
                zoom = load_zoom_window(overlay_path, region, padding)
            except MalformedArtifact as exc:
                self.logger.warning("Excluding %s: %s", artifact.image_name, exc)
                continue
            frames.append(
                Frame(
                    artifact=artifact,
                    screenshot_path=self.storage.screenshot_path(artifact),
                    overlay_path=overlay_path,
                    zoom=zoom,
                )
            )
        return frames

    def output_path(self, session_id: Optional[str]) -> Path:
        suffix = self.config.encoding.container_format
        return self.config.output_dir / f"animation-{session_id or 'checkpoints'}.{suffix}"

    def create_animation(self, frames: Sequence[Frame], region: BoundingBox, output_path: Path) -> Path:
        composition = self.config.composition
        encoding = self.config.encoding
        compositor = TimelapseCompositor(region, composition, logger=self.logger)
        encoder = FfmpegEncoder(logger=self.logger, quality=encoding.quality)

        self.logger.info("Creating animation from %s frames", len(frames))
        encoder.encode(
            compositor.render(frames),
            output_path,
            composition.fps,
            total=compositor.expected_frame_count(frames),
            dump_dir=self.config.frames_dir if encoding.dump_frames else None,
        )
        if encoding.transcode_to_mp4 and output_path.suffix.lower() != ".mp4":
            return encoder.transcode_to_mp4(output_path)
        return output_path

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.storage.ensure()
        session_id, artifacts = self.collect_checkpoints()
        if not artifacts:
            self.logger.error("No checkpoints found in %s", self.config.saves_dir)
            return EXIT_FAILURE
        self.logger.info("Processing session '%s' with %s checkpoints", session_id, len(artifacts))

        report = self.acquire(artifacts)
        try:
            report.raise_for_failures()
        except AggregateAcquisitionFailure as exc:
            self.logger.error("%s", exc)

        acquired = [artifact for artifact in artifacts if artifact.is_acquired]
        if not acquired:
            self.logger.error("No checkpoints were captured; nothing to compose")
            return EXIT_FAILURE

        reference = min(acquired, key=lambda a: (a.timestamp, a.image_name))
        try:
            region = load_reference_region(
                self.storage.screenshot_path(reference),
                self.config.detection.region_padding,
            )
        except RegionNotFound as exc:
            self.logger.error("Map region not found in %s: %s", reference.image_name, exc)
            return EXIT_FAILURE
        self.logger.info("Map bounds: x=%s y=%s size=%s", region.x, region.y, region.size)

        frames = self.build_frames(acquired, region)
        if not frames:
            self.logger.error("No usable frames after overlay tracking")
            return EXIT_FAILURE

        try:
            self.create_animation(frames, region, self.output_path(session_id))
        except (RuntimeError, OSError, subprocess.CalledProcessError) as exc:
            self.logger.error("Failed to create animation: %s", exc)
            return EXIT_FAILURE
        return EXIT_OK


__all__ = ["MapTimelapse"]

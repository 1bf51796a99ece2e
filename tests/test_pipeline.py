import logging
import os
import shutil
import sys
from datetime import datetime, timedelta
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from map_timelapse import MapTimelapse
from map_timelapse.acquisition import ArtifactStorage
from map_timelapse.config import (
    AcquisitionSettings,
    CompositionSettings,
    Config,
    DetectionSettings,
    EncodingSettings,
)
from map_timelapse.errors import AcquisitionError, AggregateAcquisitionFailure
from map_timelapse.models import SEA_COLOR, VOID_COLOR


def make_config(tmp_path: Path, **overrides) -> Config:
    values = dict(
        saves_dir=tmp_path / "saves",
        output_dir=tmp_path / "output",
        acquisition=AcquisitionSettings(workers=2, max_retries=3, job_timeout_seconds=5.0),
        detection=DetectionSettings(region_padding=2, zoom_padding=2),
        composition=CompositionSettings(
            fps=4,
            base_transition_frames=2,
            normalization=16.0,
            initial_hold_seconds=0.5,
            final_hold_seconds=0.5,
            output_resolution=16,
        ),
        encoding=EncodingSettings(container_format="mp4"),
    )
    values.update(overrides)
    return Config(**values)


def build_app(config: Config) -> MapTimelapse:
    app = MapTimelapse.__new__(MapTimelapse)
    app.config = config
    app.storage = ArtifactStorage(config.screenshots_dir, config.overlays_dir)
    app.logger = logging.getLogger("pipeline-tests")
    return app


def write_saves(saves_dir: Path, count: int) -> list[Path]:
    saves_dir.mkdir(parents=True, exist_ok=True)
    start = datetime(2024, 3, 1, 9, 0, 0)
    paths = []
    for index in range(count):
        when = start + timedelta(hours=index)
        path = saves_dir / f"Base_{when:%d%m%y-%H%M%S}.sav"
        path.write_bytes(b"save")
        os.utime(path, (when.timestamp(), when.timestamp()))
        paths.append(path)
    return paths


def map_screenshot(with_map: bool = True) -> np.ndarray:
    image = np.full((64, 64, 3), 90, dtype=np.uint8)
    if with_map:
        image[4:20, 4:20] = SEA_COLOR.to_bgr()
        image[50:61, 50:61] = VOID_COLOR.to_bgr()
    return image


class FakeRenderSession:
    def __init__(self, storage: ArtifactStorage, failing=(), with_map=True):
        self.storage = storage
        self.failing = set(failing)
        self.with_map = with_map

    def acquire(self, artifact, *, timeout=None):
        if artifact.artifact_id in self.failing:
            raise AcquisitionError("render crashed")
        overlay = np.zeros((64, 64, 4), dtype=np.uint8)
        offset = 10 + int(artifact.artifact_id[-2:]) % 20
        overlay[offset:offset + 4, offset:offset + 4] = (0, 0, 255, 255)
        cv2.imwrite(str(self.storage.screenshot_path(artifact)), map_screenshot(self.with_map))
        cv2.imwrite(str(self.storage.overlay_path(artifact)), overlay)

    def close(self):
        pass


def install_fakes(app: MapTimelapse, failing=(), with_map=True) -> list:
    captured = []

    def fake_session():
        return FakeRenderSession(app.storage, failing=failing, with_map=with_map)

    def fake_create_animation(frames, region, output_path):
        captured.append((list(frames), region, output_path))
        return output_path

    app.open_session = fake_session
    app.create_animation = fake_create_animation
    return captured


def test_partial_acquisition_failure_still_composes_successful_frames(tmp_path):
    config = make_config(tmp_path)
    saves = write_saves(config.saves_dir, 3)
    app = build_app(config)
    app.storage.ensure()
    install_fakes(app, failing={saves[1].stem})

    session_id, artifacts = app.collect_checkpoints()
    report = app.acquire(artifacts)

    assert session_id == "Base"
    with pytest.raises(AggregateAcquisitionFailure) as excinfo:
        report.raise_for_failures()
    assert excinfo.value.count == 1
    assert len(report.succeeded) == 2


def test_run_hands_successful_frames_to_compositor_in_order(tmp_path):
    config = make_config(tmp_path)
    saves = write_saves(config.saves_dir, 3)
    app = build_app(config)
    captured = install_fakes(app, failing={saves[1].stem})

    assert app.run() == 0

    frames, region, output_path = captured[0]
    assert [frame.artifact.artifact_id for frame in frames] == [saves[0].stem, saves[2].stem]
    assert frames[0].artifact.timestamp < frames[1].artifact.timestamp
    assert region.x == 2 and region.y == 2
    assert output_path == config.output_dir / "animation-Base.mp4"
    for frame in frames:
        assert frame.zoom.x >= 0 and frame.zoom.y >= 0
        assert frame.zoom.right <= region.size and frame.zoom.bottom <= region.size


def test_run_skips_checkpoints_captured_previously(tmp_path):
    config = make_config(tmp_path)
    write_saves(config.saves_dir, 2)
    app = build_app(config)
    captured = install_fakes(app)
    assert app.run() == 0

    calls = []
    app.open_session = lambda: calls.append("session") or FakeRenderSession(app.storage)
    assert app.run() == 0

    assert calls == []
    assert len(captured[-1][0]) == 2


def test_run_fails_when_region_not_found(tmp_path):
    config = make_config(tmp_path)
    write_saves(config.saves_dir, 2)
    app = build_app(config)
    captured = install_fakes(app, with_map=False)

    assert app.run() == 1
    assert captured == []


def test_run_fails_when_nothing_was_captured(tmp_path):
    config = make_config(tmp_path)
    saves = write_saves(config.saves_dir, 2)
    app = build_app(config)
    captured = install_fakes(app, failing={path.stem for path in saves})

    assert app.run() == 1
    assert captured == []


def test_run_fails_without_checkpoints(tmp_path):
    app = build_app(make_config(tmp_path))
    install_fakes(app)

    assert app.run() == 1


def test_malformed_overlay_is_excluded(tmp_path):
    config = make_config(tmp_path)
    saves = write_saves(config.saves_dir, 3)
    app = build_app(config)
    app.storage.ensure()
    captured = install_fakes(app)
    _, artifacts = app.collect_checkpoints()
    app.acquire(artifacts)
    app.storage.overlay_path(artifacts[1]).write_bytes(b"corrupt")

    assert app.run() == 0

    frames = captured[0][0]
    assert [frame.artifact.artifact_id for frame in frames] == [saves[0].stem, saves[2].stem]


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_create_animation_writes_video(tmp_path):
    config = make_config(tmp_path, encoding=EncodingSettings(container_format="mp4", dump_frames=True))
    write_saves(config.saves_dir, 2)
    app = build_app(config)
    app.open_session = lambda: FakeRenderSession(app.storage)

    assert app.run() == 0

    video_path = config.output_dir / "animation-Base.mp4"
    assert video_path.exists()
    capture = cv2.VideoCapture(str(video_path))
    try:
        success, frame = capture.read()
    finally:
        capture.release()
    assert success
    assert frame.shape[:2] == (16, 16)
    assert sorted(config.frames_dir.glob("*.png"))


def test_empty_saves_directory_is_seeded_from_import_dir(tmp_path):
    import_dir = tmp_path / "game-saves"
    write_saves(import_dir / "1234", 2)
    config = make_config(tmp_path, import_dir=import_dir)
    app = build_app(config)
    captured = install_fakes(app)

    assert app.run() == 0

    assert len(list(config.saves_dir.glob("*.sav"))) == 2
    assert len(captured[0][0]) == 2


def test_import_dir_ignored_when_saves_exist(tmp_path):
    import_dir = tmp_path / "game-saves"
    write_saves(import_dir, 3)
    config = make_config(tmp_path, import_dir=import_dir)
    write_saves(config.saves_dir, 1)
    app = build_app(config)

    assert app.import_checkpoints_if_empty() == 0
    assert len(list(config.saves_dir.glob("*.sav"))) == 1

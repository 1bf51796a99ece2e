import logging
import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import cv2
import numpy as np
import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from map_timelapse.acquisition import (
    ArtifactStorage,
    RenderServiceSession,
    validate_overlay,
    validate_screenshot,
)
from map_timelapse.errors import AcquisitionError
from map_timelapse.models import SEA_COLOR, CheckpointArtifact

LOGGER = logging.getLogger("acquisition-tests")


def png_bytes(image: np.ndarray) -> bytes:
    success, buffer = cv2.imencode(".png", image)
    assert success
    return buffer.tobytes()


def screenshot_bytes(with_sea: bool = True) -> bytes:
    image = np.zeros((32, 32, 3), dtype=np.uint8)
    if with_sea:
        image[4:10, 4:10] = SEA_COLOR.to_bgr()
    return png_bytes(image)


def overlay_bytes() -> bytes:
    overlay = np.zeros((32, 32, 4), dtype=np.uint8)
    overlay[8:12, 8:12] = (0, 0, 255, 255)
    return png_bytes(overlay)


class FakeResponse:
    def __init__(self, payload=None, content=b"", status_code=200, url="http://render"):
        self._payload = payload
        self.content = content
        self.status_code = status_code
        self.url = url

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeRenderService:
    def __init__(self, statuses, screenshot=None, overlay=None):
        self.statuses = list(statuses)
        self.screenshot = screenshot if screenshot is not None else screenshot_bytes()
        self.overlay = overlay if overlay is not None else overlay_bytes()
        self.requests = []

    def __call__(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url))
        if method == "POST":
            return FakeResponse({"id": "r1"})
        if url.endswith("/screenshot"):
            return FakeResponse(content=self.screenshot)
        if url.endswith("/overlay"):
            return FakeResponse(content=self.overlay)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return FakeResponse(status)


def make_artifact(tmp_path: Path) -> CheckpointArtifact:
    source = tmp_path / "Base_010124-000000.sav"
    source.write_bytes(b"save")
    return CheckpointArtifact(
        artifact_id="Base_010124-000000",
        session_id="Base",
        timestamp=datetime(2024, 1, 1),
        image_name="20240101000000__Base_Base_010124-000000.png",
        source_path=source,
    )


def make_session(tmp_path: Path) -> RenderServiceSession:
    storage = ArtifactStorage(tmp_path / "screenshots", tmp_path / "overlays")
    storage.ensure()
    return RenderServiceSession(
        "http://render/",
        storage,
        logger=LOGGER,
        poll_interval=0,
    )


def test_acquire_polls_until_ready_and_writes_rasters(tmp_path):
    session = make_session(tmp_path)
    artifact = make_artifact(tmp_path)
    service = FakeRenderService([{"status": "pending"}, {"status": "pending"}, {"status": "done"}])

    with patch.object(session.http, "request", side_effect=service):
        session.acquire(artifact, timeout=60)

    status_polls = [url for method, url in service.requests if url == "http://render/renders/r1"]
    assert len(status_polls) == 3
    assert session.storage.screenshot_path(artifact).read_bytes() == service.screenshot
    assert session.storage.overlay_path(artifact).read_bytes() == service.overlay
    assert not list(session.storage.screenshots_dir.glob(".tmp_*"))


def test_failed_render_raises(tmp_path):
    session = make_session(tmp_path)
    service = FakeRenderService([{"status": "failed", "error": "bad save"}])

    with patch.object(session.http, "request", side_effect=service):
        with pytest.raises(AcquisitionError, match="bad save"):
            session.acquire(make_artifact(tmp_path))


def test_render_timeout_raises(tmp_path):
    session = make_session(tmp_path)
    service = FakeRenderService([{"status": "pending"}])

    with patch.object(session.http, "request", side_effect=service):
        with pytest.raises(AcquisitionError, match="timed out"):
            session.acquire(make_artifact(tmp_path), timeout=1e-9)


def test_screenshot_without_map_is_rejected(tmp_path):
    session = make_session(tmp_path)
    artifact = make_artifact(tmp_path)
    service = FakeRenderService([{"status": "done"}], screenshot=screenshot_bytes(with_sea=False))

    with patch.object(session.http, "request", side_effect=service):
        with pytest.raises(AcquisitionError):
            session.acquire(artifact)

    assert not session.storage.screenshot_path(artifact).exists()


def test_http_errors_become_acquisition_errors(tmp_path):
    session = make_session(tmp_path)

    with patch.object(session.http, "request", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(AcquisitionError, match="refused"):
            session.acquire(make_artifact(tmp_path))


def test_missing_source_file_is_acquisition_error(tmp_path):
    session = make_session(tmp_path)
    artifact = make_artifact(tmp_path)
    artifact.source_path.unlink()

    with pytest.raises(AcquisitionError):
        session.acquire(artifact)


def test_validate_payloads():
    assert validate_screenshot(screenshot_bytes()).shape == (32, 32, 3)
    assert validate_overlay(overlay_bytes()).shape == (32, 32, 4)
    with pytest.raises(AcquisitionError):
        validate_screenshot(b"not an image")
    with pytest.raises(AcquisitionError):
        validate_overlay(screenshot_bytes())

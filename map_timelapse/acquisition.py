"""Acquisition of checkpoint screenshots and overlays from a render service."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import cv2
import numpy as np
import requests

from map_timelapse.errors import AcquisitionError
from map_timelapse.models import CheckpointArtifact
from map_timelapse.regions import has_sea_color


@dataclass(frozen=True)
class ArtifactStorage:
    """Deterministic on-disk locations for acquired rasters."""

    screenshots_dir: Path
    overlays_dir: Path

    def ensure(self) -> None:
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        self.overlays_dir.mkdir(parents=True, exist_ok=True)

    def screenshot_path(self, artifact: CheckpointArtifact) -> Path:
        return self.screenshots_dir / artifact.image_name

    def overlay_path(self, artifact: CheckpointArtifact) -> Path:
        return self.overlays_dir / artifact.image_name


class AcquisitionSession(Protocol):
    """A heavyweight rendering session owned by exactly one worker."""

    def acquire(self, artifact: CheckpointArtifact, *, timeout: Optional[float] = None) -> None:
        """Render ``artifact`` and persist its screenshot and overlay, or raise `AcquisitionError`."""

    def close(self) -> None:
        """Release the session."""


def _write_atomic(path: Path, content: bytes) -> None:
    temp_path = path.with_name(f".tmp_{uuid.uuid4().hex}_{path.name}")
    try:
        temp_path.write_bytes(content)
        temp_path.replace(path)
    finally:
        temp_path.unlink(missing_ok=True)


def validate_screenshot(content: bytes) -> np.ndarray:
    """Decode a screenshot and ensure the map actually rendered into it."""
    image = cv2.imdecode(np.frombuffer(content, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise AcquisitionError("Screenshot payload is not a decodable image")
    if not has_sea_color(image):
        raise AcquisitionError("Screenshot does not show the rendered map")
    return image


def validate_overlay(content: bytes) -> np.ndarray:
    overlay = cv2.imdecode(np.frombuffer(content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if overlay is None:
        raise AcquisitionError("Overlay payload is not a decodable image")
    if overlay.ndim != 3 or overlay.shape[2] != 4:
        raise AcquisitionError("Overlay payload has no alpha channel")
    return overlay


class RenderServiceSession:
    """Drive a map render service over HTTP for one worker's lifetime.

    The service accepts a checkpoint upload, renders it asynchronously and
    exposes a status endpoint, which is polled until the render is ready.
    """

    def __init__(
        self,
        base_url: str,
        storage: ArtifactStorage,
        *,
        logger: logging.Logger,
        http_timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self.logger = logger
        self.http_timeout = http_timeout
        self.poll_interval = poll_interval
        self.http = requests.Session()
        self.http.headers.update({"User-Agent": "map-timelapse"})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, timeout=self.http_timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise AcquisitionError(f"{method} {url} failed: {exc}") from exc
        return response

    def _json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise AcquisitionError(f"Invalid JSON from {response.url}") from exc
        if not isinstance(payload, dict):
            raise AcquisitionError(f"Unexpected payload from {response.url}")
        return payload

    def _submit(self, artifact: CheckpointArtifact) -> str:
        if artifact.source_path is None:
            raise AcquisitionError(f"Checkpoint {artifact.artifact_id} has no source file")
        try:
            with artifact.source_path.open("rb") as handle:
                response = self._request(
                    "POST",
                    "/renders",
                    files={"checkpoint": (artifact.source_path.name, handle)},
                    data={"image_name": artifact.image_name},
                )
        except OSError as exc:
            raise AcquisitionError(f"Failed to read checkpoint {artifact.source_path}: {exc}") from exc

        render_id = self._json(response).get("id")
        if not render_id:
            raise AcquisitionError(f"Render service returned no id for {artifact.artifact_id}")
        return str(render_id)

    def _wait_until_ready(self, render_id: str, deadline: Optional[float]) -> None:
        while True:
            status = self._json(self._request("GET", f"/renders/{render_id}"))
            state = status.get("status")
            if state == "done":
                return
            if state == "failed":
                raise AcquisitionError(
                    f"Render {render_id} failed: {status.get('error', 'unknown error')}"
                )
            if deadline is not None and time.monotonic() >= deadline:
                raise AcquisitionError(f"Render {render_id} timed out in state '{state}'")
            time.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def acquire(self, artifact: CheckpointArtifact, *, timeout: Optional[float] = None) -> None:
        deadline = time.monotonic() + timeout if timeout else None
        render_id = self._submit(artifact)
        self.logger.debug("Submitted %s as render %s", artifact.image_name, render_id)

        self._wait_until_ready(render_id, deadline)

        screenshot = self._request("GET", f"/renders/{render_id}/screenshot").content
        overlay = self._request("GET", f"/renders/{render_id}/overlay").content
        validate_screenshot(screenshot)
        validate_overlay(overlay)

        try:
            _write_atomic(self.storage.screenshot_path(artifact), screenshot)
            _write_atomic(self.storage.overlay_path(artifact), overlay)
        except OSError as exc:
            raise AcquisitionError(f"Failed to store rasters for {artifact.image_name}: {exc}") from exc

        self.logger.info("Saved map '%s'", artifact.image_name)

    def close(self) -> None:
        self.http.close()


__all__ = [
    "AcquisitionSession",
    "ArtifactStorage",
    "RenderServiceSession",
    "validate_overlay",
    "validate_screenshot",
]

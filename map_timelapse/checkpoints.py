"""Checkpoint discovery and naming helpers for the map timelapse pipeline."""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from map_timelapse.errors import MalformedArtifact
from map_timelapse.models import CheckpointArtifact

LOGGER = logging.getLogger(__name__)

SESSION_FROM_NAME = re.compile(r"^(.*?)_\d{6}-\d{6}")
LEGACY_SESSION_HEADER = re.compile(rb"\?sessionName=([^?]*)\?")
IGNORED_MARKERS = ("_autosave_", "_continue.sav")
HEADER_PROBE_BYTES = 4096


def image_name(name: str, timestamp: datetime) -> str:
    """Return a file name whose lexicographic order matches ``timestamp`` order."""
    return f"{timestamp.strftime('%Y%m%d%H%M%S')}__{name}.png"


def session_from_filename(filename: str) -> Optional[str]:
    match = SESSION_FROM_NAME.match(filename)
    return match.group(1) if match else None


def is_legacy_save(path: Path) -> bool:
    """Saves from older game versions carry ``?sessionName=...?`` on their first line."""
    with path.open("rb") as handle:
        first_line = handle.readline(HEADER_PROBE_BYTES)
    return LEGACY_SESSION_HEADER.search(first_line) is not None


def _is_candidate(path: Path, suffix: str) -> bool:
    if not path.is_file() or path.suffix.lower() != suffix.lower():
        return False
    lowered = path.name.lower()
    return not any(marker in lowered for marker in IGNORED_MARKERS)


def load_checkpoint(path: Path) -> CheckpointArtifact:
    """Build an artifact for a checkpoint file, raising `MalformedArtifact` when unreadable."""
    try:
        stat = path.stat()
    except OSError as exc:
        raise MalformedArtifact(f"Failed to read checkpoint {path}: {exc}") from exc
    if stat.st_size == 0:
        raise MalformedArtifact(f"Checkpoint file is empty: {path}")

    session_id = session_from_filename(path.name)
    timestamp = datetime.fromtimestamp(stat.st_mtime)
    artifact_id = path.stem
    name = f"{session_id}_{artifact_id}" if session_id else artifact_id
    return CheckpointArtifact(
        artifact_id=artifact_id,
        session_id=session_id,
        timestamp=timestamp,
        image_name=image_name(name, timestamp),
        source_path=path,
    )


def discover_checkpoints(
    saves_dir: Path,
    suffix: str = ".sav",
    *,
    logger: Optional[logging.Logger] = None,
) -> List[CheckpointArtifact]:
    """Collect checkpoint artifacts ordered chronologically, skipping malformed and legacy files."""
    log = logger or LOGGER
    if not saves_dir.exists():
        return []

    artifacts: List[CheckpointArtifact] = []
    legacy = 0
    for path in sorted(saves_dir.iterdir()):
        if not _is_candidate(path, suffix):
            continue
        try:
            if is_legacy_save(path):
                legacy += 1
                continue
            artifacts.append(load_checkpoint(path))
        except OSError as exc:
            log.warning("Skipping checkpoint %s: %s", path.name, exc)
        except MalformedArtifact as exc:
            log.warning("Skipping checkpoint: %s", exc)

    if legacy:
        log.warning(
            "%s checkpoint files were skipped because they use an outdated save format; "
            "open and re-save them in-game to include them",
            legacy,
        )

    artifacts.sort(key=lambda artifact: (artifact.timestamp, artifact.image_name))
    return artifacts


def _import_source(import_dir: Path) -> Path:
    """Prefer the first numeric player folder, as laid out by the game's save root."""
    for entry in sorted(import_dir.iterdir()):
        if entry.is_dir() and entry.name.isdigit():
            return entry
    return import_dir


def import_checkpoints(
    import_dir: Path,
    saves_dir: Path,
    suffix: str = ".sav",
    *,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Copy checkpoint files from ``import_dir`` into ``saves_dir``; returns the number copied."""
    log = logger or LOGGER
    if not import_dir.is_dir():
        log.warning("Checkpoint import directory does not exist: %s", import_dir)
        return 0

    source = _import_source(import_dir)
    saves_dir.mkdir(parents=True, exist_ok=True)
    copied = 0
    for path in sorted(source.iterdir()):
        if not _is_candidate(path, suffix):
            continue
        try:
            shutil.copy2(path, saves_dir / path.name)
        except OSError as exc:
            log.error("Failed to import checkpoint %s: %s", path, exc)
            continue
        copied += 1

    log.info("Imported %s checkpoint files from %s", copied, source)
    return copied


def group_by_session(artifacts: Iterable[CheckpointArtifact]) -> Dict[str, List[CheckpointArtifact]]:
    """Group artifacts by session id; artifacts without a session are dropped."""
    groups: Dict[str, List[CheckpointArtifact]] = {}
    for artifact in artifacts:
        if artifact.session_id is None:
            continue
        groups.setdefault(artifact.session_id, []).append(artifact)
    return groups


def select_session(
    groups: Dict[str, List[CheckpointArtifact]],
    preferred: Optional[str] = None,
) -> tuple[Optional[str], List[CheckpointArtifact]]:
    """Pick the configured session, else the one holding the newest checkpoint."""
    if not groups:
        return None, []
    if preferred is not None:
        return preferred, sorted(groups.get(preferred, []), key=lambda a: a.timestamp)

    newest = max(
        groups.items(),
        key=lambda item: max(artifact.timestamp for artifact in item[1]),
    )
    return newest[0], sorted(newest[1], key=lambda a: a.timestamp)


def mark_existing_outputs(
    artifacts: Iterable[CheckpointArtifact],
    screenshots_dir: Path,
    overlays_dir: Path,
) -> None:
    """Set acquisition flags for artifacts whose rasters survive from an earlier run."""
    for artifact in artifacts:
        artifact.has_screenshot = (screenshots_dir / artifact.image_name).exists()
        artifact.has_overlay = (overlays_dir / artifact.image_name).exists()


__all__ = [
    "discover_checkpoints",
    "group_by_session",
    "image_name",
    "import_checkpoints",
    "is_legacy_save",
    "load_checkpoint",
    "mark_existing_outputs",
    "select_session",
    "session_from_filename",
]

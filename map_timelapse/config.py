"""Configuration dataclasses and loading helpers for the map timelapse pipeline."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _parse_positive_float(value: Any, default: float) -> float:
    """Parse a strictly positive float with fallback to default."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _parse_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_background_color(value: Any) -> Tuple[int, int, int]:
    """Parse ``#RRGGBB`` strings or RGB triplets into a BGR tuple."""
    default = (0, 0, 0)

    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            r, g, b = (max(0, min(255, int(channel))) for channel in value)
        except (TypeError, ValueError):
            return default
        return (b, g, r)

    if isinstance(value, str):
        hex_value = value.strip().lstrip("#")
        if len(hex_value) == 6:
            try:
                r = int(hex_value[0:2], 16)
                g = int(hex_value[2:4], 16)
                b = int(hex_value[4:6], 16)
                return (b, g, r)
            except ValueError:
                return default

    return default


@dataclass(frozen=True)
class AcquisitionSettings:
    """Settings for the acquisition worker pool and render service."""

    render_url: str = "http://localhost:8080"
    workers: int = 2
    max_retries: int = 3
    job_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 2.0
    http_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class DetectionSettings:
    """Padding applied around the detected map region and zoom windows."""

    region_padding: int = 256
    zoom_padding: int = 256


@dataclass(frozen=True)
class CompositionSettings:
    """Timing and geometry of the composited animation."""

    fps: int = 30
    base_transition_frames: int = 8
    normalization: float = 500.0
    initial_hold_seconds: float = 2.0
    final_hold_seconds: float = 5.0
    output_resolution: int = 2048
    background_color: Tuple[int, int, int] = (0, 0, 0)
    intro_zoom: bool = False

    @property
    def frame_duration(self) -> float:
        return 1.0 / self.fps

    @property
    def initial_hold_frames(self) -> int:
        return max(1, int(round(self.initial_hold_seconds * self.fps)))

    @property
    def final_hold_frames(self) -> int:
        return max(1, int(round(self.final_hold_seconds * self.fps)))


@dataclass(frozen=True)
class EncodingSettings:
    """Encoder output options."""

    quality: int = 16
    container_format: str = "mp4"
    transcode_to_mp4: bool = True
    dump_frames: bool = False


@dataclass(frozen=True)
class Config:
    """Root configuration object for the map timelapse pipeline."""

    saves_dir: Path = Path("saves")
    import_dir: Optional[Path] = None
    output_dir: Path = Path("output")
    checkpoint_suffix: str = ".sav"
    session: Optional[str] = None
    log_file: Optional[Path] = None
    acquisition: AcquisitionSettings = field(default_factory=AcquisitionSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    composition: CompositionSettings = field(default_factory=CompositionSettings)
    encoding: EncodingSettings = field(default_factory=EncodingSettings)

    @property
    def screenshots_dir(self) -> Path:
        return self.output_dir / "screenshots"

    @property
    def overlays_dir(self) -> Path:
        return self.output_dir / "overlays"

    @property
    def frames_dir(self) -> Path:
        return self.output_dir / "frames"


def _parse_acquisition(raw: Mapping[str, Any]) -> AcquisitionSettings:
    default = AcquisitionSettings()
    if not isinstance(raw, Mapping):
        return default
    return AcquisitionSettings(
        render_url=str(raw.get("render_url", default.render_url)).rstrip("/"),
        workers=_parse_positive_int(raw.get("workers"), default.workers),
        max_retries=_parse_non_negative_int(raw.get("max_retries"), default.max_retries),
        job_timeout_seconds=_parse_positive_float(
            raw.get("job_timeout_seconds"),
            default.job_timeout_seconds,
        ),
        poll_interval_seconds=_parse_positive_float(
            raw.get("poll_interval_seconds"),
            default.poll_interval_seconds,
        ),
        http_timeout_seconds=_parse_positive_float(
            raw.get("http_timeout_seconds"),
            default.http_timeout_seconds,
        ),
    )


def _parse_detection(raw: Mapping[str, Any]) -> DetectionSettings:
    default = DetectionSettings()
    if not isinstance(raw, Mapping):
        return default
    return DetectionSettings(
        region_padding=_parse_non_negative_int(raw.get("region_padding"), default.region_padding),
        zoom_padding=_parse_non_negative_int(raw.get("zoom_padding"), default.zoom_padding),
    )


def _parse_composition(raw: Mapping[str, Any]) -> CompositionSettings:
    default = CompositionSettings()
    if not isinstance(raw, Mapping):
        return default
    background = raw.get("background_color")
    return CompositionSettings(
        fps=_parse_positive_int(raw.get("fps"), default.fps),
        base_transition_frames=_parse_positive_int(
            raw.get("base_transition_frames"),
            default.base_transition_frames,
        ),
        normalization=_parse_positive_float(raw.get("normalization"), default.normalization),
        initial_hold_seconds=_parse_non_negative_float(
            raw.get("initial_hold_seconds"),
            default.initial_hold_seconds,
        ),
        final_hold_seconds=_parse_non_negative_float(
            raw.get("final_hold_seconds"),
            default.final_hold_seconds,
        ),
        output_resolution=_parse_positive_int(
            raw.get("output_resolution"),
            default.output_resolution,
        ),
        background_color=(
            _parse_background_color(background)
            if background is not None
            else default.background_color
        ),
        intro_zoom=_parse_bool(raw.get("intro_zoom"), default.intro_zoom),
    )


def _parse_encoding(raw: Mapping[str, Any]) -> EncodingSettings:
    default = EncodingSettings()
    if not isinstance(raw, Mapping):
        return default
    container_format = str(raw.get("container_format", default.container_format)).lower().lstrip(".")
    if container_format not in {"mp4", "gif"}:
        container_format = default.container_format
    return EncodingSettings(
        quality=_parse_positive_int(raw.get("quality"), default.quality),
        container_format=container_format,
        transcode_to_mp4=_parse_bool(raw.get("transcode_to_mp4"), default.transcode_to_mp4),
        dump_frames=_parse_bool(raw.get("dump_frames"), default.dump_frames),
    )


def _parse_config(data: Mapping[str, Any]) -> Config:
    log_file = _parse_optional_str(data.get("log_file"))
    import_dir = _parse_optional_str(data.get("import_dir"))
    return Config(
        saves_dir=Path(data.get("saves_dir", "saves")),
        import_dir=Path(import_dir) if import_dir else None,
        output_dir=Path(data.get("output_dir", "output")),
        checkpoint_suffix=str(data.get("checkpoint_suffix", ".sav")),
        session=_parse_optional_str(data.get("session")),
        log_file=Path(log_file) if log_file else None,
        acquisition=_parse_acquisition(data.get("acquisition", {})),
        detection=_parse_detection(data.get("detection", {})),
        composition=_parse_composition(data.get("composition", {})),
        encoding=_parse_encoding(data.get("encoding", {})),
    )


def _load_env_config(env: Mapping[str, str]) -> Config:
    """Fallback configuration derived from environment variables."""
    return _parse_config(
        {
            "saves_dir": env.get("SAVES_DIR", "saves"),
            "import_dir": env.get("IMPORT_DIR"),
            "output_dir": env.get("OUTPUT_DIR", "output"),
            "checkpoint_suffix": env.get("CHECKPOINT_SUFFIX", ".sav"),
            "session": env.get("SESSION"),
            "log_file": env.get("LOG_FILE"),
            "acquisition": {
                "render_url": env.get("RENDER_URL", AcquisitionSettings.render_url),
                "workers": env.get("WORKERS"),
                "max_retries": env.get("MAX_RETRIES"),
                "job_timeout_seconds": env.get("JOB_TIMEOUT_SECONDS"),
                "poll_interval_seconds": env.get("POLL_INTERVAL_SECONDS"),
            },
            "detection": {
                "region_padding": env.get("REGION_PADDING"),
                "zoom_padding": env.get("ZOOM_PADDING"),
            },
            "composition": {
                "fps": env.get("FPS"),
                "base_transition_frames": env.get("TRANSITION_FRAMES"),
                "normalization": env.get("MOTION_NORMALIZATION"),
                "output_resolution": env.get("OUTPUT_RESOLUTION"),
                "background_color": env.get("BACKGROUND_COLOR"),
            },
            "encoding": {
                "quality": env.get("VIDEO_QUALITY"),
                "container_format": env.get("CONTAINER_FORMAT", "mp4"),
                "dump_frames": env.get("DUMP_FRAMES"),
            },
        }
    )


def load_config(config_path: Path | str, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from JSON file or environment defaults."""
    source_env = env if env is not None else os.environ
    path = Path(config_path)

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return _parse_config(data)

    return _load_env_config(source_env)


__all__ = [
    "AcquisitionSettings",
    "CompositionSettings",
    "Config",
    "DetectionSettings",
    "EncodingSettings",
    "load_config",
]

"""Logging configuration for the map timelapse pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_FILENAME = "map_timelapse.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"


def _open_log_file(log_file: Union[str, Path]) -> tuple[Optional[logging.Handler], Optional[str]]:
    """Open ``log_file``, falling back to the working directory when its parent is unusable."""
    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8"), None
    except OSError as exc:
        fallback_path = Path.cwd() / log_path.name
        try:
            handler = logging.FileHandler(fallback_path, encoding="utf-8")
        except OSError as fallback_exc:
            return None, f"Logging to console only; cannot open {log_path} or {fallback_path}: {fallback_exc}"
        return handler, f"Cannot open {log_path} ({exc}); logging to {fallback_path}"


def configure_logging(
    logger_name: str = "map_timelapse",
    *,
    log_file: Union[str, Path, None] = None,
) -> logging.Logger:
    """Send INFO and above to the console and, when given, ``log_file``."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    problem: Optional[str] = None
    if log_file:
        file_handler, problem = _open_log_file(log_file)
        if file_handler:
            handlers.append(file_handler)

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=logging.INFO, handlers=handlers, force=True)

    logger = logging.getLogger(logger_name)
    if problem:
        logger.warning(problem)
    return logger


__all__ = ["DEFAULT_LOG_FILENAME", "configure_logging"]

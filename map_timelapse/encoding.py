"""FFmpeg-backed encoding of composited frame streams."""

from __future__ import annotations

import logging
import shutil
import subprocess
import uuid
from pathlib import Path
from time import perf_counter
from typing import Iterable, List, Optional

import cv2
import numpy as np

from map_timelapse.progress import eta_string, should_report

EVEN_DIMENSIONS_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"


def _require_ffmpeg() -> None:
    if shutil.which("ffmpeg") is None:
        raise RuntimeError("ffmpeg not found on PATH. Install ffmpeg with libx264.")


def _temp_output(output_path: Path) -> Path:
    temp_output = output_path.with_name(f".tmp_{uuid.uuid4().hex}_{output_path.name}")
    temp_output.unlink(missing_ok=True)
    return temp_output


def mp4_codec_args(quality: int) -> List[str]:
    return [
        "-vf",
        EVEN_DIMENSIONS_FILTER,
        "-c:v",
        "libx264",
        "-crf",
        str(quality),
        "-preset",
        "veryslow",
        "-pix_fmt",
        "yuv420p",
        "-movflags",
        "+faststart",
    ]


def gif_codec_args() -> List[str]:
    return [
        "-filter_complex",
        f"[0:v]{EVEN_DIMENSIONS_FILTER},split[a][b];[a]palettegen[p];[b][p]paletteuse",
        "-loop",
        "0",
    ]


class FfmpegEncoder:
    """Pipe rasters into ffmpeg, one PNG at a time."""

    def __init__(self, *, logger: logging.Logger, quality: int = 16) -> None:
        self.logger = logger
        self.quality = quality

    def _codec_args(self, output_path: Path) -> List[str]:
        if output_path.suffix.lower() == ".gif":
            return gif_codec_args()
        return mp4_codec_args(self.quality)

    def encode(
        self,
        frames: Iterable[np.ndarray],
        output_path: Path,
        fps: int,
        *,
        total: Optional[int] = None,
        dump_dir: Optional[Path] = None,
    ) -> int:
        """Encode ``frames`` at ``fps`` into ``output_path``; returns the frame count."""
        _require_ffmpeg()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if dump_dir is not None:
            dump_dir.mkdir(parents=True, exist_ok=True)

        temp_output = _temp_output(output_path)
        cmd = [
            "ffmpeg",
            "-y",
            "-loglevel",
            "error",
            "-f",
            "image2pipe",
            "-vcodec",
            "png",
            "-framerate",
            str(fps),
            "-i",
            "-",
            *self._codec_args(output_path),
            str(temp_output),
        ]

        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )

        written = 0
        progress_start = perf_counter()
        try:
            if process.stdin is None:
                raise RuntimeError("FFmpeg stdin unavailable")
            for frame in frames:
                success, buffer = cv2.imencode(".png", frame)
                if not success:
                    raise RuntimeError(f"Failed to encode frame {written} as PNG")
                frame_bytes = buffer.tobytes()
                if dump_dir is not None:
                    (dump_dir / f"{written:06d}.png").write_bytes(frame_bytes)
                try:
                    process.stdin.write(frame_bytes)
                except BrokenPipeError:
                    break
                written += 1

                if total and should_report(written, total):
                    self.logger.info(
                        "Encoding progress: %s/%s frames (%0.1f%%, %s)",
                        written,
                        total,
                        (written / total) * 100.0,
                        eta_string(perf_counter() - progress_start, written, total),
                    )
        except BaseException:
            process.kill()
            process.wait()
            temp_output.unlink(missing_ok=True)
            raise
        finally:
            if process.stdin is not None:
                try:
                    process.stdin.close()
                except OSError:
                    pass

        stderr_bytes = process.stderr.read() if process.stderr is not None else b""
        if process.stderr is not None:
            process.stderr.close()

        return_code = process.wait()
        if return_code != 0:
            temp_output.unlink(missing_ok=True)
            raise subprocess.CalledProcessError(return_code, cmd, stderr=stderr_bytes)

        temp_output.replace(output_path)
        self.logger.info("Animation created: %s (%s frames)", output_path, written)
        return written

    def transcode_to_mp4(self, container_path: Path) -> Path:
        """Convert an encoded container into an H.264 MP4 next to it."""
        _require_ffmpeg()
        video_path = container_path.with_suffix(".mp4")
        if video_path == container_path:
            return container_path

        temp_output = _temp_output(video_path)
        cmd = [
            "ffmpeg",
            "-y",
            "-loglevel",
            "error",
            "-i",
            str(container_path),
            *mp4_codec_args(self.quality),
            str(temp_output),
        ]
        result = subprocess.run(cmd, capture_output=True, check=False)
        if result.returncode != 0:
            temp_output.unlink(missing_ok=True)
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd,
                output=result.stdout,
                stderr=result.stderr,
            )

        temp_output.replace(video_path)
        self.logger.info("Video created: %s", video_path)
        return video_path


__all__ = ["FfmpegEncoder"]

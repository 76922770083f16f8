"""Wrapper utilities for retrieving media information using ffprobe."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Optional

from config.settings import FFPROBE_BIN, FFPROBE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class MediaInfo:
    duration: Optional[float]
    width: Optional[int]
    height: Optional[int]
    fps: Optional[float]
    video_codec: Optional[str]
    audio_codec: Optional[str]
    container: Optional[str]
    size_bytes: Optional[int] = None

    @property
    def has_video(self) -> bool:
        return self.video_codec is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps if self.fps and self.fps > 0 else 1.0 / 30.0


def _run_ffprobe(file_path: str, entries: list[str]) -> dict:
    command = [
        FFPROBE_BIN,
        "-v",
        "error",
        "-print_format",
        "json",
        *entries,
        str(file_path),
    ]

    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            timeout=FFPROBE_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as exc:
        raise RuntimeError("ffprobe is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe timed out while probing: {file_path}") from exc
    except subprocess.CalledProcessError as exc:
        stderr_text = (exc.stderr or "").strip()
        raise RuntimeError(f"ffprobe failed for {file_path}: {stderr_text or exc}") from exc

    try:
        return json.loads(completed.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"ffprobe returned invalid JSON for {file_path}") from exc


def get_media_duration(file_path: str) -> float:
    """Return media duration in seconds using ``ffprobe`` JSON output.

    Raises:
        RuntimeError: If ``ffprobe`` execution fails or the command is missing.
        ValueError: If duration data is missing or not parseable as a float.
    """
    payload = _run_ffprobe(file_path, ["-show_format"])

    duration_value = (payload.get("format") or {}).get("duration")
    if duration_value in (None, ""):
        raise ValueError(f"ffprobe did not return a duration for {file_path}")

    try:
        return float(duration_value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"ffprobe returned a non-numeric duration for {file_path}") from exc


def parse_frame_rate(value) -> Optional[float]:
    """Parse ffprobe's ``r_frame_rate`` (``"30000/1001"``) into a float."""
    raw = str(value or "").strip()
    if not raw:
        return None
    num, sep, den = raw.partition("/")
    try:
        numerator = float(num)
        denominator = float(den) if sep else 1.0
    except ValueError:
        return None
    if denominator == 0 or numerator <= 0:
        return None
    return numerator / denominator


def parse_probe_payload(payload: dict) -> MediaInfo:
    """Build :class:`MediaInfo` from ffprobe ``-show_format -show_streams`` JSON."""
    fmt = payload.get("format") if isinstance(payload, dict) else None
    fmt = fmt if isinstance(fmt, dict) else {}

    duration = None
    try:
        duration = float(fmt.get("duration"))
    except (TypeError, ValueError):
        duration = None

    container = None
    format_name = str(fmt.get("format_name") or "").strip().lower()
    if format_name:
        container = format_name.split(",")[0].strip() or None

    size_bytes = None
    try:
        size_bytes = int(fmt.get("size"))
    except (TypeError, ValueError):
        size_bytes = None

    width = height = None
    fps = None
    video_codec = audio_codec = None
    streams = payload.get("streams") if isinstance(payload, dict) else None
    for stream in streams if isinstance(streams, list) else []:
        if not isinstance(stream, dict):
            continue
        codec_type = str(stream.get("codec_type") or "").strip().lower()
        codec_name = str(stream.get("codec_name") or "").strip().lower() or None
        if codec_type == "video" and video_codec is None:
            if (stream.get("disposition") or {}).get("attached_pic"):
                continue
            video_codec = codec_name
            width = stream.get("width")
            height = stream.get("height")
            fps = parse_frame_rate(stream.get("avg_frame_rate")) or parse_frame_rate(
                stream.get("r_frame_rate")
            )
        elif codec_type == "audio" and audio_codec is None:
            audio_codec = codec_name

    return MediaInfo(
        duration=duration,
        width=int(width) if width else None,
        height=int(height) if height else None,
        fps=fps,
        video_codec=video_codec,
        audio_codec=audio_codec,
        container=container,
        size_bytes=size_bytes,
    )


def probe_media(file_path: str) -> MediaInfo:
    """Return container, stream and geometry details for ``file_path``."""
    payload = _run_ffprobe(file_path, ["-show_format", "-show_streams"])
    return parse_probe_payload(payload)

"""Application settings constants."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


# Scratch directory shared by all jobs; files are namespaced by job id.
SCRATCH_DIR = Path(
    os.environ.get("CLIPPER_SCRATCH_DIR", Path(tempfile.gettempdir()) / "clipper")
).resolve()

LOG_DIR = os.environ.get("CLIPPER_LOG_DIR") or None

# External toolchain binaries.
FFMPEG_BIN = os.environ.get("CLIPPER_FFMPEG", "ffmpeg")
FFPROBE_BIN = os.environ.get("CLIPPER_FFPROBE", "ffprobe")
YTDLP_BIN = os.environ.get("CLIPPER_YTDLP", "yt-dlp")

# Acquisition tier wall-clock limits.
PRIMARY_DOWNLOAD_TIMEOUT_SECONDS = _env_float("CLIPPER_PRIMARY_TIMEOUT", 10 * 60)
SECONDARY_DOWNLOAD_TIMEOUT_SECONDS = _env_float("CLIPPER_SECONDARY_TIMEOUT", 5 * 60)
FFPROBE_TIMEOUT_SECONDS = 15

MAX_CLIP_SECONDS = _env_float("CLIPPER_MAX_CLIP_SECONDS", 120)
MAX_SOURCE_HEIGHT = 1080

PORTRAIT_WIDTH = 1080
PORTRAIT_HEIGHT = 1920

PLACEHOLDER_COLOR = "blue"
PLACEHOLDER_WIDTH = 1920
PLACEHOLDER_HEIGHT = 1080
PLACEHOLDER_FPS = 30

OVERLAY_FONT = os.environ.get("CLIPPER_OVERLAY_FONT", "Sans")
OVERLAY_FONT_FILE = os.environ.get("CLIPPER_OVERLAY_FONT_FILE") or None
DEFAULT_CLIP_TITLE = "YouTube Clip"

# Terminal jobs older than this are dropped from the processor registry.
JOB_RETENTION_SECONDS = _env_float("CLIPPER_JOB_RETENTION", 24 * 60 * 60)
MAX_CONCURRENT_JOBS = max(1, _env_int("CLIPPER_MAX_CONCURRENT_JOBS", 1))

SOURCE_URL_TEMPLATE = "https://www.youtube.com/watch?v={id}"
CANONICAL_CONTAINER = "mp4"

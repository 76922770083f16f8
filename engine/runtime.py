import os
import shutil
import sys

from yt_dlp.version import __version__ as ytdlp_version

from config.settings import FFMPEG_BIN, FFPROBE_BIN, YTDLP_BIN


def get_runtime_info():
    return {
        "app_version": os.environ.get("CLIPPER_VERSION", "0.1.0"),
        "python_version": sys.version.split()[0],
        "yt_dlp_version": ytdlp_version,
        "ffmpeg": shutil.which(FFMPEG_BIN),
        "ffprobe": shutil.which(FFPROBE_BIN),
        "yt_dlp_cli": shutil.which(YTDLP_BIN),
    }


def verify_toolchain(binaries=(FFMPEG_BIN, FFPROBE_BIN)):
    """Resolve each required binary on PATH; raise RuntimeError naming any that are missing."""
    resolved = {name: shutil.which(name) for name in binaries}
    missing = sorted(name for name, path in resolved.items() if not path)
    if missing:
        raise RuntimeError(f"required tools are not installed or not in PATH: {', '.join(missing)}")
    return resolved

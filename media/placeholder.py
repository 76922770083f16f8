"""Synthetic stand-in clip used when the source cannot be downloaded."""

from __future__ import annotations

import logging
from typing import Optional

from config.settings import (
    PLACEHOLDER_COLOR,
    PLACEHOLDER_FPS,
    PLACEHOLDER_HEIGHT,
    PLACEHOLDER_WIDTH,
)
from media.ffmpeg import run_ffmpeg

logger = logging.getLogger(__name__)


def build_placeholder_args(output_path, duration: float) -> list[str]:
    seconds = f"{float(duration):.3f}"
    video_source = (
        f"color=c={PLACEHOLDER_COLOR}:s={PLACEHOLDER_WIDTH}x{PLACEHOLDER_HEIGHT}"
        f":r={PLACEHOLDER_FPS}:d={seconds}"
    )
    return [
        "-f",
        "lavfi",
        "-i",
        video_source,
        "-f",
        "lavfi",
        "-i",
        "anullsrc=r=48000:cl=stereo",
        "-t",
        seconds,
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-shortest",
        "-movflags",
        "+faststart",
        str(output_path),
    ]


async def synthesize_placeholder(output_path, duration: float, *, on_progress: Optional[object] = None):
    """Write a solid-colour clip with a silent stereo track lasting ``duration`` seconds."""
    if duration <= 0:
        raise ValueError("placeholder duration must be positive")
    await run_ffmpeg(build_placeholder_args(output_path, duration), duration=duration, on_progress=on_progress)
    logger.info("placeholder_created output=%s duration=%.3f", output_path, duration)
    return output_path

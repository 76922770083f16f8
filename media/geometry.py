"""Reframe video to a target aspect ratio by uniform scale plus centre crop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from engine.errors import StreamCopyFailed
from engine.pipeline import STRATEGY_COPY, STRATEGY_REENCODE, StageResult, run_with_fallback
from media.ffmpeg import FfmpegError, run_ffmpeg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReframePlan:
    scaled_width: int
    scaled_height: int
    crop_x: int
    crop_y: int
    width: int
    height: int


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _even(value: int) -> int:
    return value + (value % 2)


def reframe_dimensions(src_width: int, src_height: int, width: int, height: int) -> ReframePlan:
    """Plan a scale that covers ``width x height`` and the centred crop to it.

    Both axes use the same factor, so the picture is never stretched; the
    scaled size is rounded up to even numbers and never below the target.
    Integer arithmetic keeps the fitted axis exactly on target.
    """
    if src_width <= 0 or src_height <= 0 or width <= 0 or height <= 0:
        raise ValueError("dimensions must be positive")
    if width * src_height >= height * src_width:
        # Source is relatively taller: fit the width, crop top and bottom.
        scaled_width = width
        scaled_height = _ceil_div(src_height * width, src_width)
    else:
        scaled_height = height
        scaled_width = _ceil_div(src_width * height, src_height)
    scaled_width = max(width, _even(scaled_width))
    scaled_height = max(height, _even(scaled_height))
    return ReframePlan(
        scaled_width=scaled_width,
        scaled_height=scaled_height,
        crop_x=(scaled_width - width) // 2,
        crop_y=(scaled_height - height) // 2,
        width=width,
        height=height,
    )


def build_reframe_filter(
    width: int,
    height: int,
    src_width: Optional[int] = None,
    src_height: Optional[int] = None,
) -> str:
    if src_width and src_height:
        plan = reframe_dimensions(src_width, src_height, width, height)
        return (
            f"scale={plan.scaled_width}:{plan.scaled_height},"
            f"crop={width}:{height}:{plan.crop_x}:{plan.crop_y},setsar=1"
        )
    # Source size unknown: let ffmpeg pick the covering size itself.
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1"
    )


def _reframe_args(input_path, output_path, video_filter: str, audio_args: list[str]) -> list[str]:
    return [
        "-i",
        str(input_path),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
        "-vf",
        video_filter,
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        "23",
        "-pix_fmt",
        "yuv420p",
        *audio_args,
        "-movflags",
        "+faststart",
        str(output_path),
    ]


async def reframe(
    input_path,
    output_path,
    width: int,
    height: int,
    *,
    src_width: Optional[int] = None,
    src_height: Optional[int] = None,
    duration: Optional[float] = None,
    on_progress=None,
) -> StageResult:
    """Re-encode video to exactly ``width x height``; copy audio when possible."""
    video_filter = build_reframe_filter(width, height, src_width, src_height)

    async def _copy_audio():
        try:
            await run_ffmpeg(
                _reframe_args(input_path, output_path, video_filter, ["-c:a", "copy"]),
                duration=duration,
                on_progress=on_progress,
            )
        except FfmpegError as exc:
            raise StreamCopyFailed(str(exc)) from exc
        return StageResult.success(output_path, STRATEGY_COPY)

    async def _reencode_audio():
        await run_ffmpeg(
            _reframe_args(input_path, output_path, video_filter, ["-c:a", "aac", "-b:a", "128k"]),
            duration=duration,
            on_progress=on_progress,
        )
        return StageResult.success(output_path, STRATEGY_REENCODE)

    result = await run_with_fallback(_copy_audio, _reencode_audio, stage="transform")
    logger.info("reframe_complete output=%s size=%sx%s filter=%s", output_path, width, height, video_filter)
    return result

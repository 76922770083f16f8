"""Trim a local container to a [start, end) window."""

from __future__ import annotations

import asyncio
import logging

from engine.errors import StreamCopyFailed
from engine.pipeline import STRATEGY_COPY, STRATEGY_REENCODE, StageResult, run_with_fallback
from media.ffmpeg import FfmpegError, run_ffmpeg
from media.validation import validate_duration

logger = logging.getLogger(__name__)

DEFAULT_FRAME_INTERVAL = 1.0 / 30.0


def format_seconds(value: float) -> str:
    return f"{float(value):.3f}"


def build_copy_args(input_path, output_path, start: float, duration: float) -> list[str]:
    return [
        "-ss",
        format_seconds(start),
        "-i",
        str(input_path),
        "-t",
        format_seconds(duration),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
        "-c",
        "copy",
        "-avoid_negative_ts",
        "make_zero",
        str(output_path),
    ]


def build_reencode_args(input_path, output_path, start: float, duration: float) -> list[str]:
    return [
        "-ss",
        format_seconds(start),
        "-i",
        str(input_path),
        "-t",
        format_seconds(duration),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        "23",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-avoid_negative_ts",
        "make_zero",
        str(output_path),
    ]


async def extract_segment(
    input_path,
    output_path,
    start: float,
    end: float,
    *,
    frame_interval: float = DEFAULT_FRAME_INTERVAL,
    on_progress=None,
) -> StageResult:
    """Cut ``[start, end)`` out of ``input_path``.

    The stream-copy cut is kept only when its duration lands within one frame
    interval of ``end - start``; a copy that snapped to an earlier keyframe is
    redone with a re-encode.
    """
    if end <= start or start < 0:
        raise ValueError(f"invalid segment window start={start} end={end}")
    duration = end - start

    async def _copy():
        try:
            await run_ffmpeg(
                build_copy_args(input_path, output_path, start, duration),
                duration=duration,
                on_progress=on_progress,
            )
        except FfmpegError as exc:
            raise StreamCopyFailed(str(exc)) from exc
        within_frame = await asyncio.to_thread(
            validate_duration, str(output_path), duration, frame_interval
        )
        if not within_frame:
            raise StreamCopyFailed("stream copy cut is not frame accurate")
        return StageResult.success(output_path, STRATEGY_COPY)

    async def _reencode():
        await run_ffmpeg(
            build_reencode_args(input_path, output_path, start, duration),
            duration=duration,
            on_progress=on_progress,
        )
        return StageResult.success(output_path, STRATEGY_REENCODE)

    result = await run_with_fallback(_copy, _reencode, stage="extract")
    logger.info(
        "segment_extracted output=%s start=%.3f end=%.3f strategy=%s",
        output_path,
        start,
        end,
        result.strategy,
    )
    return result

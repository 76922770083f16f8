"""Stream muxing: join separate audio/video files and normalize containers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from engine.errors import StreamCopyFailed
from engine.logging_utils import log_event
from engine.pipeline import STRATEGY_COPY, STRATEGY_REENCODE, StageResult, run_with_fallback
from media.ffmpeg import FfmpegError, run_ffmpeg

logger = logging.getLogger(__name__)


def build_merge_args(video_path, audio_path, output_path) -> list[str]:
    return [
        "-i",
        str(video_path),
        "-i",
        str(audio_path),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "copy",
        "-c:a",
        "copy",
        "-movflags",
        "+faststart",
        str(output_path),
    ]


async def merge_streams(video_path, audio_path, output_path, *, duration=None, on_progress=None) -> StageResult:
    """Remux a video-only and an audio-only file into one container.

    There is no re-encode fallback: a failed copy returns a failed
    :class:`StageResult` so the caller can continue with the video-only file
    and report the missing audio. On success both inputs are deleted.
    """
    try:
        await run_ffmpeg(
            build_merge_args(video_path, audio_path, output_path),
            duration=duration,
            on_progress=on_progress,
        )
    except FfmpegError as exc:
        log_event(
            logging.WARNING,
            "merge_stream_copy_failed",
            video=str(video_path),
            audio=str(audio_path),
            error=str(exc),
        )
        _unlink_quietly(output_path)
        return StageResult.failure(StreamCopyFailed(str(exc)), STRATEGY_COPY)

    for source in (video_path, audio_path):
        _unlink_quietly(source)
    logger.info("merge_complete output=%s", output_path)
    return StageResult.success(output_path, STRATEGY_COPY)


async def remux_to_mp4(input_path, output_path, *, duration=None, on_progress=None) -> StageResult:
    """Convert a single downloaded file to MP4, copying streams when possible."""

    async def _copy():
        try:
            await run_ffmpeg(
                [
                    "-i",
                    str(input_path),
                    "-map",
                    "0:v:0",
                    "-map",
                    "0:a:0?",
                    "-c",
                    "copy",
                    "-movflags",
                    "+faststart",
                    str(output_path),
                ],
                duration=duration,
                on_progress=on_progress,
            )
        except FfmpegError as exc:
            raise StreamCopyFailed(str(exc)) from exc
        return StageResult.success(output_path, STRATEGY_COPY)

    async def _reencode_audio():
        await run_ffmpeg(
            [
                "-i",
                str(input_path),
                "-map",
                "0:v:0",
                "-map",
                "0:a:0?",
                "-c:v",
                "copy",
                "-c:a",
                "aac",
                "-b:a",
                "192k",
                "-movflags",
                "+faststart",
                str(output_path),
            ],
            duration=duration,
            on_progress=on_progress,
        )
        return StageResult.success(output_path, STRATEGY_REENCODE)

    result = await run_with_fallback(_copy, _reencode_audio, stage="remux")
    if Path(input_path) != Path(output_path):
        _unlink_quietly(input_path)
    return result


def _unlink_quietly(path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("could not delete intermediate path=%s error=%s", path, exc)

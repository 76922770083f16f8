"""Burn title, duration and optional caption cues into the frame."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from captions.provider import CaptionCue
from config.settings import DEFAULT_CLIP_TITLE, OVERLAY_FONT, OVERLAY_FONT_FILE
from engine.errors import TransformFailed
from engine.pipeline import STRATEGY_REENCODE, StageResult
from media.ffmpeg import FfmpegError, run_ffmpeg

logger = logging.getLogger(__name__)


def format_offset(value: float) -> str:
    return f"{float(value):g}"


def caption_text(title: Optional[str], start: float, end: float) -> str:
    label = (title or "").strip() or DEFAULT_CLIP_TITLE
    return f"{label} | {format_offset(start)}s-{format_offset(end)}s"


def duration_text(duration: float) -> str:
    return f"Duration: {format_offset(duration)}s"


def quote_filter_value(value) -> str:
    """Single-quote a filter option value; embedded quotes are closed and escaped."""
    return "'" + str(value).replace("'", "'\\''") + "'"


def _font_option() -> str:
    if OVERLAY_FONT_FILE:
        return f"fontfile={quote_filter_value(OVERLAY_FONT_FILE)}"
    return f"font={quote_filter_value(OVERLAY_FONT)}"


def build_overlay_filter(
    caption_file,
    duration_file,
    cue_files: Sequence[tuple[CaptionCue, Path]] = (),
) -> str:
    """Return the ``-vf`` chain: caption bottom centre, duration top-left, cues above the caption."""
    font = _font_option()
    filters = [
        (
            f"drawtext={font}:textfile={quote_filter_value(caption_file)}"
            ":fontcolor=white:fontsize=48:box=1:boxcolor=black@0.8:boxborderw=5"
            ":x=(w-text_w)/2:y=h-th-100"
        ),
        (
            f"drawtext={font}:textfile={quote_filter_value(duration_file)}"
            ":fontcolor=cyan:fontsize=32:box=1:boxcolor=black@0.5:boxborderw=3"
            ":x=50:y=50"
        ),
    ]
    for cue, path in cue_files:
        enable = f"between(t,{cue.start:.3f},{cue.end:.3f})"
        filters.append(
            f"drawtext={font}:textfile={quote_filter_value(path)}"
            ":fontcolor=white:fontsize=40:box=1:boxcolor=black@0.6:boxborderw=4"
            f":x=(w-text_w)/2:y=h-th-220:enable={quote_filter_value(enable)}"
        )
    return ",".join(filters)


async def burn_overlays(
    input_path,
    output_path,
    *,
    caption_file,
    duration_file,
    cue_files: Sequence[tuple[CaptionCue, Path]] = (),
    duration: Optional[float] = None,
    on_progress=None,
) -> StageResult:
    """Render the text overlays with a full re-encode.

    The text itself is read from ``textfile`` artifacts written by the caller.
    There is no fallback: a failure here (usually a missing font) is raised
    as :class:`TransformFailed`.
    """
    video_filter = build_overlay_filter(caption_file, duration_file, cue_files)
    args = [
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
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-movflags",
        "+faststart",
        str(output_path),
    ]
    try:
        await run_ffmpeg(args, duration=duration, on_progress=on_progress)
    except FfmpegError as exc:
        raise TransformFailed("overlay", exc.stderr.strip() or str(exc)) from exc
    logger.info("overlay_complete output=%s cues=%d", output_path, len(cue_files))
    return StageResult.success(output_path, STRATEGY_REENCODE)


def write_text_file(path, text: str) -> Path:
    path = Path(path)
    path.write_text(text, encoding="utf-8")
    return path

"""Rank remote stream variants and choose what to download."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from config.settings import MAX_SOURCE_HEIGHT
from engine.errors import NoViableFormat

logger = logging.getLogger(__name__)

KIND_VIDEO = "video"
KIND_AUDIO = "audio"
KIND_MUXED = "muxed"

MODE_PAIR = "pair"
MODE_MUXED = "muxed"
MODE_HEURISTIC = "heuristic"

HEURISTIC_EXPRESSION = (
    f"bestvideo[height<={MAX_SOURCE_HEIGHT}]+bestaudio/"
    f"best[height<={MAX_SOURCE_HEIGHT}]/bestvideo+bestaudio/best"
)

_THUMBNAIL_EXTS = {"mhtml"}
_DEFAULT_FPS = 30.0


def _codec(value) -> Optional[str]:
    text = str(value or "").strip().lower()
    if not text or text == "none":
        return None
    return text


def _number(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class StreamVariant:
    format_id: str
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    abr: Optional[float] = None
    tbr: Optional[float] = None
    ext: Optional[str] = None
    filesize: Optional[int] = None
    video_absent: bool = False

    @classmethod
    def from_ytdlp(cls, fmt: dict) -> "StreamVariant":
        width = _number(fmt.get("width"))
        height = _number(fmt.get("height"))
        size = _number(fmt.get("filesize")) or _number(fmt.get("filesize_approx"))
        return cls(
            format_id=str(fmt.get("format_id") or ""),
            vcodec=_codec(fmt.get("vcodec")),
            acodec=_codec(fmt.get("acodec")),
            width=int(width) if width else None,
            height=int(height) if height else None,
            fps=_number(fmt.get("fps")),
            abr=_number(fmt.get("abr")),
            tbr=_number(fmt.get("tbr")),
            ext=(str(fmt.get("ext") or "").strip().lower() or None),
            filesize=int(size) if size else None,
            video_absent=str(fmt.get("vcodec") or "").strip().lower() == "none",
        )

    @property
    def kind(self) -> Optional[str]:
        if self.vcodec and self.acodec:
            return KIND_MUXED
        if self.vcodec:
            return KIND_VIDEO
        if self.acodec:
            return KIND_AUDIO
        return None

    @property
    def bitrate(self) -> float:
        return self.abr or self.tbr or 0.0

    @property
    def is_video_capable(self) -> bool:
        return bool(self.vcodec and self.height and self.width and self.ext not in _THUMBNAIL_EXTS)

    @property
    def is_audio_capable(self) -> bool:
        # A variant with frame dimensions and an unreported vcodec is progressive.
        return bool(self.acodec and not self.vcodec and (self.video_absent or not self.height))


@dataclass(frozen=True)
class FormatSelection:
    mode: str
    expression: str
    video: Optional[StreamVariant] = None
    audio: Optional[StreamVariant] = None
    downscale_required: bool = False

    @property
    def format_ids(self) -> tuple[str, ...]:
        return tuple(v.format_id for v in (self.video, self.audio) if v is not None)


def variants_from_info(info: dict) -> list[StreamVariant]:
    formats = info.get("formats") if isinstance(info, dict) else None
    variants = []
    for fmt in formats if isinstance(formats, list) else []:
        if isinstance(fmt, dict) and fmt.get("format_id"):
            variants.append(StreamVariant.from_ytdlp(fmt))
    return variants


def _video_sort_key(variant: StreamVariant):
    return (
        -(variant.height or 0),
        -(variant.fps or _DEFAULT_FPS),
        -(variant.filesize or 0),
        variant.format_id,
    )


def audio_codec_tier(acodec: Optional[str]) -> int:
    codec = (acodec or "").lower()
    if "opus" in codec:
        return 0
    if codec.startswith("mp4a") or "aac" in codec:
        return 1
    return 2


def _audio_sort_key(variant: StreamVariant):
    return (audio_codec_tier(variant.acodec), -variant.bitrate, variant.format_id)


def rank_video(variants: Iterable[StreamVariant]) -> list[StreamVariant]:
    return sorted((v for v in variants if v.is_video_capable), key=_video_sort_key)


def rank_audio(variants: Iterable[StreamVariant]) -> list[StreamVariant]:
    return sorted((v for v in variants if v.is_audio_capable), key=_audio_sort_key)


def select_formats(variants: Sequence[StreamVariant]) -> FormatSelection:
    """Pick the (video, audio) pair, single muxed variant, or heuristic expression.

    Pure and deterministic: the same variant list always yields the same
    selection, whatever order the list arrives in.

    Variants whose video codec is unreported are not ranked, but they keep the
    heuristic expression in play: yt-dlp can still resolve them by height.

    Raises:
        NoViableFormat: when the list is empty or every variant declares
            ``vcodec: none``.
    """
    variants = list(variants)
    if not variants or all(v.video_absent for v in variants):
        raise NoViableFormat("no variant with a video stream is available")

    videos = rank_video(variants)
    audios = rank_audio(variants)

    video = None
    downscale = False
    if videos:
        capped = [v for v in videos if (v.height or 0) <= MAX_SOURCE_HEIGHT]
        if capped:
            video = capped[0]
        else:
            video = videos[0]
            downscale = True

    audio = audios[0] if audios else None

    if video is not None and audio is not None:
        return FormatSelection(
            mode=MODE_PAIR,
            expression=f"{video.format_id}+{audio.format_id}",
            video=video,
            audio=audio,
            downscale_required=downscale,
        )
    if video is not None and video.kind == KIND_MUXED:
        return FormatSelection(
            mode=MODE_MUXED,
            expression=video.format_id,
            video=video,
            downscale_required=downscale,
        )
    return FormatSelection(mode=MODE_HEURISTIC, expression=HEURISTIC_EXPRESSION)


def describe_selection(selection: FormatSelection) -> str:
    parts = [selection.mode]
    if selection.video is not None:
        video = selection.video
        parts.append(f"video={video.format_id} {video.height}p {video.vcodec}")
    if selection.audio is not None:
        audio = selection.audio
        parts.append(f"audio={audio.format_id} {audio.acodec} {audio.bitrate:g}k")
    if selection.downscale_required:
        parts.append("downscale")
    return " ".join(parts)

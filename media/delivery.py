"""Final encode pass tuned for archival fidelity or constrained bandwidth."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import MAX_SOURCE_HEIGHT
from engine.errors import TransformFailed
from engine.pipeline import STRATEGY_REENCODE, StageResult
from media.ffmpeg import FfmpegError, run_ffmpeg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryProfile:
    name: str
    video_args: tuple[str, ...]
    audio_args: tuple[str, ...]
    h264_profile: str
    cap_height: bool = False


ARCHIVAL = DeliveryProfile(
    name="archival",
    video_args=(
        "-c:v", "libx264",
        "-preset", "medium",
        "-crf", "20",
        "-profile:v", "high",
        "-level", "4.1",
        "-tune", "film",
        "-x264-params", "keyint=30:min-keyint=30:scenecut=-1",
        "-pix_fmt", "yuv420p",
    ),
    audio_args=(
        "-c:a", "aac",
        "-b:a", "192k",
        "-ac", "2",
        "-ar", "48000",
    ),
    h264_profile="high",
    cap_height=True,
)

MOBILE = DeliveryProfile(
    name="mobile",
    video_args=(
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "28",
        "-maxrate", "2M",
        "-bufsize", "4M",
        "-profile:v", "baseline",
        "-level", "4.0",
        "-pix_fmt", "yuv420p",
    ),
    audio_args=(
        "-c:a", "aac",
        "-b:a", "128k",
        "-ac", "2",
    ),
    h264_profile="baseline",
)

PROFILES = {profile.name: profile for profile in (ARCHIVAL, MOBILE)}


def get_profile(name: str) -> DeliveryProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"unknown delivery profile: {name}") from None


def needs_downscale(profile: DeliveryProfile, src_height: Optional[int], reframed: bool) -> bool:
    if not profile.cap_height or reframed or not src_height:
        return False
    return src_height > MAX_SOURCE_HEIGHT


def build_delivery_args(input_path, output_path, profile: DeliveryProfile, *, downscale: bool = False) -> list[str]:
    args = [
        "-i",
        str(input_path),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
    ]
    if downscale:
        args.extend(["-vf", f"scale=-2:{MAX_SOURCE_HEIGHT}:flags=lanczos"])
    args.extend(profile.video_args)
    args.extend(profile.audio_args)
    args.extend(["-movflags", "+faststart", "-avoid_negative_ts", "make_zero", str(output_path)])
    return args


async def optimize(
    input_path,
    output_path,
    profile: DeliveryProfile,
    *,
    downscale: bool = False,
    duration: Optional[float] = None,
    on_progress=None,
) -> StageResult:
    """Re-encode with ``profile``; there is no stream-copy path at this stage."""
    try:
        await run_ffmpeg(
            build_delivery_args(input_path, output_path, profile, downscale=downscale),
            duration=duration,
            on_progress=on_progress,
        )
    except FfmpegError as exc:
        raise TransformFailed("optimize", exc.stderr.strip() or str(exc)) from exc
    logger.info("delivery_complete output=%s profile=%s downscale=%s", output_path, profile.name, downscale)
    return StageResult.success(output_path, STRATEGY_REENCODE)

"""Resolve a remote source into one local container via a three-tier fallback chain."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from config.settings import (
    CANONICAL_CONTAINER,
    PRIMARY_DOWNLOAD_TIMEOUT_SECONDS,
    SECONDARY_DOWNLOAD_TIMEOUT_SECONDS,
)
from download import library, ytdlp
from download.formats import FormatSelection, describe_selection, select_formats, variants_from_info
from engine.errors import AcquisitionFailed, AcquisitionTimeout, ClipperError, FormatNegotiationFailed
from engine.logging_utils import log_event
from engine.progress import ACQUIRE_BAND, PROBE_PERCENT, ProgressBand
from media import ffprobe, merge, placeholder

logger = logging.getLogger(__name__)

TIER_PRIMARY = "primary"
TIER_LIBRARY = "library"
TIER_PLACEHOLDER = "placeholder"

_SKIP_SUFFIXES = (".part", ".ytdl", ".temp", ".json", ".tmp")
_FORMAT_TOKEN_RE = re.compile(r"\.f([0-9A-Za-z_-]+)\.[^.]+$")


@dataclass
class AcquiredSource:
    tier: str
    container: Optional[Path] = None
    video_path: Optional[Path] = None
    audio_path: Optional[Path] = None
    selection: Optional[FormatSelection] = None

    @property
    def synthetic(self) -> bool:
        return self.tier == TIER_PLACEHOLDER

    @property
    def needs_merge(self) -> bool:
        return self.container is None and self.video_path is not None and self.audio_path is not None


def download_prefix(job_id: str) -> str:
    return f"input_{job_id}."


def discover_downloads(scratch_dir, job_id: str) -> list[Path]:
    """List completed downloader outputs for ``job_id`` (partials and sidecars skipped)."""
    directory = Path(scratch_dir)
    if not directory.is_dir():
        return []
    prefix = download_prefix(job_id)
    found = []
    for entry in sorted(directory.iterdir()):
        name = entry.name
        if not name.startswith(prefix) or not entry.is_file():
            continue
        if name.lower().endswith(_SKIP_SUFFIXES):
            continue
        if entry.stat().st_size <= 0:
            continue
        found.append(entry)
    return found


def format_token(path: Path) -> Optional[str]:
    match = _FORMAT_TOKEN_RE.search(path.name)
    return match.group(1) if match else None


def classify_by_format_id(files: list[Path], selection: Optional[FormatSelection]):
    """Split leftover per-format files into (video, audio) using the selected format ids."""
    if selection is None or selection.video is None or selection.audio is None:
        return None, None
    video = audio = None
    for path in files:
        token = format_token(path)
        if token == selection.video.format_id:
            video = path
        elif token == selection.audio.format_id:
            audio = path
    return video, audio


def classify_by_streams(files: list[Path]):
    video = audio = None
    for path in files:
        info = ffprobe.probe_media(str(path))
        if info.has_video and not info.has_audio and video is None:
            video = path
        elif info.has_audio and not info.has_video and audio is None:
            audio = path
    return video, audio


class SourceAcquirer:
    """Primary yt-dlp CLI, then in-process library download, then a placeholder clip."""

    def __init__(
        self,
        *,
        primary_timeout: float = PRIMARY_DOWNLOAD_TIMEOUT_SECONDS,
        secondary_timeout: float = SECONDARY_DOWNLOAD_TIMEOUT_SECONDS,
        library_download: Callable[..., Path] = library.download_muxed,
    ) -> None:
        self.primary_timeout = primary_timeout
        self.secondary_timeout = secondary_timeout
        self._library_download = library_download

    async def acquire(self, job) -> AcquiredSource:
        url = job.request.source_url()
        band = ProgressBand(job.progress, ACQUIRE_BAND, "Downloading")

        try:
            return await self._bounded(self._primary(job, url, band), self.primary_timeout, TIER_PRIMARY)
        except FormatNegotiationFailed:
            raise
        except Exception as exc:
            self._tier_failed(job, TIER_PRIMARY, exc)

        try:
            return await self._bounded(self._secondary(job, url, band), self.secondary_timeout, TIER_LIBRARY)
        except Exception as exc:
            self._tier_failed(job, TIER_LIBRARY, exc)

        try:
            return await self._placeholder(job, band)
        except Exception as exc:
            log_event(logging.ERROR, "acquire_tier_failed", job_id=job.id, tier=TIER_PLACEHOLDER, error=str(exc))
            raise AcquisitionFailed(f"All download methods failed: {exc}") from exc

    @staticmethod
    async def _bounded(coro, timeout: float, tier: str):
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise AcquisitionTimeout(f"{tier} download exceeded {timeout:g}s") from exc

    def _tier_failed(self, job, tier: str, exc: Exception) -> None:
        code = exc.code if isinstance(exc, ClipperError) else type(exc).__name__
        log_event(logging.WARNING, "acquire_tier_failed", job_id=job.id, tier=tier, code=code, error=str(exc))
        self._clear_downloads(job)

    async def _primary(self, job, url: str, band: ProgressBand) -> AcquiredSource:
        job.progress.publish(PROBE_PERCENT, "Analyzing video formats...")
        info = await ytdlp.probe_info(url)
        selection = select_formats(variants_from_info(info))
        log_event(
            logging.INFO,
            "format_selected",
            job_id=job.id,
            expression=selection.expression,
            selection=describe_selection(selection),
        )

        band.begin("Starting high-quality download...")

        def _on_progress(parsed: dict) -> None:
            percent = parsed.get("percent")
            if percent is not None:
                band(percent / 100.0)

        template = str(Path(job.manifest.scratch_dir) / f"input_{job.id}.%(ext)s")
        await ytdlp.download(url, selection.expression, template, on_progress=_on_progress)
        return await self._resolve_downloads(job, selection)

    async def _resolve_downloads(self, job, selection: Optional[FormatSelection]) -> AcquiredSource:
        files = discover_downloads(job.manifest.scratch_dir, job.id)
        logger.info("downloads_found job_id=%s files=%s", job.id, [f.name for f in files])
        if not files:
            raise ytdlp.YtDlpError("Downloaded file not found")

        merged = [f for f in files if format_token(f) is None]
        if len(files) == 1 or len(merged) == 1:
            source = merged[0] if merged else files[0]
            for extra in files:
                if extra != source:
                    job.manifest.register(f"leftover{extra.suffix}", extra)
            container = await self._normalize_container(job, source)
            return AcquiredSource(tier=TIER_PRIMARY, container=container, selection=selection)

        video, audio = classify_by_format_id(files, selection)
        if video is None or audio is None:
            video, audio = await asyncio.to_thread(classify_by_streams, files)
        if video is None or audio is None:
            raise ytdlp.YtDlpError("Multiple files found but unable to identify video/audio streams")
        job.manifest.register("input_video", video)
        job.manifest.register("input_audio", audio)
        return AcquiredSource(tier=TIER_PRIMARY, video_path=video, audio_path=audio, selection=selection)

    async def _secondary(self, job, url: str, band: ProgressBand) -> AcquiredSource:
        loop = asyncio.get_running_loop()
        stop_event = threading.Event()
        band.begin("Trying fallback downloader...")

        def _on_progress(downloaded: int, total: Optional[int]) -> None:
            if total:
                loop.call_soon_threadsafe(band, downloaded / total)

        stem = Path(job.manifest.scratch_dir) / f"input_{job.id}"
        try:
            path = await asyncio.to_thread(
                self._library_download,
                url,
                stem,
                on_progress=_on_progress,
                stop_event=stop_event,
            )
        except BaseException:
            stop_event.set()
            raise
        container = await self._normalize_container(job, Path(path))
        return AcquiredSource(tier=TIER_LIBRARY, container=container)

    async def _placeholder(self, job, band: ProgressBand) -> AcquiredSource:
        band.begin("Creating placeholder video...")
        output = job.manifest.path_for("placeholder", CANONICAL_CONTAINER)
        await placeholder.synthesize_placeholder(output, job.request.duration, on_progress=band)
        log_event(logging.WARNING, "placeholder_substituted", job_id=job.id, duration=job.request.duration)
        return AcquiredSource(tier=TIER_PLACEHOLDER, container=output)

    async def _normalize_container(self, job, path: Path) -> Path:
        job.manifest.register("input", path)
        if path.suffix.lower() == f".{CANONICAL_CONTAINER}":
            return path
        output = job.manifest.path_for("source", CANONICAL_CONTAINER)
        logger.info("container_conversion job_id=%s from=%s to=%s", job.id, path.name, output.name)
        result = await merge.remux_to_mp4(path, output)
        job.manifest.discard("input")
        return result.path

    @staticmethod
    def _clear_downloads(job) -> None:
        scratch = Path(job.manifest.scratch_dir)
        if not scratch.is_dir():
            return
        prefix = download_prefix(job.id)
        for entry in scratch.iterdir():
            if entry.name.startswith(prefix):
                try:
                    entry.unlink()
                except OSError as exc:
                    logger.warning("could not clear download path=%s error=%s", entry, exc)

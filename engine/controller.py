"""Drive clip jobs through acquisition, cutting, reframing, overlays and delivery."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from config.settings import (
    JOB_RETENTION_SECONDS,
    MAX_CONCURRENT_JOBS,
    PORTRAIT_HEIGHT,
    PORTRAIT_WIDTH,
    SCRATCH_DIR,
)
from download.acquirer import SourceAcquirer
from engine.errors import ClipperError, InvalidClipRequest
from engine.job import ClipMetadata, ClipRequest, ClipResult, Job, JobFailure, JobState
from engine.logging_utils import log_event
from engine.progress import (
    EXTRACT_BAND,
    MERGE_BAND,
    OPTIMIZE_BAND,
    OVERLAY_BAND,
    TRANSFORM_BAND,
    ProgressBand,
)
from engine.runtime import verify_toolchain
from media import delivery, ffprobe, geometry, merge, overlay, segment

logger = logging.getLogger(__name__)


class ClipProcessor:
    """Stateless dispatcher over explicit :class:`Job` objects.

    Every job carries its own progress channel and artifact manifest, so
    concurrent jobs share nothing but the scratch directory, where their files
    are namespaced by job id.
    """

    def __init__(
        self,
        *,
        scratch_dir=SCRATCH_DIR,
        acquirer: Optional[SourceAcquirer] = None,
        caption_provider=None,
        max_concurrent: int = MAX_CONCURRENT_JOBS,
        retention_seconds: float = JOB_RETENTION_SECONDS,
    ) -> None:
        self.scratch_dir = Path(scratch_dir)
        self.acquirer = acquirer or SourceAcquirer()
        self.caption_provider = caption_provider
        self.max_concurrent = max(1, int(max_concurrent))
        self.retention_seconds = retention_seconds
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def initialize(self) -> dict:
        """Check the toolchain and create the scratch directory."""
        tools = verify_toolchain()
        os.makedirs(self.scratch_dir, exist_ok=True)
        log_event(logging.INFO, "processor_initialized", scratch_dir=str(self.scratch_dir), tools=tools)
        return tools

    def create_job(self, request) -> Job:
        if not isinstance(request, ClipRequest):
            try:
                request = ClipRequest.model_validate(request)
            except ValidationError as exc:
                raise InvalidClipRequest(str(exc)) from exc
        os.makedirs(self.scratch_dir, exist_ok=True)
        job = Job(request=request, scratch_dir=str(self.scratch_dir))
        self._jobs[job.id] = job
        log_event(
            logging.INFO,
            "job_created",
            job_id=job.id,
            source=request.source,
            start=request.start,
            end=request.end,
            portrait=request.portrait,
            overlay=request.overlay,
            quality=request.quality,
        )
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def run(self, request) -> Job:
        return await self.run_job(self.create_job(request))

    def submit(self, request) -> Job:
        """Schedule a job on the running loop and return it immediately."""
        job = self.create_job(request)
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._tasks[job.id] = asyncio.get_running_loop().create_task(self._run_bounded(job))
        return job

    async def _run_bounded(self, job: Job) -> Job:
        async with self._semaphore:
            return await self.run_job(job)

    async def wait(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return job

    def sweep_expired(self, now: Optional[datetime] = None) -> list[str]:
        """Forget terminal jobs that finished more than ``retention_seconds`` ago."""
        now = now or datetime.now(timezone.utc)
        expired = []
        for job_id, job in list(self._jobs.items()):
            if not job.state.terminal or job.finished_at is None:
                continue
            if (now - job.finished_at).total_seconds() > self.retention_seconds:
                expired.append(job_id)
                self._jobs.pop(job_id, None)
                self._tasks.pop(job_id, None)
        if expired:
            logger.info("jobs_expired count=%d", len(expired))
        return expired

    async def run_job(self, job: Job) -> Job:
        """Run ``job`` to a terminal state; never raises for pipeline errors."""
        started = time.monotonic()
        try:
            job.result = await self._execute(job, started)
            job.advance(JobState.COMPLETED)
            job.progress.publish(100, "Processing complete")
            log_event(
                logging.INFO,
                "job_completed",
                job_id=job.id,
                size_bytes=job.result.metadata.size_bytes,
                processing_time_ms=job.result.metadata.processing_time_ms,
                synthetic=job.result.metadata.synthetic,
            )
        except Exception as exc:
            stage = job.state.value
            code = exc.code if isinstance(exc, ClipperError) else "internal_error"
            job.failure = JobFailure(code=code, message=str(exc), stage=stage)
            job.advance(JobState.FAILED)
            job.progress.publish(job.progress.latest.percent, f"Failed: {exc}")
            log_event(logging.ERROR, "job_failed", job_id=job.id, stage=stage, code=code, error=str(exc))
            if not isinstance(exc, ClipperError):
                logger.exception("job_unexpected_error job_id=%s", job.id)
        finally:
            job.finished_at = datetime.now(timezone.utc)
            for warning in job.manifest.cleanup():
                log_event(logging.WARNING, "cleanup_warning", job_id=job.id, path=warning.path, reason=warning.reason)
            job.progress.close()
        return job

    async def _execute(self, job: Job, started: float) -> ClipResult:
        request = job.request

        job.advance(JobState.ACQUIRING)
        source = await self.acquirer.acquire(job)
        container = source.container
        audio_present = True

        if source.needs_merge:
            job.advance(JobState.MERGING)
            band = ProgressBand(job.progress, MERGE_BAND, "Merging")
            band.begin("Merging video and audio streams...")
            merged = await merge.merge_streams(
                source.video_path,
                source.audio_path,
                job.manifest.path_for("merged"),
                on_progress=band,
            )
            if merged.ok:
                container = merged.path
            else:
                # Observable degradation: keep the video and report the missing audio.
                container = source.video_path
                audio_present = False
                log_event(logging.WARNING, "audio_dropped", job_id=job.id, error=str(merged.error))

        job.advance(JobState.EXTRACTING)
        band = ProgressBand(job.progress, EXTRACT_BAND, "Extracting")
        band.begin("Extracting clip segment...")
        info = await asyncio.to_thread(ffprobe.probe_media, str(container))
        start, end = request.start, request.end
        if source.synthetic:
            start, end = 0.0, request.duration
        elif info.duration is not None:
            if start >= info.duration:
                raise InvalidClipRequest(
                    f"Start time {start:g}s is beyond the source duration {info.duration:.3f}s"
                )
            if end > info.duration:
                log_event(logging.INFO, "clip_end_clamped", job_id=job.id, requested=end, source_duration=info.duration)
                end = info.duration
        audio_present = audio_present and info.has_audio
        clip_duration = end - start

        result = await segment.extract_segment(
            container,
            job.manifest.path_for("clip"),
            start,
            end,
            frame_interval=info.frame_interval,
            on_progress=band,
        )
        current = result.path
        height = info.height

        if request.portrait:
            job.advance(JobState.TRANSFORMING)
            band = ProgressBand(job.progress, TRANSFORM_BAND, "Converting to portrait")
            band.begin("Converting to portrait format...")
            result = await geometry.reframe(
                current,
                job.manifest.path_for("portrait"),
                PORTRAIT_WIDTH,
                PORTRAIT_HEIGHT,
                src_width=info.width,
                src_height=info.height,
                duration=clip_duration,
                on_progress=band,
            )
            current = result.path
            height = PORTRAIT_HEIGHT

        if request.overlay:
            job.advance(JobState.OVERLAYING)
            band = ProgressBand(job.progress, OVERLAY_BAND, "Adding overlays")
            band.begin("Adding text overlays...")
            result = await overlay.burn_overlays(
                current,
                job.manifest.path_for("overlay"),
                caption_file=overlay.write_text_file(
                    job.manifest.path_for("caption", "txt"),
                    overlay.caption_text(request.title, start, end),
                ),
                duration_file=overlay.write_text_file(
                    job.manifest.path_for("duration", "txt"),
                    overlay.duration_text(clip_duration),
                ),
                cue_files=self._write_cue_files(job, start, end),
                duration=clip_duration,
                on_progress=band,
            )
            current = result.path

        job.advance(JobState.OPTIMIZING)
        profile = delivery.get_profile(request.quality)
        downscale = delivery.needs_downscale(profile, height, reframed=request.portrait)
        band = ProgressBand(job.progress, OPTIMIZE_BAND, "Optimizing")
        band.begin(f"Optimizing for {profile.name} delivery...")
        result = await delivery.optimize(
            current,
            job.manifest.path_for("final"),
            profile,
            downscale=downscale,
            duration=clip_duration,
            on_progress=band,
        )

        final_info = await asyncio.to_thread(ffprobe.probe_media, str(result.path))
        data = await asyncio.to_thread(Path(result.path).read_bytes)
        metadata = ClipMetadata(
            duration=final_info.duration if final_info.duration is not None else clip_duration,
            width=final_info.width,
            height=final_info.height,
            size_bytes=len(data),
            video_codec=final_info.video_codec,
            audio_codec=final_info.audio_codec,
            profile=profile.name,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            synthetic=source.synthetic,
            audio_present=audio_present and final_info.has_audio,
            source_tier=source.tier,
            format_expression=source.selection.expression if source.selection else None,
            downscaled=downscale,
        )
        return ClipResult(data=data, metadata=metadata)

    def _write_cue_files(self, job: Job, start: float, end: float):
        request = job.request
        if not request.burn_captions or self.caption_provider is None:
            return []
        cues = self.caption_provider.fetch_cues(request.source, (start, end))
        cue_files = []
        for index, cue in enumerate(cues):
            path = job.manifest.path_for(f"cue{index}", "txt")
            cue_files.append((cue, overlay.write_text_file(path, cue.text)))
        logger.info("caption_cues job_id=%s count=%d", job.id, len(cue_files))
        return cue_files

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from engine.errors import StreamCopyFailed, TransformFailed
from engine.job import ClipRequest, Job, JobState, new_job_id
from engine.manifest import ArtifactManifest, artifact_name
from engine.pipeline import STRATEGY_COPY, STRATEGY_REENCODE, StageResult, run_with_fallback
from engine.progress import ProgressBand, ProgressChannel


def test_progress_channel_clamps_to_monotonic_range() -> None:
    channel = ProgressChannel("job")
    seen = []
    channel.add_listener(lambda report: seen.append(report.percent))

    for value in (5, 40, 35, 120, -3):
        channel.publish(value, "step")

    assert seen == [5, 40, 40, 100, 100]
    assert channel.latest.percent == 100


def test_progress_channel_subscribers_see_latest_then_updates() -> None:
    async def _scenario():
        channel = ProgressChannel("job")
        channel.publish(10, "Downloading...")
        received_a, received_b = [], []

        async def _collect(sink):
            async for report in channel.subscribe():
                sink.append((report.percent, report.message))

        tasks = [asyncio.create_task(_collect(received_a)), asyncio.create_task(_collect(received_b))]
        await asyncio.sleep(0)
        channel.publish(50, "Half")
        channel.publish(100, "Processing complete")
        channel.close()
        await asyncio.gather(*tasks)
        return received_a, received_b

    received_a, received_b = asyncio.run(_scenario())

    expected = [(10, "Downloading..."), (50, "Half"), (100, "Processing complete")]
    assert received_a == expected
    assert received_b == expected


def test_progress_channel_ignores_publish_after_close() -> None:
    channel = ProgressChannel("job")
    channel.publish(30, "x")
    channel.close()
    channel.publish(90, "late")

    assert channel.latest.percent == 30
    assert channel.closed


def test_progress_band_maps_fraction_into_band() -> None:
    channel = ProgressChannel("job")
    band = ProgressBand(channel, (50, 75), "Converting")

    band.begin()
    assert channel.latest.percent == 50
    report = band(0.5)
    assert report.percent == 62
    assert report.message == "Converting: 50%"
    assert band(3).percent == 75
    assert band("bogus").percent == 75


def test_run_with_fallback_retries_only_stream_copy_failures() -> None:
    calls = []

    async def _fast():
        calls.append("fast")
        raise StreamCopyFailed("copy mismatch")

    async def _slow():
        calls.append("slow")
        return StageResult.success("out.mp4", STRATEGY_REENCODE)

    result = asyncio.run(run_with_fallback(_fast, _slow, stage="extract"))

    assert calls == ["fast", "slow"]
    assert result.strategy == STRATEGY_REENCODE


def test_run_with_fallback_does_not_mask_other_errors() -> None:
    calls = []

    async def _fast():
        calls.append("fast")
        raise FileNotFoundError("missing input")

    async def _slow():
        calls.append("slow")
        return StageResult.success("out.mp4", STRATEGY_REENCODE)

    with pytest.raises(FileNotFoundError):
        asyncio.run(run_with_fallback(_fast, _slow, stage="extract"))
    assert calls == ["fast"]


def test_run_with_fallback_wraps_fallback_failure() -> None:
    async def _fast():
        raise StreamCopyFailed("copy mismatch")

    async def _slow():
        raise RuntimeError("encoder crashed")

    with pytest.raises(TransformFailed) as excinfo:
        asyncio.run(run_with_fallback(_fast, _slow, stage="transform"))

    assert excinfo.value.stage == "transform"
    assert excinfo.value.diagnostic == "encoder crashed"


def test_run_with_fallback_returns_fast_result() -> None:
    async def _fast():
        return StageResult.success("out.mp4", STRATEGY_COPY)

    async def _slow():
        raise AssertionError("fallback should not run")

    assert asyncio.run(run_with_fallback(_fast, _slow, stage="extract")).strategy == STRATEGY_COPY


def test_manifest_cleanup_removes_registered_and_stray_files_only(tmp_path) -> None:
    manifest = ArtifactManifest("job123", tmp_path)
    clip = manifest.path_for("clip")
    clip.write_bytes(b"x")
    partial = tmp_path / "input_job123.f137.mp4.part"
    partial.write_bytes(b"x")
    other = tmp_path / "clip_otherjob.mp4"
    other.write_bytes(b"x")
    manifest.path_for("final")

    warnings = manifest.cleanup()

    assert warnings == []
    assert clip.name == artifact_name("clip", "job123", "mp4") == "clip_job123.mp4"
    assert not clip.exists()
    assert not partial.exists()
    assert other.exists()
    assert manifest.stages() == []


def test_manifest_discard_forgets_stage(tmp_path) -> None:
    manifest = ArtifactManifest("job", tmp_path)
    path = manifest.path_for("caption", "txt")
    path.write_text("hi", encoding="utf-8")

    manifest.discard("caption")

    assert manifest.get("caption") is None
    assert not path.exists()


def test_clip_request_validation() -> None:
    request = ClipRequest(source=" abc123xyz00 ", start=10, end=40)

    assert request.source == "abc123xyz00"
    assert request.duration == 30
    assert request.quality == "mobile"
    assert request.source_url() == "https://www.youtube.com/watch?v=abc123xyz00"
    assert ClipRequest(source="https://example.com/v.mp4", start=0, end=1).source_url() == "https://example.com/v.mp4"


@pytest.mark.parametrize(
    "payload",
    [
        {"source": "", "start": 0, "end": 5},
        {"source": "abc", "start": -1, "end": 5},
        {"source": "abc", "start": 5, "end": 5},
        {"source": "abc", "start": 0, "end": 121},
        {"source": "abc", "start": 0, "end": 5, "quality": "ultra"},
    ],
)
def test_clip_request_rejects_invalid_payloads(payload) -> None:
    with pytest.raises(ValidationError):
        ClipRequest(**payload)


def test_job_ids_are_unique_and_job_tracks_state(tmp_path) -> None:
    assert new_job_id() != new_job_id()
    job = Job(request=ClipRequest(source="abc", start=0, end=5), scratch_dir=str(tmp_path))

    assert job.state is JobState.CREATED
    job.advance(JobState.ACQUIRING)
    assert job.stage_index == 1
    assert job.manifest.job_id == job.id
    assert job.progress.job_id == job.id
    assert not job.state.terminal
    assert JobState.FAILED.terminal

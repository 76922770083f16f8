from __future__ import annotations

import asyncio

import pytest

from engine.errors import StreamCopyFailed, TransformFailed
from engine.pipeline import STRATEGY_COPY, STRATEGY_REENCODE, StageResult
from media import delivery, ffmpeg, merge, placeholder, segment
from media.ffmpeg import FfmpegError, build_ffmpeg_argv, parse_progress_line


def test_build_ffmpeg_argv_requests_machine_progress() -> None:
    argv = build_ffmpeg_argv(["-i", "in.mp4", "out.mp4"])

    assert argv[0] == ffmpeg.FFMPEG_BIN
    assert argv[argv.index("-progress") + 1] == "pipe:1"
    assert "-nostats" in argv
    assert "-nostdin" in argv
    assert argv[-2:] == ["in.mp4", "out.mp4"]


@pytest.mark.parametrize(
    "line, expected",
    [
        ("out_time_us=5000000\n", 0.5),
        ("out_time_ms=2500000", 0.25),
        ("out_time_us=20000000", 1.0),
        ("out_time_us=-1", 0.0),
        ("progress=end", 1.0),
        ("progress=continue", None),
        ("frame=120", None),
        ("out_time=00:00:05.000000", None),
        ("garbage", None),
    ],
)
def test_parse_progress_line(line, expected) -> None:
    assert parse_progress_line(line, 10.0) == expected


def test_parse_progress_line_needs_a_duration() -> None:
    assert parse_progress_line("out_time_us=5000000", None) is None
    assert parse_progress_line("out_time_us=5000000", 0) is None


def test_segment_copy_args_keep_audio_optional() -> None:
    args = segment.build_copy_args("in.mp4", "out.mp4", 10, 30)

    assert args[:4] == ["-ss", "10.000", "-i", "in.mp4"]
    assert args[args.index("-t") + 1] == "30.000"
    assert "0:a:0?" in args
    assert args[args.index("-c") + 1] == "copy"
    assert args[args.index("-avoid_negative_ts") + 1] == "make_zero"


def test_segment_reencode_args_use_x264_and_aac() -> None:
    args = segment.build_reencode_args("in.mp4", "out.mp4", 0, 15)

    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[args.index("-crf") + 1] == "23"
    assert args[args.index("-c:a") + 1] == "aac"
    assert "0:a:0?" in args


def test_extract_segment_reencodes_when_copy_is_not_frame_accurate(monkeypatch, tmp_path) -> None:
    calls = []

    async def _fake_run(args, *, duration=None, on_progress=None):
        calls.append(list(args))

    monkeypatch.setattr("media.segment.run_ffmpeg", _fake_run)
    monkeypatch.setattr("media.segment.validate_duration", lambda *_args: False)

    result = asyncio.run(segment.extract_segment("in.mp4", tmp_path / "clip.mp4", 10, 40))

    assert result.strategy == STRATEGY_REENCODE
    assert len(calls) == 2
    assert "copy" in calls[0]
    assert "libx264" in calls[1]


def test_extract_segment_keeps_accurate_copy(monkeypatch, tmp_path) -> None:
    calls = []

    async def _fake_run(args, *, duration=None, on_progress=None):
        calls.append(list(args))

    monkeypatch.setattr("media.segment.run_ffmpeg", _fake_run)
    monkeypatch.setattr("media.segment.validate_duration", lambda *_args: True)

    result = asyncio.run(segment.extract_segment("in.mp4", tmp_path / "clip.mp4", 10, 40))

    assert result.strategy == STRATEGY_COPY
    assert len(calls) == 1


def test_extract_segment_rejects_empty_window(tmp_path) -> None:
    with pytest.raises(ValueError):
        asyncio.run(segment.extract_segment("in.mp4", tmp_path / "clip.mp4", 5, 5))


def test_extract_segment_reports_failed_fallback_as_transform_failure(monkeypatch, tmp_path) -> None:
    async def _always_fail(args, *, duration=None, on_progress=None):
        raise FfmpegError(1, ["ffmpeg", *args], "Invalid data found when processing input\n")

    monkeypatch.setattr("media.segment.run_ffmpeg", _always_fail)

    with pytest.raises(TransformFailed) as excinfo:
        asyncio.run(segment.extract_segment("in.mp4", tmp_path / "clip.mp4", 0, 5))

    assert excinfo.value.stage == "extract"
    assert "Invalid data" in excinfo.value.diagnostic


def test_merge_failure_returns_failed_result_and_keeps_inputs(monkeypatch, tmp_path) -> None:
    video = tmp_path / "input_video.mp4"
    audio = tmp_path / "input_audio.webm"
    video.write_bytes(b"v")
    audio.write_bytes(b"a")

    async def _fail(args, *, duration=None, on_progress=None):
        raise FfmpegError(1, list(args), "Could not find tag for codec opus\n")

    monkeypatch.setattr("media.merge.run_ffmpeg", _fail)

    result = asyncio.run(merge.merge_streams(video, audio, tmp_path / "merged.mp4"))

    assert not result.ok
    assert isinstance(result.error, StreamCopyFailed)
    assert video.exists() and audio.exists()


def test_merge_success_deletes_inputs(monkeypatch, tmp_path) -> None:
    video = tmp_path / "input_video.mp4"
    audio = tmp_path / "input_audio.m4a"
    video.write_bytes(b"v")
    audio.write_bytes(b"a")
    seen = []

    async def _ok(args, *, duration=None, on_progress=None):
        seen.append(list(args))

    monkeypatch.setattr("media.merge.run_ffmpeg", _ok)

    result = asyncio.run(merge.merge_streams(video, audio, tmp_path / "merged.mp4"))

    assert result.ok
    assert not video.exists() and not audio.exists()
    assert seen[0][seen[0].index("-c:v") + 1] == "copy"
    assert "1:a:0" in seen[0]


def test_delivery_profiles() -> None:
    archival = delivery.get_profile("archival")
    mobile = delivery.get_profile("mobile")

    assert archival.video_args[archival.video_args.index("-crf") + 1] == "20"
    assert "keyint=30:min-keyint=30:scenecut=-1" in archival.video_args
    assert archival.audio_args[archival.audio_args.index("-b:a") + 1] == "192k"
    assert mobile.video_args[mobile.video_args.index("-maxrate") + 1] == "2M"
    assert mobile.h264_profile == "baseline"
    with pytest.raises(ValueError):
        delivery.get_profile("ultra")


def test_delivery_downscales_only_tall_landscape_archival() -> None:
    assert delivery.needs_downscale(delivery.ARCHIVAL, 2160, reframed=False) is True
    assert delivery.needs_downscale(delivery.ARCHIVAL, 1080, reframed=False) is False
    assert delivery.needs_downscale(delivery.ARCHIVAL, 1920, reframed=True) is False
    assert delivery.needs_downscale(delivery.MOBILE, 2160, reframed=False) is False


def test_build_delivery_args_adds_faststart_and_scale() -> None:
    args = delivery.build_delivery_args("in.mp4", "out.mp4", delivery.ARCHIVAL, downscale=True)

    assert args[args.index("-vf") + 1] == "scale=-2:1080:flags=lanczos"
    assert args[args.index("-movflags") + 1] == "+faststart"
    assert args[-1] == "out.mp4"
    assert "-vf" not in delivery.build_delivery_args("in.mp4", "out.mp4", delivery.MOBILE)


def test_optimize_failure_is_transform_failed(monkeypatch, tmp_path) -> None:
    async def _fail(args, *, duration=None, on_progress=None):
        raise FfmpegError(1, list(args), "Unknown encoder 'libx264'\n")

    monkeypatch.setattr("media.delivery.run_ffmpeg", _fail)

    with pytest.raises(TransformFailed) as excinfo:
        asyncio.run(delivery.optimize("in.mp4", tmp_path / "final.mp4", delivery.MOBILE))

    assert excinfo.value.stage == "optimize"
    assert "libx264" in excinfo.value.diagnostic


def test_placeholder_args_match_requested_duration() -> None:
    args = placeholder.build_placeholder_args("out.mp4", 12.5)

    assert "color=c=blue:s=1920x1080:r=30:d=12.500" in args
    assert "anullsrc=r=48000:cl=stereo" in args
    assert args[args.index("-t") + 1] == "12.500"


def test_stage_result_helpers() -> None:
    ok = StageResult.success("a.mp4", STRATEGY_COPY)
    failed = StageResult.failure(StreamCopyFailed("boom"), STRATEGY_COPY)

    assert ok.ok and str(ok.path) == "a.mp4"
    assert not failed.ok and failed.path is None

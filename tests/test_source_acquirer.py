from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from download import acquirer as acquirer_module
from download.acquirer import (
    TIER_LIBRARY,
    TIER_PLACEHOLDER,
    TIER_PRIMARY,
    SourceAcquirer,
    discover_downloads,
    format_token,
)
from download.formats import HEURISTIC_EXPRESSION
from download.ytdlp import YtDlpError
from engine.errors import AcquisitionFailed, NoViableFormat
from engine.job import ClipRequest, Job
from engine.pipeline import STRATEGY_COPY, StageResult

_INFO = {
    "formats": [
        {"format_id": "299", "ext": "mp4", "vcodec": "avc1.64002a", "acodec": "none", "width": 1920, "height": 1080, "fps": 60},
        {"format_id": "251", "ext": "webm", "vcodec": "none", "acodec": "opus", "abr": 120.0},
    ]
}


def _job(tmp_path, **overrides) -> Job:
    payload = {"source": "abc123xyz00", "start": 10, "end": 40, **overrides}
    return Job(request=ClipRequest(**payload), scratch_dir=str(tmp_path))


def _fail_library(*_args, **_kwargs):
    raise RuntimeError("library download failed")


def _patch_placeholder(monkeypatch, calls):
    async def _fake_placeholder(output_path, duration, *, on_progress=None):
        calls.append(duration)
        Path(output_path).write_bytes(b"placeholder")
        return output_path

    monkeypatch.setattr("media.placeholder.synthesize_placeholder", _fake_placeholder)


def test_primary_tier_returns_single_merged_file(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    reports = []
    job.progress.add_listener(lambda report: reports.append(report.percent))

    async def _probe(url):
        assert url == "https://www.youtube.com/watch?v=abc123xyz00"
        return _INFO

    async def _download(url, expression, template, *, on_progress=None):
        assert expression == "299+251"
        on_progress({"percent": 50.0})
        Path(template.replace("%(ext)s", "mp4")).write_bytes(b"media")

    monkeypatch.setattr("download.ytdlp.probe_info", _probe)
    monkeypatch.setattr("download.ytdlp.download", _download)

    source = asyncio.run(SourceAcquirer(library_download=_fail_library).acquire(job))

    assert source.tier == TIER_PRIMARY
    assert source.container == tmp_path / f"input_{job.id}.mp4"
    assert source.selection.expression == "299+251"
    assert not source.synthetic
    assert reports[0] == 5
    assert 25 in reports


def test_primary_tier_detects_leftover_separate_streams(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)

    async def _probe(url):
        return _INFO

    async def _download(url, expression, template, *, on_progress=None):
        (tmp_path / f"input_{job.id}.f299.mp4").write_bytes(b"video")
        (tmp_path / f"input_{job.id}.f251.webm").write_bytes(b"audio")
        (tmp_path / f"input_{job.id}.f251.webm.part").write_bytes(b"")

    monkeypatch.setattr("download.ytdlp.probe_info", _probe)
    monkeypatch.setattr("download.ytdlp.download", _download)

    source = asyncio.run(SourceAcquirer(library_download=_fail_library).acquire(job))

    assert source.needs_merge
    assert source.video_path.name == f"input_{job.id}.f299.mp4"
    assert source.audio_path.name == f"input_{job.id}.f251.webm"
    assert job.manifest.get("input_video") == source.video_path


def test_failed_primary_falls_back_to_library(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    monkeypatch.setattr("download.ytdlp.YTDLP_BIN", "false")
    seen = {}

    def _library(url, stem, *, on_progress=None, stop_event=None):
        seen["url"] = url
        path = Path(stem).with_suffix(".mp4")
        path.write_bytes(b"muxed")
        on_progress(5, 10)
        return path

    source = asyncio.run(SourceAcquirer(library_download=_library).acquire(job))

    assert source.tier == TIER_LIBRARY
    assert source.container == tmp_path / f"input_{job.id}.mp4"
    assert source.selection is None
    assert seen["url"].endswith("abc123xyz00")


def test_library_download_in_other_container_is_remuxed(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    monkeypatch.setattr("download.ytdlp.YTDLP_BIN", "false")
    remuxed = []

    def _library(url, stem, *, on_progress=None, stop_event=None):
        path = Path(stem).with_suffix(".webm")
        path.write_bytes(b"muxed")
        return path

    async def _remux(input_path, output_path, *, duration=None, on_progress=None):
        remuxed.append((Path(input_path).name, Path(output_path).name))
        Path(output_path).write_bytes(b"mp4")
        Path(input_path).unlink()
        return StageResult.success(output_path, STRATEGY_COPY)

    monkeypatch.setattr("media.merge.remux_to_mp4", _remux)

    source = asyncio.run(SourceAcquirer(library_download=_library).acquire(job))

    assert remuxed == [(f"input_{job.id}.webm", f"source_{job.id}.mp4")]
    assert source.container.name == f"source_{job.id}.mp4"


def test_both_download_tiers_failing_yields_placeholder(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path, start=5, end=20)
    monkeypatch.setattr("download.ytdlp.YTDLP_BIN", "false")
    calls = []
    _patch_placeholder(monkeypatch, calls)

    source = asyncio.run(SourceAcquirer(library_download=_fail_library).acquire(job))

    assert source.tier == TIER_PLACEHOLDER
    assert source.synthetic
    assert calls == [15]
    assert source.container == tmp_path / f"placeholder_{job.id}.mp4"


def test_primary_timeout_advances_the_chain(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    calls = []
    _patch_placeholder(monkeypatch, calls)

    async def _slow_probe(url):
        await asyncio.sleep(5)
        return _INFO

    monkeypatch.setattr("download.ytdlp.probe_info", _slow_probe)

    def _slow_library(url, stem, *, on_progress=None, stop_event=None):
        stop_event.wait(5)
        raise RuntimeError("aborted")

    acquirer = SourceAcquirer(primary_timeout=0.05, secondary_timeout=0.05, library_download=_slow_library)
    source = asyncio.run(acquirer.acquire(job))

    assert source.tier == TIER_PLACEHOLDER
    assert calls == [30]


def test_no_viable_format_is_not_retried(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    library_calls = []

    async def _probe(url):
        return {"formats": [{"format_id": "140", "vcodec": "none", "acodec": "mp4a.40.2"}]}

    monkeypatch.setattr("download.ytdlp.probe_info", _probe)

    with pytest.raises(NoViableFormat):
        asyncio.run(SourceAcquirer(library_download=lambda *a, **k: library_calls.append(a)).acquire(job))
    assert library_calls == []


def test_unreported_codecs_download_with_heuristic_expression(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    expressions = []

    async def _probe(url):
        return {"formats": [{"format_id": "http-720p", "ext": "mp4", "width": 1280, "height": 720}]}

    async def _download(url, expression, template, *, on_progress=None):
        expressions.append(expression)
        Path(template.replace("%(ext)s", "mp4")).write_bytes(b"media")

    monkeypatch.setattr("download.ytdlp.probe_info", _probe)
    monkeypatch.setattr("download.ytdlp.download", _download)

    source = asyncio.run(SourceAcquirer(library_download=_fail_library).acquire(job))

    assert source.tier == TIER_PRIMARY
    assert expressions == [HEURISTIC_EXPRESSION]


def test_all_tiers_failing_raises_acquisition_failed(monkeypatch, tmp_path) -> None:
    job = _job(tmp_path)
    monkeypatch.setattr("download.ytdlp.YTDLP_BIN", "false")

    async def _broken_placeholder(output_path, duration, *, on_progress=None):
        raise RuntimeError("lavfi unavailable")

    monkeypatch.setattr("media.placeholder.synthesize_placeholder", _broken_placeholder)

    with pytest.raises(AcquisitionFailed, match="lavfi unavailable"):
        asyncio.run(SourceAcquirer(library_download=_fail_library).acquire(job))


def test_discover_downloads_skips_partials_and_other_jobs(tmp_path) -> None:
    (tmp_path / "input_abc.mp4").write_bytes(b"x")
    (tmp_path / "input_abc.f137.mp4.part").write_bytes(b"x")
    (tmp_path / "input_abc.info.json").write_bytes(b"{}")
    (tmp_path / "input_abc.empty.mp4").write_bytes(b"")
    (tmp_path / "input_abcd.mp4").write_bytes(b"x")

    assert [p.name for p in discover_downloads(tmp_path, "abc")] == ["input_abc.mp4"]
    assert discover_downloads(tmp_path / "missing", "abc") == []


def test_format_token() -> None:
    assert format_token(Path("input_abc.f299.mp4")) == "299"
    assert format_token(Path("input_abc.mp4")) is None
    assert acquirer_module.download_prefix("abc") == "input_abc."

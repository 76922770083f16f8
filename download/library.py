"""In-process fallback downloader: yt_dlp metadata plus a plain HTTP stream."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests
from yt_dlp import YoutubeDL

from config.settings import MAX_SOURCE_HEIGHT

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_HTTP_TIMEOUT = 30


class LibraryDownloadError(RuntimeError):
    pass


class DownloadAborted(LibraryDownloadError):
    """The stop flag was set while streaming."""


@dataclass(frozen=True)
class MuxedFormat:
    format_id: str
    url: str
    ext: str
    height: int
    bitrate: float
    http_headers: dict


def extract_info(url: str) -> dict:
    opts = {
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "skip_download": True,
    }
    with YoutubeDL(opts) as ydl:
        info = ydl.extract_info(url, download=False)
    if not isinstance(info, dict):
        raise LibraryDownloadError("metadata extraction returned no info")
    return info


def pick_muxed_format(info: dict) -> MuxedFormat:
    """Choose the best progressive (audio+video) format at or below 1080p."""
    candidates = []
    for fmt in info.get("formats") or []:
        if not isinstance(fmt, dict):
            continue
        vcodec = str(fmt.get("vcodec") or "none").lower()
        acodec = str(fmt.get("acodec") or "none").lower()
        if vcodec == "none" or acodec == "none":
            continue
        if not fmt.get("url"):
            continue
        protocol = str(fmt.get("protocol") or "https").lower()
        if protocol not in ("http", "https"):
            continue
        height = int(fmt.get("height") or 0)
        if height <= 0 or height > MAX_SOURCE_HEIGHT:
            continue
        bitrate = float(fmt.get("tbr") or fmt.get("vbr") or 0)
        candidates.append(
            MuxedFormat(
                format_id=str(fmt.get("format_id") or ""),
                url=str(fmt["url"]),
                ext=str(fmt.get("ext") or "mp4"),
                height=height,
                bitrate=bitrate,
                http_headers=dict(fmt.get("http_headers") or {}),
            )
        )
    if not candidates:
        raise LibraryDownloadError(f"no muxed format at or below {MAX_SOURCE_HEIGHT}p")
    candidates.sort(key=lambda f: (-f.height, -f.bitrate, f.format_id))
    return candidates[0]


def _check_stop(stop_event: Optional[threading.Event]) -> None:
    if stop_event is not None and stop_event.is_set():
        raise DownloadAborted("download aborted")


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("could not remove partial download path=%s error=%s", path, exc)


def stream_to_file(
    fmt: MuxedFormat,
    destination: Path,
    *,
    on_progress: Optional[Callable[[int, Optional[int]], object]] = None,
    stop_event: Optional[threading.Event] = None,
) -> Path:
    """Stream ``fmt`` into ``destination``; ``on_progress(downloaded, total)`` per chunk.

    Nothing is left at ``destination`` unless the download completes: the stop
    flag is honoured before the request and between chunks, and a partial file
    is removed on any failure.
    """
    _check_stop(stop_event)
    downloaded = 0
    try:
        with requests.get(fmt.url, headers=fmt.http_headers, stream=True, timeout=_HTTP_TIMEOUT) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length") or 0) or None
            _check_stop(stop_event)
            with open(destination, "wb") as handle:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    _check_stop(stop_event)
                    if not chunk:
                        continue
                    handle.write(chunk)
                    downloaded += len(chunk)
                    if on_progress is not None:
                        on_progress(downloaded, total)
        if downloaded == 0:
            raise LibraryDownloadError("downloaded file is empty")
    except BaseException:
        _discard(destination)
        raise
    return destination


def download_muxed(
    url: str,
    destination_stem: Path,
    *,
    on_progress: Optional[Callable[[int, Optional[int]], object]] = None,
    stop_event: Optional[threading.Event] = None,
) -> Path:
    """Fetch metadata, pick a muxed variant, and stream it next to ``destination_stem``.

    Blocking; callers on the event loop run it in a worker thread and set
    ``stop_event`` when they give up on it.
    """
    info = extract_info(url)
    _check_stop(stop_event)
    fmt = pick_muxed_format(info)
    destination = destination_stem.with_suffix(f".{fmt.ext}")
    logger.info(
        "library_download_selected format_id=%s height=%s ext=%s",
        fmt.format_id,
        fmt.height,
        fmt.ext,
    )
    return stream_to_file(fmt, destination, on_progress=on_progress, stop_event=stop_event)

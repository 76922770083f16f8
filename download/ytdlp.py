"""yt-dlp command-line driver: format probe, download argv, progress parsing."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import Callable, Optional

from config.settings import CANONICAL_CONTAINER, YTDLP_BIN

logger = logging.getLogger(__name__)

PROGRESS_MARKER = "[CLIPPER_PROGRESS]"
PROGRESS_TEMPLATE = (
    f"download:{PROGRESS_MARKER} "
    "%(progress.downloaded_bytes)s|%(progress.total_bytes)s|"
    "%(progress.total_bytes_estimate)s|%(progress._percent_str)s"
)
_STDERR_TAIL_LINES = 40
_MISSING = {"", "none", "na", "n/a", "null"}


class YtDlpError(RuntimeError):
    """yt-dlp exited non-zero, printed unusable output, or could not be started."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


def _number(field: str) -> Optional[float]:
    raw = field.replace("%", "").strip()
    if raw.lower() in _MISSING:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def parse_progress_line(line):
    """Read ``{"downloaded", "total", "percent"}`` from a :data:`PROGRESS_MARKER` line.

    ``total`` falls back to yt-dlp's size estimate, and ``percent`` is derived
    from the byte counts when yt-dlp prints none. Other lines yield ``None``.
    """
    if not line or PROGRESS_MARKER not in line:
        return None
    fields = line.split(PROGRESS_MARKER, 1)[1].split("|")
    if len(fields) != 4:
        return None
    downloaded, total, estimate, percent = (_number(f) for f in fields)
    total = total or estimate
    if percent is None and downloaded is not None and total:
        percent = downloaded / total * 100.0
    return {
        "downloaded": int(downloaded) if downloaded is not None else None,
        "total": int(total) if total else None,
        "percent": None if percent is None else max(0.0, min(100.0, percent)),
    }


def render_probe_argv(url: str) -> list[str]:
    return [
        YTDLP_BIN,
        "--dump-single-json",
        "--skip-download",
        "--no-playlist",
        "--no-warnings",
        str(url),
    ]


def render_download_argv(url: str, expression: str, output_template: str) -> list[str]:
    """Return a yt-dlp argv list suitable for ``create_subprocess_exec`` (no shell)."""
    return [
        YTDLP_BIN,
        "--format",
        str(expression),
        "--merge-output-format",
        CANONICAL_CONTAINER,
        "--output",
        str(output_template),
        "--no-playlist",
        "--no-warnings",
        "--newline",
        "--no-color",
        "--progress-template",
        PROGRESS_TEMPLATE,
        str(url),
    ]


async def _communicate_lines(argv, on_line: Optional[Callable[[str], None]] = None):
    """Run ``argv``; feed every stdout/stderr line to ``on_line``; return (code, stdout, stderr_tail)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise YtDlpError(f"yt-dlp not found: {exc}") from exc

    stdout_chunks: list[str] = []
    stderr_tail: list[str] = []

    async def _pump(stream, sink, keep_tail):
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            if keep_tail:
                sink.append(line)
                if len(sink) > _STDERR_TAIL_LINES:
                    del sink[0]
            else:
                sink.append(line)
            if on_line is not None:
                try:
                    on_line(line)
                except Exception:
                    logger.exception("ytdlp_line_callback_failed")

    try:
        await asyncio.gather(
            _pump(proc.stdout, stdout_chunks, on_line is not None),
            _pump(proc.stderr, stderr_tail, True),
        )
        returncode = await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return returncode, "".join(stdout_chunks), "".join(stderr_tail)


async def probe_info(url: str) -> dict:
    """Fetch the source's info dict (formats included) without downloading media."""
    argv = render_probe_argv(url)
    logger.info("ytdlp_probe argv=%s", shlex.join(argv))
    # The info JSON is a single line far larger than the stream reader's line
    # limit, so read it whole instead of line by line.
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise YtDlpError(f"yt-dlp not found: {exc}") from exc
    try:
        stdout_bytes, stderr_bytes = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    returncode = proc.returncode
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if returncode != 0:
        raise YtDlpError(
            f"yt-dlp probe failed with code {returncode}",
            returncode=returncode,
            stderr=stderr,
        )
    try:
        info = json.loads(stdout or "{}")
    except json.JSONDecodeError as exc:
        raise YtDlpError("yt-dlp probe returned invalid JSON", stderr=stderr) from exc
    if not isinstance(info, dict):
        raise YtDlpError("yt-dlp probe returned an unexpected payload", stderr=stderr)
    return info


async def download(
    url: str,
    expression: str,
    output_template: str,
    *,
    on_progress: Optional[Callable[[dict], object]] = None,
) -> None:
    """Download ``url`` with the given format expression.

    ``on_progress`` receives the dicts produced by :func:`parse_progress_line`.

    Raises:
        YtDlpError: on a non-zero exit; ``stderr`` holds the diagnostic tail.
    """
    argv = render_download_argv(url, expression, output_template)
    logger.info("ytdlp_download argv=%s", shlex.join(argv))

    def _on_line(line: str) -> None:
        parsed = parse_progress_line(line)
        if parsed is not None and on_progress is not None:
            on_progress(parsed)

    returncode, _stdout, stderr = await _communicate_lines(argv, _on_line)
    if returncode != 0:
        raise YtDlpError(
            f"yt-dlp failed with code {returncode}",
            returncode=returncode,
            stderr=stderr,
        )

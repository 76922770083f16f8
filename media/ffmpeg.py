"""Async ffmpeg invocation with structured progress events."""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Callable, Optional, Sequence

from config.settings import FFMPEG_BIN

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 40


class FfmpegError(RuntimeError):
    """ffmpeg exited non-zero or could not be started."""

    def __init__(self, returncode: int, argv: Sequence[str], stderr: str) -> None:
        self.returncode = returncode
        self.argv = list(argv)
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no diagnostic output"
        super().__init__(f"ffmpeg exited with code {returncode}: {detail}")


def build_ffmpeg_argv(args: Sequence[str]) -> list[str]:
    """Prefix stage arguments with the flags every invocation needs.

    ``-progress pipe:1`` makes ffmpeg emit ``key=value`` progress blocks on
    stdout; ``-nostats`` keeps the human progress line off stderr so the
    stderr tail stays a useful diagnostic.
    """
    return [
        FFMPEG_BIN,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-loglevel",
        "error",
        "-progress",
        "pipe:1",
        "-nostats",
        *[str(arg) for arg in args],
    ]


def parse_progress_line(line: str, duration: Optional[float]) -> Optional[float]:
    """Return the completed fraction for an ``out_time_*`` progress line.

    ``out_time_us`` and ``out_time_ms`` both carry microseconds. ``progress=end``
    maps to 1.0. Other keys, or an unknown duration, return ``None``.
    """
    key, sep, value = (line or "").strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 1.0
    if key not in ("out_time_us", "out_time_ms"):
        return None
    if not duration or duration <= 0:
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    if micros < 0:
        return 0.0
    return max(0.0, min(1.0, (micros / 1_000_000.0) / duration))


async def run_ffmpeg(
    args: Sequence[str],
    *,
    duration: Optional[float] = None,
    on_progress: Optional[Callable[[float], object]] = None,
) -> None:
    """Run ffmpeg to completion, forwarding fractional progress.

    Raises:
        FfmpegError: when ffmpeg is missing or exits non-zero; ``stderr`` holds
            the tail of its diagnostic output.
    """
    argv = build_ffmpeg_argv(args)
    logger.debug("ffmpeg_exec argv=%s", shlex.join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise FfmpegError(-1, argv, f"ffmpeg not found: {exc}") from exc

    stderr_lines: list[str] = []

    async def _read_stdout():
        last = -1.0
        while True:
            raw = await proc.stdout.readline()
            if not raw:
                break
            fraction = parse_progress_line(raw.decode("utf-8", errors="replace"), duration)
            if fraction is None or on_progress is None or fraction <= last:
                continue
            last = fraction
            try:
                on_progress(fraction)
            except Exception:
                logger.exception("ffmpeg_progress_callback_failed")

    async def _read_stderr():
        while True:
            raw = await proc.stderr.readline()
            if not raw:
                break
            stderr_lines.append(raw.decode("utf-8", errors="replace"))
            if len(stderr_lines) > _STDERR_TAIL_LINES:
                del stderr_lines[0]

    try:
        await asyncio.gather(_read_stdout(), _read_stderr())
        returncode = await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    if returncode != 0:
        raise FfmpegError(returncode, argv, "".join(stderr_lines))

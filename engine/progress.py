"""Per-job progress channel with monotonic reports and multiple observers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

logger = logging.getLogger(__name__)

# Weighted schedule, in percent, for each pipeline stage.
PROBE_PERCENT = 5
ACQUIRE_BAND = (10, 40)
MERGE_BAND = (35, 40)
EXTRACT_BAND = (40, 50)
TRANSFORM_BAND = (50, 75)
OVERLAY_BAND = (75, 90)
OPTIMIZE_BAND = (90, 100)

_CLOSED = object()


@dataclass(frozen=True)
class ProgressReport:
    percent: int
    message: str
    state: str = ""


class ProgressChannel:
    """Ordered stream of progress reports for one job.

    Reports never go backwards: a publish below the last percentage is clamped
    up to it so observers see a non-decreasing sequence even when stage bands
    overlap. Each subscriber gets its own queue and receives the current report
    first, then every later report until the channel is closed.
    """

    def __init__(self, job_id: str = "") -> None:
        self.job_id = job_id
        self._latest = ProgressReport(0, "Queued")
        self._state = ""
        self._subscribers: list[asyncio.Queue] = []
        self._listeners: list = []
        self._closed = False

    @property
    def latest(self) -> ProgressReport:
        return self._latest

    @property
    def closed(self) -> bool:
        return self._closed

    def set_state(self, state: str) -> None:
        self._state = state

    def publish(self, percent, message: str) -> ProgressReport:
        if self._closed:
            return self._latest
        value = int(round(max(0.0, min(100.0, float(percent)))))
        value = max(value, self._latest.percent)
        report = ProgressReport(value, message, self._state)
        self._latest = report
        logger.debug("job_progress job_id=%s percent=%s message=%s", self.job_id, value, message)
        for queue in self._subscribers:
            queue.put_nowait(report)
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:
                logger.exception("progress_listener_failed job_id=%s", self.job_id)
        return report

    def add_listener(self, callback) -> None:
        """Register a synchronous observer called with every published report."""
        self._listeners.append(callback)

    async def subscribe(self) -> AsyncIterator[ProgressReport]:
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._latest)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(_CLOSED)


class ProgressBand:
    """Map a stage-local fraction in [0, 1] onto a slice of the job's progress."""

    def __init__(self, channel: ProgressChannel, band: tuple[int, int], label: str) -> None:
        self.channel = channel
        self.start, self.end = band
        self.label = label

    def begin(self, message: str | None = None) -> ProgressReport:
        return self.channel.publish(self.start, message or f"{self.label}...")

    def __call__(self, fraction) -> ProgressReport:
        try:
            fraction = float(fraction)
        except (TypeError, ValueError):
            fraction = 0.0
        fraction = max(0.0, min(1.0, fraction))
        percent = self.start + (self.end - self.start) * fraction
        return self.channel.publish(percent, f"{self.label}: {round(fraction * 100)}%")

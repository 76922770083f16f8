"""Caption cues supplied by the external subtitle component."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


@dataclass(frozen=True)
class CaptionCue:
    start: float
    end: float
    text: str


class CaptionProvider(Protocol):
    def fetch_cues(
        self, source_id: str, window: Optional[tuple[float, float]] = None
    ) -> Sequence[CaptionCue]:
        """Return cues for ``source_id``, already shifted into ``window`` when given."""


def shift_cues(cues: Sequence[CaptionCue], start: float, end: float) -> list[CaptionCue]:
    """Clip cues to ``[start, end)`` and rebase them so the window starts at zero."""
    shifted = []
    for cue in cues:
        cue_start = max(cue.start, start)
        cue_end = min(cue.end, end)
        text = (cue.text or "").strip()
        if cue_end <= cue_start or not text:
            continue
        shifted.append(CaptionCue(cue_start - start, cue_end - start, text))
    return shifted


class StaticCaptionProvider:
    """In-memory provider keyed by source id."""

    def __init__(self, cues_by_source: Optional[dict[str, Sequence[CaptionCue]]] = None) -> None:
        self._cues = dict(cues_by_source or {})

    def fetch_cues(self, source_id, window=None):
        cues = list(self._cues.get(source_id, ()))
        if window is None:
            return cues
        return shift_cues(cues, window[0], window[1])

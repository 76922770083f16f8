"""Fast-path/fallback sequencing for individual stages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from engine.errors import StreamCopyFailed, TransformFailed
from engine.logging_utils import log_event

logger = logging.getLogger(__name__)

STRATEGY_COPY = "copy"
STRATEGY_REENCODE = "reencode"


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage: the produced file, or the error that stopped it."""

    path: Optional[Path]
    strategy: str
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.path is not None

    @classmethod
    def success(cls, path, strategy: str) -> "StageResult":
        return cls(path=Path(path), strategy=strategy)

    @classmethod
    def failure(cls, error: Exception, strategy: str) -> "StageResult":
        return cls(path=None, strategy=strategy, error=error)


async def run_with_fallback(
    fast: Callable[[], Awaitable[StageResult]],
    fallback: Callable[[], Awaitable[StageResult]],
    *,
    stage: str,
    recover_on: tuple[type[BaseException], ...] = (StreamCopyFailed,),
) -> StageResult:
    """Run ``fast``; retry once with ``fallback`` only when it raises ``recover_on``.

    Any other error from ``fast`` propagates unchanged. An error from
    ``fallback`` is reported as :class:`TransformFailed` for ``stage`` unless it
    already is one.
    """
    try:
        return await fast()
    except recover_on as exc:
        log_event(logging.WARNING, "stage_fast_path_failed", stage=stage, error=str(exc))

    try:
        return await fallback()
    except TransformFailed:
        raise
    except Exception as exc:
        log_event(logging.ERROR, "stage_fallback_failed", stage=stage, error=str(exc))
        raise TransformFailed(stage, str(exc)) from exc

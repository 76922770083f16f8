"""Media validation helpers."""

from __future__ import annotations

import logging

from media.ffprobe import get_media_duration

logger = logging.getLogger(__name__)


def validate_duration(file_path: str, expected_seconds: float, tolerance_seconds: float = 5.0) -> bool:
    """Validate that a media file duration is within tolerance of an expected value.

    Returns:
        ``True`` when ``abs(actual_seconds - expected_seconds) <= tolerance_seconds``.
        ``False`` when the duration falls outside tolerance or probing fails.

    Constraints:
        - ``expected_seconds`` and ``tolerance_seconds`` must be non-negative.
        - Any ffprobe/probe parsing error is handled non-fatally and returns ``False``.
    """
    if expected_seconds < 0:
        logger.warning("Duration validation failed: expected_seconds must be non-negative")
        return False
    if tolerance_seconds < 0:
        logger.warning("Duration validation failed: tolerance_seconds must be non-negative")
        return False

    try:
        actual_duration_seconds = get_media_duration(str(file_path))
    except Exception:
        logger.exception("Failed to probe media duration for path=%s", file_path)
        return False

    delta = abs(actual_duration_seconds - expected_seconds)
    if delta > tolerance_seconds:
        logger.info(
            "duration_out_of_tolerance path=%s actual=%.3fs expected=%.3fs tolerance=%.3fs",
            file_path,
            actual_duration_seconds,
            expected_seconds,
            tolerance_seconds,
        )
        return False
    return True

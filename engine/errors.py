"""Error taxonomy for the clip pipeline."""

from __future__ import annotations


class ClipperError(Exception):
    """Base class for pipeline errors; ``code`` is stable for callers."""

    code = "clipper_error"


class InvalidClipRequest(ClipperError):
    code = "invalid_request"


class FormatNegotiationFailed(ClipperError):
    """No usable remote variant exists for the source."""

    code = "format_negotiation_failed"


class NoViableFormat(FormatNegotiationFailed):
    pass


class AcquisitionFailed(ClipperError):
    """Every acquisition tier, placeholder included, failed."""

    code = "acquisition_failed"


class AcquisitionTimeout(ClipperError):
    """A download tier exceeded its wall-clock limit."""

    code = "acquisition_timeout"


class StreamCopyFailed(ClipperError):
    """A stream-copy fast path could not produce a usable file."""

    code = "stream_copy_failed"


class TransformFailed(ClipperError):
    """A transform stage failed after any fallback."""

    code = "transform_failed"

    def __init__(self, stage: str, diagnostic: str) -> None:
        self.stage = stage
        self.diagnostic = diagnostic
        super().__init__(f"{stage} failed: {diagnostic}")


class CleanupWarning(ClipperError):
    """A scratch file could not be removed."""

    code = "cleanup_warning"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"could not remove {path}: {reason}")

from .errors import ClipperError
from .job import ClipMetadata, ClipRequest, ClipResult, Job, JobFailure, JobState
from .runtime import get_runtime_info, verify_toolchain

__all__ = [
    "ClipMetadata",
    "ClipRequest",
    "ClipResult",
    "ClipperError",
    "Job",
    "JobFailure",
    "JobState",
    "get_runtime_info",
    "verify_toolchain",
]

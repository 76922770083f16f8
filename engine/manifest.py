"""Per-job record of scratch artifacts, keyed by stage tag."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from engine.errors import CleanupWarning

logger = logging.getLogger(__name__)


def artifact_name(stage: str, job_id: str, ext: str) -> str:
    return f"{stage}_{job_id}.{ext.lstrip('.')}"


class ArtifactManifest:
    """Tracks every file a job writes so cleanup never depends on globbing alone."""

    def __init__(self, job_id: str, scratch_dir) -> None:
        self.job_id = job_id
        self.scratch_dir = Path(scratch_dir)
        self._entries: dict[str, Path] = {}

    def path_for(self, stage: str, ext: str = "mp4") -> Path:
        """Return (and register) the deterministic path for a stage output."""
        path = self.scratch_dir / artifact_name(stage, self.job_id, ext)
        self._entries[stage] = path
        return path

    def register(self, stage: str, path) -> Path:
        path = Path(path)
        self._entries[stage] = path
        return path

    def get(self, stage: str) -> Path | None:
        return self._entries.get(stage)

    def stages(self) -> list[str]:
        return list(self._entries)

    def paths(self) -> list[Path]:
        return list(self._entries.values())

    def discard(self, stage: str) -> list[CleanupWarning]:
        path = self._entries.pop(stage, None)
        if path is None:
            return []
        return _remove(path)

    def cleanup(self) -> list[CleanupWarning]:
        """Delete every registered artifact, then sweep stray files for this job.

        Only files whose name contains the job id are touched, so jobs sharing
        the scratch directory are unaffected.
        """
        warnings: list[CleanupWarning] = []
        for stage in list(self._entries):
            warnings.extend(self.discard(stage))
        if self.job_id and self.scratch_dir.is_dir():
            for entry in self.scratch_dir.iterdir():
                if self.job_id in entry.name and entry.is_file():
                    warnings.extend(_remove(entry))
        return warnings


def _remove(path: Path) -> list[CleanupWarning]:
    try:
        os.remove(path)
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("cleanup_failed path=%s error=%s", path, exc)
        return [CleanupWarning(str(path), str(exc))]
    logger.debug("cleanup_removed path=%s", path)
    return []

import logging
from pathlib import Path
from typing import List, Optional

from .exceptions import IOFailure
from .store import JobStore
from .video import EngineRegistry

logger = logging.getLogger(__name__)


def derived_outputs(output_dir: Path, stem: str) -> List[Path]:
    """Every artifact in output_dir whose name derives from a source stem."""
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return []
    prefix = f"{stem}_"
    return sorted(p for p in output_dir.iterdir() if p.is_file() and p.name.startswith(prefix))


class CleanupCoordinator:
    """
    Retires a job and removes its source and derived outputs.

    The record is removed first, so a concurrent or repeated cleanup gets
    NotFound. Running transcodes for the job are failed and stopped before
    any file is touched. File deletion is best-effort-forward: failures are
    reported as IOFailure but the job stays retired.
    """

    def __init__(self, store: JobStore, output_dir: Path,
                 registry: Optional[EngineRegistry] = None, stop_timeout: float = 10.0):
        self.store = store
        self.output_dir = Path(output_dir)
        self.registry = registry
        self.stop_timeout = stop_timeout

    def cleanup(self, job_id: str) -> List[str]:
        job = self.store.delete(job_id)
        self._stop_running(job_id)

        removed, failures = [], []
        targets = [Path(job.path)] + derived_outputs(self.output_dir, job.stem)
        for path in targets:
            try:
                path.unlink(missing_ok=True)
                removed.append(path.name)
            except OSError as e:
                logger.warning("Cleanup of job %s could not remove %s: %s", job_id, path, e)
                failures.append(f"{path.name}: {e.strerror or e}")

        if failures:
            raise IOFailure(f"Job {job_id} retired but some files could not be removed: {'; '.join(failures)}")
        logger.info("Cleaned up job %s (%d files)", job_id, len(removed))
        return removed

    def _stop_running(self, job_id: str) -> None:
        if self.registry is None:
            return
        for handle in self.registry.get(job_id):
            handle.attempt.fail("Job was cleaned up while processing")
            handle.terminate()
            handle.join(self.stop_timeout)
            if handle.thread is not None and handle.thread.is_alive():
                logger.warning("ffmpeg for job %s did not stop within %ss", job_id, self.stop_timeout)

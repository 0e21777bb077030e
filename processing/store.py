"""
In-memory job registry.

Lifecycle: create on upload, read on process/poll, delete on cleanup. Deleted
ids are remembered as retired and never handed out again. A single
lock serializes bookkeeping only; no transcode work ever runs under it.
"""
import logging
import threading
from pathlib import Path
from typing import Dict, List, Set
from uuid import uuid4

from .exceptions import NotFound
from .models import Job, MediaKind

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._retired: Set[str] = set()
        self._lock = threading.Lock()

    def create(self, *, filename: str, original_name: str, mime: str,
               kind: MediaKind, path: Path) -> Job:
        with self._lock:
            job_id = str(uuid4())
            while job_id in self._jobs or job_id in self._retired:
                job_id = str(uuid4())
            job = Job(
                id=job_id,
                filename=filename,
                original_name=original_name,
                mime=mime,
                kind=kind,
                path=Path(path),
            )
            self._jobs[job_id] = job
        logger.info("Created job %s for %s (%s)", job_id, filename, kind.value)
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def exists(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def add_attempt(self, job_id: str, attempt) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            job.attempts[attempt.id] = attempt

    def attempts(self, job_id: str) -> List:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            return list(job.attempts.values())

    def is_retired(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._retired

    def delete(self, job_id: str) -> Job:
        """Remove and return the job; a second delete raises NotFound."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is not None:
                self._retired.add(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        logger.info("Deleted job %s", job_id)
        return job

    def __len__(self):
        with self._lock:
            return len(self._jobs)

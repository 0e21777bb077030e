"""
Processing attempt state machine: launched -> running -> completed | failed.

The attempt is the only emitter of lifecycle events for its job/profile pair,
which is how "exactly one terminal event" is enforced: once completed or
failed, every further emit is ignored.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from .events import EventChannel, EventType, ProcessingEvent
from .models import TERMINAL_STATUSES, AttemptStatus, MediaKind, OutputProfile, download_url

logger = logging.getLogger(__name__)


class ProcessingAttempt:
    def __init__(self, *, job_id: str, platform: str, profile: OutputProfile,
                 output_name: str, kind: MediaKind, channel: EventChannel,
                 address: Optional[str] = None):
        self.id = uuid4().hex
        self.job_id = job_id
        self.platform = platform
        self.profile = profile
        self.output_name = output_name
        self.kind = kind
        self.address = address or None
        self.status = AttemptStatus.LAUNCHED
        self.progress: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self._channel = channel
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return download_url(self.output_name)

    @property
    def is_terminal(self) -> bool:
        with self._lock:
            return self.status in TERMINAL_STATUSES

    def started(self, description: str) -> bool:
        with self._lock:
            if self.status != AttemptStatus.LAUNCHED:
                return False
            self.status = AttemptStatus.RUNNING
            return self._emit(EventType.STARTED, {"commandLine": description})

    def report_progress(self, measure: Dict[str, Any]) -> bool:
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                return False
            self.status = AttemptStatus.RUNNING
            self.progress = dict(measure)
            return self._emit(EventType.PROGRESS, {"progress": dict(measure)})

    def complete(self) -> bool:
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                logger.warning("Attempt %s of job %s already %s; ignoring completion",
                               self.id, self.job_id, self.status.value)
                return False
            self.status = AttemptStatus.COMPLETED
            self.finished_at = datetime.now(timezone.utc)
            self._emit(EventType.DONE, {"url": self.url, "outName": self.output_name})
        logger.info("Job %s attempt %s completed: %s", self.job_id, self.id, self.output_name)
        return True

    def fail(self, message: str) -> bool:
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                logger.warning("Attempt %s of job %s already %s; ignoring error: %s",
                               self.id, self.job_id, self.status.value, message)
                return False
            self.status = AttemptStatus.FAILED
            self.error = message
            self.finished_at = datetime.now(timezone.utc)
            self._emit(EventType.ERROR, {"message": message})
        logger.error("Job %s attempt %s failed: %s", self.job_id, self.id, message)
        return True

    def _emit(self, event_type: EventType, data: Dict[str, Any]) -> bool:
        # called with self._lock held; publish never blocks
        event = ProcessingEvent(type=event_type, job_id=self.job_id, address=self.address, data=data)
        self._channel.publish(self.address, event)
        return True

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "attemptId": self.id,
                "platform": self.platform,
                "kind": self.kind.value,
                "status": self.status.value,
                "profile": self.profile.to_dict(),
                "outName": self.output_name,
                "url": self.url if self.status == AttemptStatus.COMPLETED else None,
                "progress": self.progress,
                "error": self.error,
                "createdAt": self.created_at.isoformat(),
                "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            }

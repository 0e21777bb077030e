from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from django.db import models


class MediaKind(models.TextChoices):
    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"


class AttemptStatus(models.TextChoices):
    LAUNCHED = "launched"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.FAILED})


@dataclass(frozen=True)
class OutputProfile:
    width: int
    height: int
    fps: float
    video_bitrate_kbps: int
    audio_bitrate_kbps: int
    container: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "video_bitrate_kbps": self.video_bitrate_kbps,
            "audio_bitrate_kbps": self.audio_bitrate_kbps,
            "container": self.container,
        }


@dataclass(frozen=True)
class Preset:
    display: str
    description: str
    recommended: OutputProfile

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display": self.display,
            "description": self.description,
            "recommended": self.recommended.to_dict(),
        }


@dataclass
class Job:
    """An uploaded source file. Only the JobStore creates, mutates or deletes these."""
    id: str
    filename: str          # system-assigned, collision-free
    original_name: str     # client-supplied, display only
    mime: str
    kind: MediaKind
    path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: Dict[str, Any] = field(default_factory=dict)  # attempt id -> ProcessingAttempt

    @property
    def stem(self) -> str:
        return Path(self.filename).stem

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.id,
            "filename": self.filename,
            "originalName": self.original_name,
            "mime": self.mime,
            "kind": self.kind.value,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ProcessingOutcome:
    """Synchronous result of a processing request."""
    job_id: str
    attempt_id: str
    out_name: str
    url: str
    accepted: bool  # True when the result arrives later via events (video)

    def to_dict(self) -> Dict[str, Any]:
        if self.accepted:
            return {"jobId": self.job_id, "message": "processing_started", "outName": self.out_name}
        return {"jobId": self.job_id, "url": self.url, "outName": self.out_name}


def download_url(out_name: str) -> str:
    return f"/download/{out_name}"

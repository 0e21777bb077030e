"""
Service facade used by the views.

Components are built once from settings and injected into each other; tests
build their own MediaService with temporary directories instead.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from django.conf import settings

from .attempts import ProcessingAttempt
from .cleanup import CleanupCoordinator
from .dispatch import Dispatcher
from .events import EventChannel
from .exceptions import InvalidRequest, NotFound
from .image import ImagePath
from .models import Job, ProcessingOutcome
from .profiles import output_name, platform_label, resolve
from .store import JobStore
from .utils import declared_mime, kind_for_mime, save_uploaded_file
from .video import EngineRegistry, VideoHandle, VideoPath

logger = logging.getLogger(__name__)


class MediaService:
    def __init__(self, *, store: JobStore, channel: EventChannel, dispatcher: Dispatcher,
                 registry: EngineRegistry, upload_dir: Path, output_dir: Path,
                 max_upload_size: Optional[int] = None):
        self.store = store
        self.channel = channel
        self.dispatcher = dispatcher
        self.registry = registry
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.max_upload_size = max_upload_size
        self.cleaner = CleanupCoordinator(store, self.output_dir, registry)

    @classmethod
    def build(cls, *, upload_dir: Path, output_dir: Path, ffmpeg_bin: str = "ffmpeg",
              ffmpeg_preset: str = "veryfast", image_quality_max: int = 90,
              event_queue_max_pending: int = 256,
              max_upload_size: Optional[int] = None) -> "MediaService":
        registry = EngineRegistry()
        dispatcher = Dispatcher(
            image_path=ImagePath(quality_max=image_quality_max),
            video_path=VideoPath(registry, ffmpeg_bin=ffmpeg_bin, preset=ffmpeg_preset),
        )
        return cls(
            store=JobStore(),
            channel=EventChannel(max_pending=event_queue_max_pending),
            dispatcher=dispatcher,
            registry=registry,
            upload_dir=upload_dir,
            output_dir=output_dir,
            max_upload_size=max_upload_size,
        )

    def upload(self, uploaded_file) -> Job:
        if uploaded_file is None:
            raise InvalidRequest("No file uploaded")
        if self.max_upload_size is not None and uploaded_file.size > self.max_upload_size:
            raise InvalidRequest(
                f"File too large: {uploaded_file.size} bytes (limit {self.max_upload_size})"
            )
        original_name = uploaded_file.name or ""
        mime = declared_mime(getattr(uploaded_file, "content_type", ""), original_name)
        path = save_uploaded_file(uploaded_file, self.upload_dir)
        return self.store.create(
            filename=path.name,
            original_name=original_name,
            mime=mime,
            kind=kind_for_mime(mime),
            path=path,
        )

    def process(self, job_id: str, platform_id: Optional[str] = None,
                overrides: Optional[Dict[str, Any]] = None,
                address: Optional[str] = None) -> ProcessingOutcome:
        """
        Resolve the profile and dispatch one processing attempt.

        Every request-shape and config error is raised before an engine runs.
        """
        if not job_id:
            raise InvalidRequest("Invalid jobId")
        try:
            job = self.store.get(job_id)
        except NotFound:
            if self.store.is_retired(job_id):
                raise NotFound(f"Job {job_id} has been cleaned up")
            raise InvalidRequest(f"Invalid jobId: {job_id}")

        profile = resolve(platform_id, overrides)
        attempt = ProcessingAttempt(
            job_id=job.id,
            platform=platform_label(platform_id),
            profile=profile,
            output_name=output_name(job, platform_id, profile),
            kind=job.kind,
            channel=self.channel,
            address=address,
        )
        self.dispatcher.check(job, attempt)
        self.store.add_attempt(job.id, attempt)
        return self.dispatcher.dispatch(job, attempt, self.output_dir / attempt.output_name)

    def job_status(self, job_id: str) -> Dict[str, Any]:
        job = self.store.get(job_id)
        data = job.to_dict()
        data["attempts"] = [a.to_dict() for a in self.store.attempts(job_id)]
        data["running"] = len(self.registry.get(job_id))
        return data

    def running(self, job_id: str) -> List[VideoHandle]:
        return self.registry.get(job_id)

    def retrieve(self, name: str) -> Path:
        safe = Path(name or "").name
        if not safe:
            raise NotFound("Not found")
        path = self.output_dir / safe
        if not path.is_file():
            raise NotFound(f"{safe} not found")
        return path

    def cleanup(self, job_id: str) -> List[str]:
        if not job_id:
            raise InvalidRequest("Invalid jobId")
        return self.cleaner.cleanup(job_id)


_service: Optional[MediaService] = None
_service_lock = threading.Lock()


def get_service() -> MediaService:
    global _service
    with _service_lock:
        if _service is None:
            _service = MediaService.build(
                upload_dir=settings.UPLOAD_DIR,
                output_dir=settings.OUTPUT_DIR,
                ffmpeg_bin=settings.FFMPEG_BIN,
                ffmpeg_preset=settings.FFMPEG_PRESET,
                image_quality_max=settings.IMAGE_QUALITY_MAX,
                event_queue_max_pending=settings.EVENT_QUEUE_MAX_PENDING,
                max_upload_size=settings.MAX_UPLOAD_SIZE,
            )
            logger.info("Media service ready (uploads=%s, outputs=%s)",
                        settings.UPLOAD_DIR, settings.OUTPUT_DIR)
        return _service


def reset_service() -> None:
    """Drop the process-wide service so the next call rebuilds it from settings."""
    global _service
    with _service_lock:
        _service = None

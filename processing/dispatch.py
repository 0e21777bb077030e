import logging
from pathlib import Path

from .attempts import ProcessingAttempt
from .exceptions import InvalidConfig, UnsupportedMediaKind
from .image import ImagePath
from .models import Job, MediaKind, ProcessingOutcome
from .profiles import VIDEO_CONTAINERS
from .video import VideoPath

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes an attempt to the image or video path by the job's declared kind."""

    def __init__(self, image_path: ImagePath, video_path: VideoPath):
        self.image_path = image_path
        self.video_path = video_path

    def check(self, job: Job, attempt: ProcessingAttempt) -> None:
        """Reject unroutable requests before any file or process is touched."""
        if job.kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
            raise UnsupportedMediaKind(
                f"Cannot process {job.original_name!r}: declared type {job.mime!r} is not image or video"
            )
        if job.kind == MediaKind.VIDEO and attempt.profile.container not in VIDEO_CONTAINERS:
            raise InvalidConfig(
                f"Container {attempt.profile.container!r} is not a video container. "
                f"Allowed: {sorted(VIDEO_CONTAINERS)}"
            )

    def dispatch(self, job: Job, attempt: ProcessingAttempt, output_abs: Path) -> ProcessingOutcome:
        self.check(job, attempt)

        if job.kind == MediaKind.IMAGE:
            self.image_path.run(job.path, output_abs, attempt)
            accepted = False
        else:
            self.video_path.start(job.path, output_abs, attempt)
            accepted = True

        logger.info("Dispatched job %s (%s) as attempt %s -> %s",
                    job.id, job.kind.value, attempt.id, attempt.output_name)
        return ProcessingOutcome(
            job_id=job.id,
            attempt_id=attempt.id,
            out_name=attempt.output_name,
            url=attempt.url,
            accepted=accepted,
        )

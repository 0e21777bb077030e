import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .attempts import ProcessingAttempt
from .exceptions import EngineFailure, IOFailure
from .models import OutputProfile
from .profiles import image_target

logger = logging.getLogger(__name__)


def quality_for(profile: OutputProfile, ceiling: int = 90) -> int:
    """
    Encoder quality derived from the profile's video bitrate.

    Images reuse the bitrate knob as a quality proxy (kbps / 1000 * 80),
    capped at ``ceiling`` and never below 1.
    """
    quality = round(profile.video_bitrate_kbps / 1000 * 80)
    return max(1, min(ceiling, quality))


def resize_image(input_abs: Path, output_abs: Path, profile: OutputProfile, quality_max: int = 90) -> Path:
    """Fit inside width x height without enlarging, re-encode, write output_abs."""
    fmt, _ = image_target(profile)
    try:
        with Image.open(input_abs) as src:
            if fmt == "JPEG":
                img = src.convert("RGB")
            elif src.mode not in ("RGB", "RGBA", "L", "LA"):
                img = src.convert("RGBA")
            else:
                img = src.copy()
    except FileNotFoundError as e:
        raise IOFailure(f"Source file missing: {e}")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise EngineFailure(f"Cannot decode image {Path(input_abs).name}: {e}")

    # thumbnail() keeps aspect ratio and never upscales
    img.thumbnail((profile.width, profile.height))

    save_kwargs = {}
    if fmt in ("JPEG", "WEBP"):
        save_kwargs["quality"] = quality_for(profile, quality_max)

    output_abs = Path(output_abs)
    try:
        output_abs.parent.mkdir(parents=True, exist_ok=True)
        img.save(output_abs, format=fmt, **save_kwargs)
    except (ValueError, KeyError) as e:
        raise EngineFailure(f"Cannot encode image as {fmt}: {e}")
    except OSError as e:
        raise IOFailure(f"Cannot write {output_abs.name}: {e}")
    logger.info("Wrote %s (%sx%s, %s)", output_abs.name, img.width, img.height, fmt)
    return output_abs


class ImagePath:
    """Synchronous image processing; no shared lock is held while encoding."""

    def __init__(self, quality_max: int = 90):
        self.quality_max = quality_max

    def run(self, source: Path, output_abs: Path, attempt: ProcessingAttempt) -> Path:
        try:
            resize_image(source, output_abs, attempt.profile, self.quality_max)
        except (EngineFailure, IOFailure) as e:
            attempt.fail(e.message)
            raise
        except Exception as e:
            logger.exception("Image processing for job %s failed", attempt.job_id)
            message = f"Image processing failed: {e}"
            attempt.fail(message)
            raise EngineFailure(message) from e
        attempt.complete()
        return output_abs

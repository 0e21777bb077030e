"""
Configuration resolver: turns a platform id plus caller overrides into the
effective OutputProfile for one processing attempt, and names its output.
"""
import logging
from collections.abc import Mapping
from dataclasses import replace

from .exceptions import InvalidConfig, InvalidRequest
from .models import Job, MediaKind, OutputProfile
from .presets import CUSTOM, PLATFORMS, get_preset
from .serializers import ProfileOverridesSerializer

logger = logging.getLogger(__name__)

VIDEO_CONTAINERS = frozenset({"mp4", "mov", "mkv", "webm"})
IMAGE_FORMATS = frozenset({"jpeg", "jpg", "png", "webp"})
SUPPORTED_CONTAINERS = VIDEO_CONTAINERS | IMAGE_FORMATS

POSITIVE_FIELDS = ("width", "height", "fps", "video_bitrate_kbps", "audio_bitrate_kbps")

# Pillow format name and file extension per image target
IMAGE_TARGETS = {
    "jpeg": ("JPEG", "jpg"),
    "jpg": ("JPEG", "jpg"),
    "png": ("PNG", "png"),
    "webp": ("WEBP", "webp"),
}


def parse_overrides(overrides) -> dict:
    """Validate the shape of an overrides object and return the fields it sets."""
    if overrides is None:
        return {}
    if not isinstance(overrides, Mapping):
        raise InvalidRequest("Overrides must be an object of output profile fields.")
    ser = ProfileOverridesSerializer(data=dict(overrides))
    if not ser.is_valid():
        raise InvalidRequest(_flatten_errors(ser.errors))
    return dict(ser.validated_data)


def validate_profile(profile: OutputProfile) -> OutputProfile:
    for name in POSITIVE_FIELDS:
        value = getattr(profile, name)
        if value is None or value <= 0:
            raise InvalidConfig(f"{name} must be positive, got {value!r}")
    if not profile.container:
        raise InvalidConfig("container must be a non-empty format token")
    if profile.container not in SUPPORTED_CONTAINERS:
        raise InvalidConfig(
            f"Unsupported container {profile.container!r}. Allowed: {sorted(SUPPORTED_CONTAINERS)}"
        )
    return profile


def resolve(platform_id, overrides=None) -> OutputProfile:
    """
    Effective profile for platform_id with overrides merged field by field.

    Unknown platforms silently fall back to the custom preset. Malformed
    overrides raise InvalidRequest; out-of-range values raise InvalidConfig.
    """
    preset = get_preset(platform_id)
    if preset is None:
        if platform_id:
            logger.info("Unknown platform %r, using %s preset", platform_id, CUSTOM)
        preset = PLATFORMS[CUSTOM]

    fields = parse_overrides(overrides)
    if "container" in fields:
        fields["container"] = fields["container"].strip().lower()

    profile = replace(preset.recommended, **fields) if fields else preset.recommended
    return validate_profile(profile)


def platform_label(platform_id) -> str:
    """Platform component of output names; only known ids are used verbatim."""
    return platform_id if get_preset(platform_id) is not None else CUSTOM


def image_target(profile: OutputProfile):
    """(Pillow format, extension) for an image job; video containers encode as JPEG."""
    return IMAGE_TARGETS.get(profile.container, IMAGE_TARGETS["jpeg"])


def output_name(job: Job, platform_id, profile: OutputProfile) -> str:
    """
    Deterministic output file name for a job/platform pair.

    The same job and platform always map to the same name so a repeated
    request overwrites the previous artifact.
    """
    if job.kind == MediaKind.IMAGE:
        _, ext = image_target(profile)
    else:
        ext = profile.container
    return f"{job.stem}_{platform_label(platform_id)}.{ext}"


def _flatten_errors(errors) -> str:
    parts = []
    for key, value in errors.items():
        msgs = value if isinstance(value, list) else [value]
        text = "; ".join(str(m) for m in msgs)
        parts.append(text if key == "non_field_errors" else f"{key}: {text}")
    return " ".join(parts)

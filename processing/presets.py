"""
Platform presets: recommended output profiles per distribution channel.

Loaded once at import and never mutated.
"""
from types import MappingProxyType

from .models import OutputProfile, Preset

CUSTOM = "custom"

PLATFORMS = MappingProxyType({
    "instagram_feed": Preset(
        display="Instagram (Feed)",
        description="Square or vertical for feed. Use 1080p for high quality.",
        recommended=OutputProfile(width=1080, height=1080, fps=30, video_bitrate_kbps=5000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
    "instagram_reel": Preset(
        display="Instagram Reels",
        description="Vertical 9:16 videos, 1080x1920 recommended.",
        recommended=OutputProfile(width=1080, height=1920, fps=30, video_bitrate_kbps=8000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
    "tiktok": Preset(
        display="TikTok",
        description="Vertical 9:16, 1080x1920 is standard.",
        recommended=OutputProfile(width=1080, height=1920, fps=30, video_bitrate_kbps=8000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
    "facebook_video": Preset(
        display="Facebook Video",
        description="16:9 or 4:5; 1080p recommended.",
        recommended=OutputProfile(width=1920, height=1080, fps=30, video_bitrate_kbps=8000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
    "youtube": Preset(
        display="YouTube",
        description="Landscape 16:9. 1080p for most, 2160p for higher if uploaded by creator.",
        recommended=OutputProfile(width=1920, height=1080, fps=30, video_bitrate_kbps=12000,
                                  audio_bitrate_kbps=192, container="mp4"),
    ),
    "twitter": Preset(
        display="Twitter (X)",
        description="Max 1920x1200, 60s/120s limits apply.",
        recommended=OutputProfile(width=1280, height=720, fps=30, video_bitrate_kbps=5000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
    CUSTOM: Preset(
        display="Custom",
        description="Pick your own resolution, fps and bitrate.",
        recommended=OutputProfile(width=1280, height=720, fps=30, video_bitrate_kbps=5000,
                                  audio_bitrate_kbps=128, container="mp4"),
    ),
})


def get_preset(platform_id):
    """Return the preset for platform_id, or None if unknown."""
    if not platform_id:
        return None
    return PLATFORMS.get(platform_id)


def catalog() -> dict:
    """Serializable listing: platform id -> {display, description, recommended}."""
    return {key: preset.to_dict() for key, preset in PLATFORMS.items()}

"""
Video model capability table.

Only the Veo 3.1 family can generate from start/end frames or reference
images, and only those models accept an avatar. Every model supports
text-to-video and extending a previously generated video.
"""
from typing import Optional

from genstudio.models import VideoSubMode


VIDEO_MODELS: dict[str, str] = {
    "veo-2.0-generate-001": "Veo 2.0 Standard",
    "veo-3.0-generate-001": "Veo 3.0 Standard",
    "veo-3.0-fast-generate-001": "Veo 3.0 Fast",
    "veo-3.1-generate-preview": "Veo 3.1 Standard (Preview)",
    "veo-3.1-fast-generate-preview": "Veo 3.1 Fast (Preview)",
}

DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"

_FRAME_AND_REFERENCE_MODELS = frozenset({
    "veo-3.1-generate-preview",
    "veo-3.1-fast-generate-preview",
})

IMAGE_CONDITIONED_SUB_MODES = frozenset({
    VideoSubMode.FRAMES_TO_VIDEO,
    VideoSubMode.REFERENCES_TO_VIDEO,
})


def resolve_model(model: Optional[str]) -> str:
    """Scenes without an explicit model run on the default model."""
    return model or DEFAULT_VIDEO_MODEL


def supports_frames_and_references(model: Optional[str]) -> bool:
    return resolve_model(model) in _FRAME_AND_REFERENCE_MODELS


def supports_avatars(model: Optional[str]) -> bool:
    return supports_frames_and_references(model)


def allowed_scene_modes(model: Optional[str]) -> list[VideoSubMode]:
    """Sub-modes offered for a model, in menu order."""
    if supports_frames_and_references(model):
        return [
            VideoSubMode.TEXT_TO_VIDEO,
            VideoSubMode.FRAMES_TO_VIDEO,
            VideoSubMode.REFERENCES_TO_VIDEO,
            VideoSubMode.EXTEND_VIDEO,
        ]
    return [VideoSubMode.TEXT_TO_VIDEO, VideoSubMode.EXTEND_VIDEO]


def is_mode_allowed(model: Optional[str], sub_mode: VideoSubMode) -> bool:
    return sub_mode in allowed_scene_modes(model)


def requires_capable_model(sub_mode: VideoSubMode) -> bool:
    return sub_mode in IMAGE_CONDITIONED_SUB_MODES


def is_known_model(model: str) -> bool:
    return model in VIDEO_MODELS

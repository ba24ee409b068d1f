"""
Mode resolver: the composer's generation mode, video sub-mode and video
parameters, plus the media staged for them.
"""
from __future__ import annotations

import logging
from typing import Optional

from genstudio import capabilities
from genstudio.config import Config, default_config
from genstudio.events import Notice, Notifier, log_notice
from genstudio.models import GenerationMode, UploadedMedia, VideoParams, VideoSubMode
from genstudio.staging import MediaStaging

logger = logging.getLogger(__name__)


MODE_LABELS = {
    GenerationMode.AUTO: "Auto",
    GenerationMode.TEXT: "Text",
    GenerationMode.IMAGE: "Image",
    GenerationMode.VIDEO: "Video",
    GenerationMode.PLAN: "Plan",
}

SUB_MODE_LABELS = {
    VideoSubMode.TEXT_TO_VIDEO: "Text to Video",
    VideoSubMode.FRAMES_TO_VIDEO: "Frames to Video",
    VideoSubMode.REFERENCES_TO_VIDEO: "References to Video",
    VideoSubMode.EXTEND_VIDEO: "Extend Video",
}

_VIDEO_PLACEHOLDERS = {
    VideoSubMode.TEXT_TO_VIDEO: "Describe the video you want to create...",
    VideoSubMode.FRAMES_TO_VIDEO: "Describe the transition between frames...",
    VideoSubMode.REFERENCES_TO_VIDEO: "Describe the video using the reference images...",
    VideoSubMode.EXTEND_VIDEO: "Continue the video with...",
}

_PLACEHOLDERS = {
    GenerationMode.AUTO: "Describe what you want to create...",
    GenerationMode.TEXT: "Ask me anything or describe what you need...",
    GenerationMode.IMAGE: "Describe the image you want to create...",
    GenerationMode.PLAN: "Enter your narrative script for multi-scene video generation...",
}


def mode_label(mode: GenerationMode) -> str:
    return MODE_LABELS.get(mode, "Auto")


def placeholder(mode: GenerationMode, sub_mode: VideoSubMode) -> str:
    if mode == GenerationMode.VIDEO:
        return _VIDEO_PLACEHOLDERS[sub_mode]
    return _PLACEHOLDERS[mode]


class ModeResolver:
    """
    Holds (mode, video sub-mode, video params, extend target).

    Changing mode always clears staged media and the extend target. Changing
    the video model to one without frame/reference support while such a
    sub-mode is active falls back to text-to-video and clears staged media.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        staging: Optional[MediaStaging] = None,
        notify: Optional[Notifier] = None,
    ):
        self.config = config or default_config
        self.staging = staging or MediaStaging(self.config)
        self.notify = notify or log_notice
        self.mode = GenerationMode.AUTO
        self.video_sub_mode = VideoSubMode.TEXT_TO_VIDEO
        self.video_params = VideoParams(
            model=self.config.default_video_model,
            aspect_ratio=self.config.default_aspect_ratio,
            resolution=self.config.default_resolution,
        )
        self.extend_target_uri: Optional[str] = None

    @property
    def label(self) -> str:
        if self.mode == GenerationMode.VIDEO:
            return f"{mode_label(self.mode)} · {SUB_MODE_LABELS[self.video_sub_mode]}"
        return mode_label(self.mode)

    @property
    def placeholder(self) -> str:
        return placeholder(self.mode, self.video_sub_mode)

    @property
    def staged_media(self) -> list[UploadedMedia]:
        return self.staging.items

    def available_sub_modes(self) -> list[VideoSubMode]:
        return capabilities.allowed_scene_modes(self.video_params.model)

    def set_mode(self, mode: GenerationMode, sub_mode: Optional[VideoSubMode] = None) -> None:
        if mode == GenerationMode.VIDEO and sub_mode is not None:
            if not capabilities.is_mode_allowed(self.video_params.model, sub_mode):
                raise ValueError(
                    f"{SUB_MODE_LABELS[sub_mode]} is not available for model "
                    f"'{self.video_params.model}'."
                )
            self.video_sub_mode = sub_mode
        self.mode = mode
        self.staging.clear()
        self.extend_target_uri = None
        self._enforce_model_capabilities()
        logger.debug("[modes] mode=%s sub_mode=%s", self.mode.value, self.video_sub_mode.value)

    def set_video_params(
        self,
        *,
        model: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> None:
        if model is not None:
            if not capabilities.is_known_model(model):
                raise ValueError(f"Unknown video model '{model}'.")
            self.video_params.model = model
        if aspect_ratio is not None:
            self.video_params.aspect_ratio = aspect_ratio
        if resolution is not None:
            self.video_params.resolution = resolution
        self._enforce_model_capabilities()

    def set_video_model(self, model: str) -> None:
        self.set_video_params(model=model)

    def start_extend(self, video_uri: str) -> None:
        """Target a previously generated video for extension."""
        if not video_uri:
            raise ValueError("A video uri is required to extend a video.")
        self.mode = GenerationMode.VIDEO
        self.video_sub_mode = VideoSubMode.EXTEND_VIDEO
        self.extend_target_uri = video_uri
        self.staging.clear()
        self.notify(Notice(
            "Extend Video Mode",
            "Ready to extend the video. Describe what happens next!",
        ))

    def attach(self, mime_type: str, data: bytes) -> UploadedMedia:
        return self.staging.add(mime_type, data, self.mode, self.video_sub_mode)

    def detach(self, media_id: str) -> bool:
        return self.staging.remove(media_id, self.mode, self.video_sub_mode)

    def reset_after_turn(self, sent_mode: GenerationMode) -> None:
        """Clear per-turn state; video and plan modes do not persist."""
        self.staging.clear()
        self.extend_target_uri = None
        if sent_mode in (GenerationMode.VIDEO, GenerationMode.PLAN):
            self.mode = GenerationMode.AUTO
            self.video_sub_mode = VideoSubMode.TEXT_TO_VIDEO

    def _enforce_model_capabilities(self) -> None:
        if self.mode != GenerationMode.VIDEO:
            return
        if capabilities.is_mode_allowed(self.video_params.model, self.video_sub_mode):
            return
        logger.info(
            "[modes] %s unsupported by %s, falling back to text_to_video",
            self.video_sub_mode.value,
            self.video_params.model,
        )
        self.video_sub_mode = VideoSubMode.TEXT_TO_VIDEO
        self.staging.clear()
        self.notify(Notice(
            "Mode Changed",
            "Frames/References to Video is only available for Veo 3.1 models. "
            "Switched to Text to Video.",
        ))

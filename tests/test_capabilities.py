from __future__ import annotations

import pytest

from genstudio import capabilities
from genstudio.models import VideoSubMode


@pytest.mark.parametrize(
    "model",
    ["veo-3.1-generate-preview", "veo-3.1-fast-generate-preview"],
)
def test_veo31_models_support_frames_references_and_avatars(model: str):
    assert capabilities.supports_frames_and_references(model)
    assert capabilities.supports_avatars(model)
    assert capabilities.allowed_scene_modes(model) == [
        VideoSubMode.TEXT_TO_VIDEO,
        VideoSubMode.FRAMES_TO_VIDEO,
        VideoSubMode.REFERENCES_TO_VIDEO,
        VideoSubMode.EXTEND_VIDEO,
    ]


@pytest.mark.parametrize(
    "model",
    ["veo-2.0-generate-001", "veo-3.0-generate-001", "veo-3.0-fast-generate-001"],
)
def test_older_models_only_offer_text_and_extend(model: str):
    assert not capabilities.supports_frames_and_references(model)
    assert not capabilities.supports_avatars(model)
    assert capabilities.allowed_scene_modes(model) == [
        VideoSubMode.TEXT_TO_VIDEO,
        VideoSubMode.EXTEND_VIDEO,
    ]
    assert capabilities.is_mode_allowed(model, VideoSubMode.EXTEND_VIDEO)
    assert not capabilities.is_mode_allowed(model, VideoSubMode.FRAMES_TO_VIDEO)


def test_missing_model_resolves_to_default():
    assert capabilities.resolve_model(None) == capabilities.DEFAULT_VIDEO_MODEL
    assert capabilities.supports_frames_and_references(None)


def test_every_listed_model_is_known():
    assert capabilities.DEFAULT_VIDEO_MODEL in capabilities.VIDEO_MODELS
    assert not capabilities.is_known_model("sora-2")

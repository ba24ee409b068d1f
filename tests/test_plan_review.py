from __future__ import annotations

import pytest

from conftest import make_plan, make_scene
from genstudio.models import ExecutionPlan, SceneResult, VideoSubMode
from genstudio.plan import PlanReview, PlanState, PlanTransitionError, describe_results


def _review(*scenes) -> PlanReview:
    return PlanReview(ExecutionPlan.model_validate(make_plan(*scenes)), message_id="msg-1")


def test_cancelling_edits_restores_exact_proposed_plan():
    review = _review(make_scene("scene_1"), make_scene("scene_2", dependencies=["scene_1"]))
    before = review.proposed.model_dump()

    review.begin_edit()
    review.update_scene("scene_1", prompt="A different prompt", duration_hint="8s")
    review.update_scene("scene_2", model="veo-3.0-generate-001")
    review.cancel_edit()

    assert review.state == PlanState.PROPOSED
    assert review.proposed.model_dump() == before
    assert review.current is review.proposed


def test_edits_apply_to_copy_only():
    review = _review(make_scene("scene_1"))
    edited = review.begin_edit()

    review.update_scene("scene_1", description="New description")

    assert edited.scene("scene_1").description == "New description"
    assert review.proposed.scene("scene_1").description == "Scene scene_1"
    assert review.current is edited


def test_switching_scene_to_older_model_resets_image_modes():
    review = _review(make_scene("scene_1", mode="references_to_video"))
    review.begin_edit()

    scene = review.update_scene("scene_1", model="veo-3.0-fast-generate-001")

    assert scene.mode == VideoSubMode.TEXT_TO_VIDEO
    assert scene.model == "veo-3.0-fast-generate-001"


def test_switching_scene_model_keeps_extend_mode():
    review = _review(make_scene("scene_1", mode="extend_video"))
    review.begin_edit()

    scene = review.update_scene("scene_1", model="veo-2.0-generate-001")

    assert scene.mode == VideoSubMode.EXTEND_VIDEO


def test_choosing_image_mode_on_older_model_is_refused():
    review = _review(make_scene("scene_1", model="veo-3.0-generate-001"))
    review.begin_edit()

    with pytest.raises(ValueError, match="requires a Veo 3.1 model"):
        review.update_scene("scene_1", mode="frames_to_video")

    scene = review.update_scene("scene_1", mode="frames_to_video", model="veo-3.1-generate-preview")
    assert scene.mode == VideoSubMode.FRAMES_TO_VIDEO


def test_edit_validation_errors():
    review = _review(make_scene("scene_1"))
    with pytest.raises(PlanTransitionError):
        review.update_scene("scene_1", prompt="x")

    review.begin_edit()
    with pytest.raises(ValueError, match="not found"):
        review.update_scene("scene_9", prompt="x")
    with pytest.raises(ValueError, match="Cannot edit"):
        review.update_scene("scene_1", dependencies=[])


def test_build_from_editing_uses_edited_copy_and_failure_returns_to_editing():
    review = _review(make_scene("scene_1"))
    review.begin_edit()
    review.update_scene("scene_1", prompt="Edited")

    plan = review.start_build()
    assert plan.scene("scene_1").prompt == "Edited"
    assert review.state == PlanState.BUILDING

    assert review.mark_failed("boom") == PlanState.EDITING
    assert review.last_error == "boom"
    assert review.current.scene("scene_1").prompt == "Edited"


def test_build_from_proposed_failure_returns_to_proposed():
    review = _review(make_scene("scene_1"))
    review.start_build()

    assert review.mark_failed("boom") == PlanState.PROPOSED
    assert review.start_build() is review.proposed


def test_applied_plan_cannot_be_built_again():
    review = _review(make_scene("scene_1"))
    review.start_build()
    review.mark_applied([SceneResult(scene_id="scene_1", success=True)])

    assert review.state == PlanState.APPLIED
    assert review.succeeded_count() == 1
    with pytest.raises(PlanTransitionError):
        review.start_build()
    with pytest.raises(PlanTransitionError):
        review.begin_edit()


def test_describe_results_keeps_failed_scenes():
    review = _review(make_scene("scene_1"), make_scene("scene_2"), make_scene("scene_3"))
    results = [
        SceneResult(scene_id="scene_1", success=True, video_url="https://cdn/1.mp4", duration_seconds=5),
        SceneResult(scene_id="scene_2", success=False, error="quota exceeded"),
        SceneResult(scene_id="scene_3", success=True, video_url="https://cdn/3.mp4"),
    ]

    lines = describe_results(review.proposed, results)

    assert lines == [
        "[scene_1] ok 5.0s https://cdn/1.mp4",
        "[scene_2] failed: quota exceeded",
        "[scene_3] ok https://cdn/3.mp4",
    ]


def test_review_refuses_plan_with_dangling_dependency():
    plan = ExecutionPlan.model_validate(make_plan(make_scene("scene_1", dependencies=["scene_9"])))

    with pytest.raises(ValueError, match="unknown scene 'scene_9'"):
        PlanReview(plan, message_id="msg-1")

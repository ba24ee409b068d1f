"""
Review, edit and build lifecycle of an execution plan.

    PROPOSED -> (EDITING) -> BUILDING -> APPLIED

A failed build returns to PROPOSED or EDITING, whichever it started from.

Edits never touch the proposed plan: entering EDITING takes a deep copy,
and cancelling throws the copy away.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from genstudio import capabilities
from genstudio.models import ExecutionPlan, Scene, SceneResult, VideoSubMode


EDITABLE_SCENE_FIELDS = frozenset({
    "description",
    "prompt",
    "duration_hint",
    "mode",
    "model",
    "aspect_ratio",
    "resolution",
    "pre_generate_images",
    "image_prompts",
})


class PlanState(Enum):
    PROPOSED = "proposed"
    EDITING = "editing"
    BUILDING = "building"
    APPLIED = "applied"


class PlanTransitionError(RuntimeError):
    """Raised for a transition the plan lifecycle does not allow."""


class PlanReview:
    """
    One plan instance moving through review, editing and build.

    Raises ValueError for a plan with dangling scene ids or a dependency cycle.
    """

    def __init__(self, plan: ExecutionPlan, message_id: Optional[str] = None):
        plan.ensure_valid()
        self.message_id = message_id
        self._proposed = plan
        self._edited: Optional[ExecutionPlan] = None
        self.state = PlanState.PROPOSED
        self._building_from: Optional[PlanState] = None
        self.last_error: Optional[str] = None
        self.scene_results: list[SceneResult] = []

    @property
    def proposed(self) -> ExecutionPlan:
        return self._proposed

    @property
    def edited(self) -> Optional[ExecutionPlan]:
        return self._edited

    @property
    def current(self) -> ExecutionPlan:
        """The plan a build would submit right now."""
        if self._edited is not None and self.state in (PlanState.EDITING, PlanState.BUILDING):
            return self._edited
        return self._proposed

    @property
    def is_building(self) -> bool:
        return self.state == PlanState.BUILDING

    # Editing

    def begin_edit(self) -> ExecutionPlan:
        if self.state == PlanState.EDITING and self._edited is not None:
            return self._edited
        self._require(PlanState.PROPOSED, action="edit")
        self._edited = self._proposed.model_copy(deep=True)
        self.state = PlanState.EDITING
        return self._edited

    def cancel_edit(self) -> ExecutionPlan:
        self._require(PlanState.EDITING, action="cancel editing")
        self._edited = None
        self.state = PlanState.PROPOSED
        return self._proposed

    def update_scene(self, scene_id: str, **changes: Any) -> Scene:
        """
        Apply field edits to one scene of the editable copy.

        Switching a scene to a model without frame/reference support while
        it uses one of those modes resets the mode to text-to-video.
        """
        self._require(PlanState.EDITING, action="edit scenes")
        unknown = set(changes) - EDITABLE_SCENE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit scene field(s): {', '.join(sorted(unknown))}")
        scene = self._edited.scene(scene_id) if self._edited is not None else None
        if scene is None:
            raise ValueError(f"Scene {scene_id} not found")

        model = changes.get("model", scene.model)
        if "model" in changes and model is not None and not capabilities.is_known_model(model):
            raise ValueError(f"Unknown video model '{model}'.")

        mode = changes.get("mode", scene.mode)
        if mode is not None and not isinstance(mode, VideoSubMode):
            mode = VideoSubMode(mode)
        if "mode" in changes and not capabilities.is_mode_allowed(model, mode):
            raise ValueError(
                f"Scene mode '{mode.value}' requires a Veo 3.1 model; "
                f"'{capabilities.resolve_model(model)}' does not support it."
            )
        if not capabilities.is_mode_allowed(model, mode):
            mode = VideoSubMode.TEXT_TO_VIDEO

        for field_name, value in changes.items():
            if field_name in ("mode", "model"):
                continue
            setattr(scene, field_name, value)
        scene.model = model
        scene.mode = mode
        return scene

    # Build

    def start_build(self) -> ExecutionPlan:
        if self.state not in (PlanState.PROPOSED, PlanState.EDITING):
            raise PlanTransitionError(f"Cannot build a plan that is {self.state.value}.")
        plan = self.current
        problems = plan.problems() + self._capability_problems(plan)
        if problems:
            raise ValueError("Plan cannot be built: " + "; ".join(problems))
        self._building_from = self.state
        self.state = PlanState.BUILDING
        self.last_error = None
        return plan

    def mark_applied(self, scene_results: Optional[list[SceneResult]] = None) -> None:
        self._require(PlanState.BUILDING, action="apply")
        self.scene_results = list(scene_results or [])
        self.state = PlanState.APPLIED
        self._building_from = None

    def mark_failed(self, error: str) -> PlanState:
        """Return to the state the build started from; the plan is kept."""
        self._require(PlanState.BUILDING, action="fail")
        self.last_error = error
        self.state = self._building_from or PlanState.PROPOSED
        self._building_from = None
        return self.state

    # Display helpers

    def succeeded_count(self) -> int:
        return sum(1 for result in self.scene_results if result.success)

    def result_for(self, scene_id: str) -> Optional[SceneResult]:
        for result in self.scene_results:
            if result.scene_id == scene_id:
                return result
        return None

    def unmatched_results(self) -> list[SceneResult]:
        """Results whose scene id is not part of the built plan."""
        known = set(self.current.scene_ids)
        return [result for result in self.scene_results if result.scene_id not in known]

    @staticmethod
    def _capability_problems(plan: ExecutionPlan) -> list[str]:
        return [
            f"scene '{scene.id}' uses {scene.mode.value} with unsupported model "
            f"'{capabilities.resolve_model(scene.model)}'"
            for scene in plan.scenes
            if not capabilities.is_mode_allowed(scene.model, scene.mode)
        ]

    def _require(self, state: PlanState, *, action: str) -> None:
        if self.state != state:
            raise PlanTransitionError(
                f"Cannot {action} while the plan is {self.state.value}."
            )


def describe_plan(plan: ExecutionPlan) -> list[str]:
    """Plain-text preview lines for a plan."""
    lines = [
        f"Strategy: {plan.overall_strategy}",
        f"Estimated Duration: {plan.estimated_duration}",
    ]
    for scene in plan.scenes:
        header = f"[{scene.id}] {scene.mode.value.replace('_', ' ')}"
        if scene.duration_hint:
            header += f" ({scene.duration_hint})"
        lines.append(header)
        lines.append(f"  Description: {scene.description}")
        lines.append(f"  Prompt: {scene.prompt}")
        if scene.dependencies:
            lines.append(f"  Depends on: {', '.join(scene.dependencies)}")
    return lines


def describe_results(plan: ExecutionPlan, results: list[SceneResult]) -> list[str]:
    """One line per scene outcome; failed scenes are listed, not dropped."""
    lines = []
    by_id = {result.scene_id: result for result in results}
    for scene in plan.scenes:
        result = by_id.get(scene.id)
        if result is None:
            lines.append(f"[{scene.id}] no result")
        elif result.success:
            duration = (
                f" {result.duration_seconds:.1f}s" if result.duration_seconds is not None else ""
            )
            lines.append(f"[{scene.id}] ok{duration} {result.video_url or ''}".rstrip())
        else:
            lines.append(f"[{scene.id}] failed: {result.error or 'unknown error'}")
    return lines

"""
Data models for the GenStudio chat client.

These mirror the JSON exchanged with the generation backend. Field names
match the wire format so responses can be validated directly.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StudioModel(BaseModel):
    model_config = ConfigDict(validate_assignment=True, use_enum_values=False)


class GenerationMode(Enum):
    """Top-level generation intent selected in the composer."""
    AUTO = "auto"
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    PLAN = "plan"


class VideoSubMode(Enum):
    """Video generation strategy."""
    TEXT_TO_VIDEO = "text_to_video"
    FRAMES_TO_VIDEO = "frames_to_video"
    REFERENCES_TO_VIDEO = "references_to_video"
    EXTEND_VIDEO = "extend_video"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenUsage(StudioModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Cost(StudioModel):
    prompt_cost: Optional[float] = None
    completion_cost: Optional[float] = None
    total_cost: float = 0.0
    currency: str = "USD"


class SessionCost(StudioModel):
    """Running cost of the active conversation."""
    total_cost: float = 0.0
    total_tokens: int = 0
    currency: str = "USD"


class Asset(StudioModel):
    """
    A generated asset as embedded in a message.

    `uri` is the backend handle needed to extend a video; `id` is the key
    used for like/download synchronisation.
    """
    id: str
    type: str = "image"  # image | video | other
    url: str
    uri: Optional[str] = None
    prompt: Optional[str] = None
    liked: bool = False
    downloads: int = 0
    scene_id: Optional[str] = None
    timestamp: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.type == "video"


class UploadedMedia(StudioModel):
    """An image staged in the composer, not yet sent."""
    id: str = Field(default_factory=lambda: f"img-{uuid.uuid4().hex[:12]}")
    mime_type: str
    data: str  # base64
    preview: str = ""  # data URL
    label: Optional[str] = None

    def to_payload(self) -> dict:
        return {"mime_type": self.mime_type, "data": self.data}


class Avatar(StudioModel):
    id: str
    name: str
    url: str
    is_default: bool = False


class VideoParams(StudioModel):
    model: str = "veo-3.1-fast-generate-preview"
    aspect_ratio: str = "16:9"
    resolution: str = "720p"


class Scene(StudioModel):
    """One unit of planned generation work."""
    id: str
    description: str = ""
    prompt: str
    mode: VideoSubMode = VideoSubMode.TEXT_TO_VIDEO
    duration_hint: str = ""
    pre_generate_images: bool = False
    image_prompts: Optional[list[str]] = None
    dependencies: list[str] = Field(default_factory=list)
    reasoning: str = ""
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    model: Optional[str] = None


class Orchestration(StudioModel):
    parallel_groups: list[list[str]] = Field(default_factory=list)
    sequential_chains: list[list[str]] = Field(default_factory=list)


class ExecutionPlan(StudioModel):
    """
    A dependency-graphed set of scenes produced by plan-mode generation.

    Parsing only checks field types, so a reply carrying a broken plan can
    still be shown. Before a plan is reviewed or built, every id referenced
    by the orchestration groups or by a scene's dependencies must name a
    scene in the plan, and the dependency graph must be acyclic
    (see `ensure_valid`).
    """
    scenes: list[Scene]
    orchestration: Orchestration = Field(default_factory=Orchestration)
    overall_strategy: str = ""
    estimated_duration: str = ""
    created_at: Optional[str] = None
    script_hash: Optional[str] = None

    def ensure_valid(self) -> "ExecutionPlan":
        problems = self.problems()
        if problems:
            raise ValueError("Invalid execution plan: " + "; ".join(problems))
        return self

    @property
    def scene_ids(self) -> list[str]:
        return [scene.id for scene in self.scenes]

    def scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def problems(self) -> list[str]:
        """Describe every structural problem in the plan."""
        problems: list[str] = []
        known: set[str] = set()
        for scene in self.scenes:
            if scene.id in known:
                problems.append(f"duplicate scene id '{scene.id}'")
            known.add(scene.id)

        for scene in self.scenes:
            for dep in scene.dependencies:
                if dep not in known:
                    problems.append(f"scene '{scene.id}' depends on unknown scene '{dep}'")
                elif dep == scene.id:
                    problems.append(f"scene '{scene.id}' depends on itself")

        groups = (
            [("parallel group", group) for group in self.orchestration.parallel_groups]
            + [("sequential chain", chain) for chain in self.orchestration.sequential_chains]
        )
        for kind, ids in groups:
            for scene_id in ids:
                if scene_id not in known:
                    problems.append(f"{kind} references unknown scene '{scene_id}'")

        if not problems and self._layers() is None:
            problems.append("scene dependencies contain a cycle")
        return problems

    def _layers(self) -> Optional[list[list[str]]]:
        remaining = {scene.id: set(scene.dependencies) for scene in self.scenes}
        layers: list[list[str]] = []
        done: set[str] = set()
        while remaining:
            ready = [sid for sid in self.scene_ids if sid in remaining and remaining[sid] <= done]
            if not ready:
                return None
            layers.append(ready)
            done.update(ready)
            for sid in ready:
                remaining.pop(sid)
        return layers

    def execution_layers(self) -> list[list[str]]:
        """Scenes grouped by dependency depth, in plan order within a layer."""
        return self._layers() or []


class SceneResult(StudioModel):
    """Outcome of one scene after a plan build."""
    scene_id: str
    success: bool
    video_url: Optional[str] = None
    video_uri: Optional[str] = None
    generated_images: Optional[list[Asset]] = None
    error: Optional[str] = None
    duration_seconds: Optional[float] = None
    cost: Optional[Cost] = None

    @property
    def failed(self) -> bool:
        return not self.success


class Message(StudioModel):
    """
    A chat message in the active conversation.

    Messages are not edited after they are appended, except for the
    `liked`/`downloads` fields of their embedded assets.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    assets: Optional[list[Asset]] = None
    usage: Optional[TokenUsage] = None
    cost: Optional[Cost] = None
    execution_plan: Optional[ExecutionPlan] = None
    scene_results: Optional[list[SceneResult]] = None

    @property
    def has_pending_plan(self) -> bool:
        """A plan that was proposed but not built in this message."""
        return self.execution_plan is not None and not self.scene_results


class GenerationResponse(StudioModel):
    """Body returned by POST /api/generate-unified."""
    conversation_id: Optional[str] = None
    mode: Optional[str] = None
    message: dict
    usage: Optional[TokenUsage] = None
    cost: Optional[Cost] = None
    session_cost: Optional[SessionCost] = None
    execution_plan: Optional[ExecutionPlan] = None
    scene_results: Optional[list[SceneResult]] = None


class ConversationHistory(StudioModel):
    """Body returned by GET /api/conversations/{id}."""
    id: str
    messages: list[dict] = Field(default_factory=list)
    session_cost: Optional[SessionCost] = None

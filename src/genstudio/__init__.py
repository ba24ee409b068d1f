"""
GenStudio - conversational client for an AI content-generation backend.

Drives a chat with an assistant that produces text, images and video:
1. Resolving the composer mode, video sub-mode and staged media into a request
2. Reviewing, editing and building multi-scene execution plans
3. Merging replies and scene results into the conversation transcript
4. Keeping likes and download counts in sync across views
"""

from genstudio.config import Config, default_config, load_config
from genstudio.models import (
    Asset,
    Avatar,
    Cost,
    ExecutionPlan,
    GenerationMode,
    Message,
    MessageRole,
    Orchestration,
    Scene,
    SceneResult,
    SessionCost,
    TokenUsage,
    UploadedMedia,
    VideoParams,
    VideoSubMode,
)
from genstudio.client import BackendClient, BackendError
from genstudio.events import AssetEventBus, AssetsChanged, Notice
from genstudio.staging import MediaRejected, MediaStaging
from genstudio.modes import ModeResolver
from genstudio.plan import PlanReview, PlanState, PlanTransitionError
from genstudio.transcript import Transcript
from genstudio.assets import AssetInteractionSync, AssetLibrary, AssetLocks
from genstudio.orchestrator import Orchestrator, SubmissionRejected

__version__ = "0.1.0"

__all__ = [
    # Config
    "Config",
    "default_config",
    "load_config",

    # Models
    "Asset",
    "Avatar",
    "Cost",
    "ExecutionPlan",
    "GenerationMode",
    "Message",
    "MessageRole",
    "Orchestration",
    "Scene",
    "SceneResult",
    "SessionCost",
    "TokenUsage",
    "UploadedMedia",
    "VideoParams",
    "VideoSubMode",

    # Backend
    "BackendClient",
    "BackendError",

    # Events
    "AssetEventBus",
    "AssetsChanged",
    "Notice",

    # Composer
    "MediaRejected",
    "MediaStaging",
    "ModeResolver",

    # Plans
    "PlanReview",
    "PlanState",
    "PlanTransitionError",

    # Conversation
    "Transcript",
    "Orchestrator",
    "SubmissionRejected",

    # Assets
    "AssetInteractionSync",
    "AssetLibrary",
    "AssetLocks",
]

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


class FakeBackend:
    """In-memory stand-in for BackendClient's async API."""

    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.generate_results: list[Any] = []
        self.conversations: dict[str, Any] = {}
        self.conversation_gates: dict[str, asyncio.Event] = {}
        self.toggle_results: list[Any] = []
        self.download_results: list[Any] = []
        self.download_gate: Optional[asyncio.Event] = None
        self.asset_lists: list[Any] = []
        self.avatars: list[dict] = []
        self.toggle_gate: Optional[asyncio.Event] = None

    @staticmethod
    def _resolve(result: Any) -> Any:
        if isinstance(result, BaseException):
            raise result
        return result

    async def generate_unified(self, payload: dict) -> dict:
        self.calls.append(("generate_unified", payload))
        await asyncio.sleep(0)
        return self._resolve(self.generate_results.pop(0))

    async def get_conversation(self, conversation_id: str) -> dict:
        self.calls.append(("get_conversation", conversation_id))
        gate = self.conversation_gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        return self._resolve(self.conversations[conversation_id])

    async def list_recent_conversations(self) -> list[dict]:
        self.calls.append(("list_recent_conversations", None))
        return [{"id": cid} for cid in self.conversations]

    async def list_assets(self) -> list[dict]:
        self.calls.append(("list_assets", None))
        await asyncio.sleep(0)
        return self._resolve(self.asset_lists.pop(0))

    async def create_asset(self, payload: dict) -> dict:
        self.calls.append(("create_asset", payload))
        return dict(payload)

    async def toggle_like(self, asset_id: str) -> dict:
        self.calls.append(("toggle_like", asset_id))
        if self.toggle_gate is not None:
            await self.toggle_gate.wait()
        await asyncio.sleep(0)
        return self._resolve(self.toggle_results.pop(0))

    async def increment_download(self, asset_id: str) -> dict:
        self.calls.append(("increment_download", asset_id))
        if self.download_gate is not None:
            await self.download_gate.wait()
        await asyncio.sleep(0)
        return self._resolve(self.download_results.pop(0))

    async def list_avatars(self) -> list[dict]:
        self.calls.append(("list_avatars", None))
        return list(self.avatars)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def notices() -> list:
    return []


def make_scene(scene_id: str, **overrides) -> dict:
    scene = {
        "id": scene_id,
        "description": f"Scene {scene_id}",
        "prompt": f"Prompt for {scene_id}",
        "mode": "text_to_video",
        "duration_hint": "5s",
        "pre_generate_images": False,
        "dependencies": [],
        "reasoning": "",
    }
    scene.update(overrides)
    return scene


def make_plan(*scenes: dict, **overrides) -> dict:
    scene_list = list(scenes) or [make_scene("scene_1")]
    plan = {
        "scenes": scene_list,
        "orchestration": {
            "parallel_groups": [[scene["id"] for scene in scene_list]],
            "sequential_chains": [],
        },
        "overall_strategy": "Generate scenes in parallel.",
        "estimated_duration": "15s",
        "created_at": "2026-01-10T10:00:00Z",
        "script_hash": "abc123",
    }
    plan.update(overrides)
    return plan


def make_reply(message_id: str = "msg-1", conversation_id: str = "conv-1", **extra) -> dict:
    reply = {
        "conversation_id": conversation_id,
        "message": {
            "id": message_id,
            "role": "assistant",
            "content": "Here you go.",
            "timestamp": "2026-01-10T10:00:05Z",
            "assets": extra.pop("assets", None),
        },
    }
    reply.update(extra)
    return reply

"""
Conversation transcript for the active conversation.

Owns the ordered messages, the assets embedded in them and the running
session cost. Asset mutations always look assets up by id; positions in
the transcript are never used as identifiers.
"""
from __future__ import annotations

from typing import Iterator, Optional

from genstudio.models import (
    Asset,
    ConversationHistory,
    Cost,
    Message,
    MessageRole,
    SessionCost,
    TokenUsage,
)


def normalize_asset_url(url: str, base_url: str) -> str:
    """Backend media paths are relative; make them absolute."""
    if not url or url.startswith(("http://", "https://", "data:")):
        return url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def parse_asset(raw: dict, base_url: str) -> Asset:
    asset = Asset.model_validate(raw)
    asset.url = normalize_asset_url(asset.url, base_url)
    return asset


def parse_message(
    raw: dict,
    base_url: str,
    *,
    usage: Optional[TokenUsage] = None,
    cost: Optional[Cost] = None,
    extra: Optional[dict] = None,
) -> Message:
    """
    Build a Message from a backend message object.

    Generation responses carry usage/cost/plan/scene results next to the
    message rather than inside it, so callers may pass them separately.
    """
    data = dict(raw)
    data["assets"] = [
        parse_asset(item, base_url).model_dump() for item in (raw.get("assets") or [])
    ] or None
    if usage is not None:
        data["usage"] = usage
    if cost is not None:
        data["cost"] = cost
    for key, value in (extra or {}).items():
        if value is not None:
            data[key] = value
    if data.get("role") not in (MessageRole.USER.value, MessageRole.USER):
        data["role"] = MessageRole.ASSISTANT
    if data.get("timestamp") is None:
        data.pop("timestamp", None)
    return Message.model_validate(data)


class Transcript:
    """Ordered messages plus session-level usage accounting."""

    def __init__(self, conversation_id: Optional[str] = None):
        self.conversation_id = conversation_id
        self.messages: list[Message] = []
        self.session_cost: Optional[SessionCost] = None

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self.messages))

    def reset_welcome(self, welcome_message: str) -> None:
        """Empty state for a brand-new conversation."""
        self.conversation_id = None
        self.messages = [Message(id="welcome", role=MessageRole.ASSISTANT, content=welcome_message)]
        self.session_cost = None

    def load_history(self, history: ConversationHistory, base_url: str) -> None:
        messages = [parse_message(raw, base_url) for raw in history.messages]
        self.conversation_id = history.id
        self.messages = messages
        self.session_cost = history.session_cost

    def clear(self, conversation_id: Optional[str] = None) -> None:
        self.conversation_id = conversation_id
        self.messages = []
        self.session_cost = None

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def append_user(self, content: str) -> Message:
        return self.append(Message(role=MessageRole.USER, content=content))

    def message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def latest_pending_plan(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.has_pending_plan:
                return message
        return None

    # Asset lookup

    def find_assets(self, asset_id: str) -> list[Asset]:
        """Every embedded copy of an asset, across all messages."""
        found = []
        for message in self.messages:
            for asset in message.assets or []:
                if asset.id == asset_id:
                    found.append(asset)
            for result in message.scene_results or []:
                for asset in result.generated_images or []:
                    if asset.id == asset_id:
                        found.append(asset)
        return found

    def find_asset(self, asset_id: str) -> Optional[Asset]:
        found = self.find_assets(asset_id)
        return found[0] if found else None

    def remove_asset(self, asset_id: str) -> int:
        removed = 0
        for message in self.messages:
            if message.assets:
                kept = [asset for asset in message.assets if asset.id != asset_id]
                removed += len(message.assets) - len(kept)
                message.assets = kept
            for result in message.scene_results or []:
                if result.generated_images:
                    kept = [asset for asset in result.generated_images if asset.id != asset_id]
                    removed += len(result.generated_images) - len(kept)
                    result.generated_images = kept
        return removed

    # Cost accounting

    def record_usage(
        self,
        *,
        session_cost: Optional[SessionCost] = None,
        cost: Optional[Cost] = None,
        usage: Optional[TokenUsage] = None,
    ) -> Optional[SessionCost]:
        """
        Update the running session cost after an assistant reply.

        The backend's own running total wins when it sends one; otherwise
        the reply's cost and token usage are added locally.
        """
        if session_cost is not None:
            current = self.session_cost
            if current is None or session_cost.total_cost >= current.total_cost:
                self.session_cost = session_cost
            return self.session_cost
        if cost is None and usage is None:
            return self.session_cost

        current = self.session_cost or SessionCost(
            currency=cost.currency if cost is not None else "USD"
        )
        self.session_cost = SessionCost(
            total_cost=current.total_cost + (cost.total_cost if cost is not None else 0.0),
            total_tokens=current.total_tokens + (usage.total_tokens if usage is not None else 0),
            currency=current.currency,
        )
        return self.session_cost

"""
Generation orchestrator for one conversation view.

Turns the composer state (mode, staged media, extend target, active avatar)
into a generate-unified request, merges the reply into the transcript, and
drives plan review and build. Only one generation request is in flight at a
time; conversation history loads are superseded by newer selections.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from genstudio import capabilities
from genstudio.assets import AssetInteractionSync, AssetLocks
from genstudio.client import BackendError
from genstudio.config import Config, default_config
from genstudio.events import AssetEventBus, AssetsChanged, Notice, Notifier, log_notice
from genstudio.models import (
    Asset,
    Avatar,
    ConversationHistory,
    GenerationMode,
    GenerationResponse,
    Message,
    VideoSubMode,
)
from genstudio.modes import ModeResolver, mode_label
from genstudio.plan import PlanReview, PlanTransitionError
from genstudio.transcript import Transcript, normalize_asset_url, parse_message

logger = logging.getLogger(__name__)


PLAN_EXECUTION_PROMPT = "Execute plan"

AvatarProvider = Callable[[], Optional[Avatar]]


class SubmissionRejected(ValueError):
    """A request that fails local validation; nothing is sent."""

    def __init__(self, title: str, description: str):
        self.title = title
        self.description = description
        super().__init__(f"{title}: {description}")


class Orchestrator:
    """Request/response driver for the chat view."""

    name = "chat"

    def __init__(
        self,
        backend,
        *,
        config: Optional[Config] = None,
        transcript: Optional[Transcript] = None,
        modes: Optional[ModeResolver] = None,
        notify: Optional[Notifier] = None,
        bus: Optional[AssetEventBus] = None,
        locks: Optional[AssetLocks] = None,
        avatar_provider: Optional[AvatarProvider] = None,
        on_conversation_changed: Optional[Callable[[str], None]] = None,
    ):
        self.backend = backend
        self.config = config or default_config
        self.notify = notify or log_notice
        self.transcript = transcript or Transcript()
        self.modes = modes or ModeResolver(self.config, notify=self.notify)
        self.bus = bus or AssetEventBus()
        self.avatar_provider = avatar_provider or (lambda: None)
        self.on_conversation_changed = on_conversation_changed

        self.conversation_id: Optional[str] = self.transcript.conversation_id
        self.plan_review: Optional[PlanReview] = None
        self.is_generating = False
        self.loading = False

        # Bumped on every conversation switch; replies and history loads
        # that started under an older value are ignored.
        self._epoch = 0
        self._history_task: Optional[asyncio.Task] = None

        self.assets = AssetInteractionSync(
            backend,
            self.bus,
            [self.transcript],
            config=self.config,
            notify=self.notify,
            locks=locks,
            refresh=self.refresh_conversation,
            source=self.name,
        )
        self._unsubscribe = self.bus.subscribe(self._on_assets_changed)

        if not self.transcript.messages and self.conversation_id is None:
            self.transcript.reset_welcome(self.config.welcome_message)

    def close(self) -> None:
        self._unsubscribe()
        if self._history_task is not None and not self._history_task.done():
            self._history_task.cancel()

    # Conversation identity

    def new_conversation(self) -> None:
        self._epoch += 1
        self._cancel_history_task()
        self.conversation_id = None
        self.plan_review = None
        self.loading = False
        self.transcript.reset_welcome(self.config.welcome_message)

    async def select_conversation(self, conversation_id: Optional[str]) -> bool:
        """
        Load a conversation's history into the transcript.

        Returns False when the load failed or was superseded by another
        selection before the backend answered.
        """
        if not conversation_id:
            self.new_conversation()
            return True
        if conversation_id == self.conversation_id and not self.loading and self.transcript.messages:
            return True

        self._epoch += 1
        epoch = self._epoch
        self.conversation_id = conversation_id
        self.plan_review = None
        self.loading = True
        self.transcript.clear(conversation_id)

        try:
            data = await self.backend.get_conversation(conversation_id)
            history = ConversationHistory.model_validate(data)
        except (BackendError, ValidationError) as exc:
            if epoch != self._epoch:
                return False
            return self._history_failed(conversation_id, exc)

        if epoch != self._epoch:
            logger.info("[orchestrator] ignoring stale history for conversation %s", conversation_id)
            return False

        try:
            self._apply_history(conversation_id, history)
        except ValidationError as exc:
            return self._history_failed(conversation_id, exc)
        self.loading = False
        return True

    async def refresh_conversation(self) -> bool:
        """
        Re-fetch the active conversation in place.

        Used to restore authoritative asset state after a rolled-back
        mutation. Skipped while a generation is running or once another
        conversation has been selected.
        """
        conversation_id = self.conversation_id
        if not conversation_id or self.loading or self.is_generating:
            return False
        epoch = self._epoch
        shown = len(self.transcript)
        try:
            data = await self.backend.get_conversation(conversation_id)
            history = ConversationHistory.model_validate(data)
        except (BackendError, ValidationError) as exc:
            logger.warning("[orchestrator] refresh of conversation %s failed: %s", conversation_id, exc)
            return False
        if epoch != self._epoch or self.is_generating or len(self.transcript) != shown:
            logger.info("[orchestrator] conversation changed during refresh; result dropped")
            return False
        try:
            self._apply_history(conversation_id, history)
        except ValidationError as exc:
            logger.warning("[orchestrator] refresh of conversation %s unreadable: %s", conversation_id, exc)
            return False
        return True

    def _apply_history(self, conversation_id: str, history: ConversationHistory) -> None:
        self.transcript.load_history(history, self.config.api_base_url)
        self.transcript.conversation_id = conversation_id
        pending = self.transcript.latest_pending_plan()
        if pending is None:
            self.plan_review = None
            return
        if self.plan_review is not None and self.plan_review.message_id == pending.id:
            return
        try:
            self.plan_review = self._open_review(pending)
        except ValueError as exc:
            self.plan_review = None
            logger.warning("[orchestrator] plan in message %s cannot be reviewed: %s", pending.id, exc)

    def _history_failed(self, conversation_id: str, exc: Exception) -> bool:
        logger.warning("[orchestrator] failed to load conversation %s: %s", conversation_id, exc)
        self.loading = False
        self.transcript.clear(conversation_id)
        self.notify(Notice("Error", "Could not load conversation.", "destructive"))
        return False

    def open_conversation(self, conversation_id: Optional[str]) -> asyncio.Task:
        """Start loading a conversation, cancelling any load still running."""
        self._cancel_history_task()
        self._history_task = asyncio.get_running_loop().create_task(
            self.select_conversation(conversation_id)
        )
        return self._history_task

    def _cancel_history_task(self) -> None:
        if self._history_task is not None and not self._history_task.done():
            self._history_task.cancel()
        self._history_task = None

    def _adopt_conversation_id(self, conversation_id: Optional[str]) -> bool:
        if not conversation_id or conversation_id == self.conversation_id:
            return False
        logger.info(
            "[orchestrator] adopting conversation id %s (was %s)",
            conversation_id,
            self.conversation_id,
        )
        self.conversation_id = conversation_id
        self.transcript.conversation_id = conversation_id
        if self.on_conversation_changed is not None:
            self.on_conversation_changed(conversation_id)
        return True

    # Request construction

    def validate_submission(self, prompt: str) -> None:
        if not prompt.strip():
            raise SubmissionRejected("Empty prompt", "Describe what you want to create.")
        modes = self.modes
        if modes.mode != GenerationMode.VIDEO:
            return
        staged = modes.staged_media
        sub_mode = modes.video_sub_mode
        if not capabilities.is_mode_allowed(modes.video_params.model, sub_mode):
            raise SubmissionRejected(
                "Unsupported mode",
                "Frames/References to Video is only available for Veo 3.1 models.",
            )
        if sub_mode == VideoSubMode.FRAMES_TO_VIDEO and len(staged) != 2:
            raise SubmissionRejected("Missing frames", "Please upload both start and end frames.")
        if sub_mode == VideoSubMode.REFERENCES_TO_VIDEO and not staged:
            raise SubmissionRejected(
                "Missing references", "Please upload at least one reference image."
            )
        if sub_mode == VideoSubMode.EXTEND_VIDEO and not modes.extend_target_uri:
            raise SubmissionRejected("No video to extend", "Please select a video to extend.")

    def build_payload(self, prompt: str) -> dict:
        modes = self.modes
        mode = modes.mode
        payload: dict = {"mode": mode.value, "prompt": prompt}
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id

        avatar = self.avatar_provider()
        if avatar is not None and mode != GenerationMode.TEXT:
            if mode != GenerationMode.VIDEO or capabilities.supports_avatars(modes.video_params.model):
                payload["avatar_id"] = avatar.id

        if mode == GenerationMode.PLAN:
            payload["script"] = prompt

        staged = modes.staged_media
        if mode in (GenerationMode.TEXT, GenerationMode.IMAGE, GenerationMode.AUTO) and staged:
            payload["images"] = [item.to_payload() for item in staged]

        if mode == GenerationMode.VIDEO:
            sub_mode = modes.video_sub_mode
            payload["video_mode"] = sub_mode.value
            payload["model"] = modes.video_params.model
            payload["aspect_ratio"] = modes.video_params.aspect_ratio
            payload["resolution"] = modes.video_params.resolution
            if sub_mode == VideoSubMode.FRAMES_TO_VIDEO and len(staged) == 2:
                payload["start_frame"] = staged[0].to_payload()
                payload["end_frame"] = staged[1].to_payload()
            elif sub_mode == VideoSubMode.REFERENCES_TO_VIDEO:
                payload["reference_images"] = [item.to_payload() for item in staged]
            elif sub_mode == VideoSubMode.EXTEND_VIDEO and modes.extend_target_uri:
                payload["input_video"] = {"uri": modes.extend_target_uri}
        return payload

    # Generation

    async def send_message(self, prompt: str) -> Optional[Message]:
        """
        Submit the composer contents.

        Returns the assistant reply, or None when the request was rejected
        locally, failed, or the conversation changed while it ran.
        """
        if self.is_generating:
            self.notify(Notice("Please wait", "A generation request is already running."))
            return None
        try:
            self.validate_submission(prompt)
        except SubmissionRejected as exc:
            self.notify(Notice(exc.title, exc.description, "destructive"))
            return None

        sent_mode = self.modes.mode
        payload = self.build_payload(prompt)
        self.transcript.append_user(prompt)
        logger.info(
            "[orchestrator] generate mode=%s sub_mode=%s conversation=%s",
            sent_mode.value,
            payload.get("video_mode"),
            self.conversation_id,
        )

        response = await self._generate(payload, failure_title="Generation failed")
        if response is None:
            return None
        message = self._merge_response(response)
        if message is None:
            return None

        if message.execution_plan is not None:
            try:
                self.plan_review = self._open_review(message)
            except ValueError as exc:
                self.plan_review = None
                logger.warning("[orchestrator] plan in message %s cannot be reviewed: %s", message.id, exc)
                self.notify(Notice("Invalid plan", str(exc), "destructive"))
        self.modes.reset_after_turn(sent_mode)
        self.notify(Notice(
            "Generated!",
            f"{mode_label(_parse_mode(response.mode, sent_mode))} generated successfully.",
        ))
        return message

    async def _generate(self, payload: dict, *, failure_title: str) -> Optional[GenerationResponse]:
        self.is_generating = True
        epoch = self._epoch
        try:
            data = await self.backend.generate_unified(payload)
            response = GenerationResponse.model_validate(data)
        except (BackendError, ValidationError) as exc:
            logger.warning("[orchestrator] %s: %s", failure_title.lower(), exc)
            detail = exc.detail if isinstance(exc, BackendError) else str(exc)
            self.notify(Notice(failure_title, detail or "Server returned an error.", "destructive"))
            return None
        finally:
            self.is_generating = False

        if epoch != self._epoch:
            logger.info("[orchestrator] conversation changed during generation; reply not merged")
            return None
        return response

    def _merge_response(self, response: GenerationResponse) -> Optional[Message]:
        try:
            message = parse_message(
                response.message,
                self.config.api_base_url,
                usage=response.usage,
                cost=response.cost,
                extra={
                    "execution_plan": response.execution_plan,
                    "scene_results": response.scene_results,
                },
            )
        except ValidationError as exc:
            logger.warning("[orchestrator] malformed assistant message: %s", exc)
            self.notify(Notice("Error", "The server returned an unreadable message.", "destructive"))
            return None
        self._adopt_conversation_id(response.conversation_id)
        for result in message.scene_results or []:
            if result.video_url:
                result.video_url = normalize_asset_url(result.video_url, self.config.api_base_url)
        self.transcript.append(message)
        self.transcript.record_usage(
            session_cost=response.session_cost,
            cost=response.cost,
            usage=response.usage,
        )
        return message

    # Plans

    def review_plan(self, message_id: Optional[str] = None) -> PlanReview:
        """Open review for a plan message (default: the newest unbuilt plan)."""
        if message_id is None:
            if self.plan_review is not None:
                return self.plan_review
            message = self.transcript.latest_pending_plan()
        else:
            message = self.transcript.message(message_id)
        if message is None or message.execution_plan is None:
            raise PlanTransitionError("There is no plan to review.")
        if self.plan_review is None or self.plan_review.message_id != message.id:
            self.plan_review = self._open_review(message)
        return self.plan_review

    @staticmethod
    def _open_review(message: Message) -> PlanReview:
        return PlanReview(message.execution_plan, message.id)

    async def build_plan(self, review: Optional[PlanReview] = None) -> Optional[Message]:
        """Execute the reviewed (possibly edited) plan in one request."""
        review = review or self.plan_review
        if review is None:
            raise PlanTransitionError("There is no plan to build.")
        if self.is_generating:
            self.notify(Notice("Please wait", "A generation request is already running."))
            return None
        try:
            plan = review.start_build()
        except ValueError as exc:
            self.notify(Notice("Plan Execution Failed", str(exc), "destructive"))
            return None

        payload: dict = {
            "mode": GenerationMode.PLAN.value,
            "prompt": PLAN_EXECUTION_PROMPT,
            "execution_plan": plan.model_dump(mode="json"),
        }
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id
        avatar = self.avatar_provider()
        if avatar is not None:
            payload["avatar_id"] = avatar.id
        logger.info(
            "[orchestrator] build plan scenes=%d conversation=%s",
            len(plan.scenes),
            self.conversation_id,
        )

        response = await self._generate(payload, failure_title="Plan Execution Failed")
        if response is None:
            review.mark_failed("Plan execution failed.")
            return None
        message = self._merge_response(response)
        review.mark_applied(response.scene_results)
        if message is None:
            return None
        self.notify(Notice(
            "Plan Executed!",
            f"{review.succeeded_count()} scenes generated successfully.",
        ))
        return message

    # Assets

    def extend_video(self, asset_id: str) -> Asset:
        """Target a video from the transcript for the extend sub-mode."""
        asset = self.transcript.find_asset(asset_id)
        if asset is None:
            raise KeyError(f"Asset {asset_id} not found in conversation.")
        if not asset.uri:
            raise ValueError(f"Asset {asset_id} cannot be extended (no video uri).")
        self.modes.start_extend(asset.uri)
        return asset

    async def like_asset(self, asset_id: str) -> Optional[Asset]:
        """Save a chat asset to the collection and toggle its like."""
        return await self.assets.toggle_like(asset_id, persist_first=True)

    async def download_asset(self, asset_id: str) -> Optional[int]:
        return await self.assets.record_download(asset_id)

    async def load_avatars(self) -> list[Avatar]:
        raw_avatars = await self.backend.list_avatars()
        return [
            Avatar.model_validate({
                **item,
                "url": normalize_asset_url(item.get("url", ""), self.config.api_base_url),
                "is_default": bool(item.get("is_default")),
            })
            for item in raw_avatars
        ]

    def _on_assets_changed(self, event: AssetsChanged) -> None:
        if event.source == self.name:
            return
        if event.deleted:
            self.transcript.remove_asset(event.asset_id)
            return
        if event.asset is None:
            return
        for asset in self.transcript.find_assets(event.asset_id):
            asset.liked = event.asset.liked
            asset.downloads = event.asset.downloads


def _parse_mode(value: Optional[str], fallback: GenerationMode) -> GenerationMode:
    try:
        return GenerationMode(value) if value else fallback
    except ValueError:
        return fallback

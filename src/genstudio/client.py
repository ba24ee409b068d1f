"""
HTTP client for the generation backend.

All calls are plain `requests` calls run in a worker thread so the
orchestrator's event loop is never blocked. Reads are retried on rate
limits and server errors; generation and asset mutations are sent once.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from genstudio.config import Config, default_config

logger = logging.getLogger(__name__)


GENERATE_UNIFIED_PATH = "/api/generate-unified"
CONVERSATION_PATH = "/api/conversations/{conversation_id}"
RECENT_CONVERSATIONS_PATH = "/api/recent-conversations"
ASSETS_PATH = "/api/assets"
TOGGLE_LIKE_PATH = "/api/assets/{asset_id}/toggle-like"
INCREMENT_DOWNLOAD_PATH = "/api/assets/{asset_id}/increment-download"
AVATARS_PATH = "/api/avatars"

TokenProvider = Callable[[], Optional[str]]


class BackendError(RuntimeError):
    """Raised for HTTP errors and transport failures."""

    def __init__(self, status_code: Optional[int], detail: str, *, path: str = ""):
        self.status_code = status_code
        self.detail = detail
        self.path = path
        prefix = f"{status_code} " if status_code is not None else ""
        super().__init__(f"{prefix}{detail}".strip())

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


def _truncate_error_text(raw_error_text: str, max_length: int = 500) -> str:
    error_text = (raw_error_text or "").strip()
    if len(error_text) > max_length:
        return error_text[:max_length] + "..."
    return error_text


def _is_retryable_read_error(exc: BaseException) -> bool:
    if not isinstance(exc, BackendError):
        return False
    if exc.status_code is None:
        return True
    return exc.status_code == 429 or exc.status_code >= 500


class BackendClient:
    """
    Thin wrapper around the backend's JSON API.

    The bearer credential is supplied by an external token provider and read
    on every request; the client never stores or refreshes it.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        token_provider: Optional[TokenProvider] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or default_config
        self.token_provider = token_provider or (lambda: None)
        self.session = session or requests.Session()
        self._retry_sleep: Callable[[float], None] = time.sleep

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = self.config.url(path)
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=timeout or self.config.read_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise BackendError(None, f"Request to {path} failed: {exc}", path=path) from exc

        if response.status_code >= 400:
            detail = response.text
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = body.get("detail", detail)
            except ValueError:
                pass
            raise BackendError(response.status_code, _truncate_error_text(str(detail)), path=path)
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(
                response.status_code, f"Invalid JSON returned by {path}.", path=path
            ) from exc

    def _read(self, path: str) -> Any:
        result: Any = None
        for attempt in Retrying(
            retry=retry_if_exception(_is_retryable_read_error),
            stop=stop_after_attempt(self.config.read_retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.config.read_retry_min_delay_seconds,
                max=self.config.read_retry_max_delay_seconds,
            ),
            reraise=True,
            before_sleep=self._log_retry_before_sleep,
            sleep=self._retry_sleep,
        ):
            with attempt:
                result = self._request("GET", path)
        return result

    def _log_retry_before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return
        wait_seconds = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "[client] read failed (attempt %d/%d): %s. Retrying in %.1fs.",
            retry_state.attempt_number,
            self.config.read_retry_attempts,
            exc,
            wait_seconds,
        )

    # Synchronous API

    def generate_unified_sync(self, payload: dict) -> dict:
        return self._request(
            "POST",
            GENERATE_UNIFIED_PATH,
            payload,
            timeout=self.config.request_timeout_seconds,
        )

    def get_conversation_sync(self, conversation_id: str) -> dict:
        return self._read(CONVERSATION_PATH.format(conversation_id=quote(conversation_id, safe="")))

    def list_recent_conversations_sync(self) -> list[dict]:
        data = self._read(RECENT_CONVERSATIONS_PATH)
        if isinstance(data, dict):
            return list(data.get("conversations") or [])
        return list(data or [])

    def list_assets_sync(self) -> list[dict]:
        data = self._read(ASSETS_PATH)
        return list((data or {}).get("assets") or [])

    def create_asset_sync(self, payload: dict) -> dict:
        return self._request("POST", ASSETS_PATH, payload)

    def toggle_like_sync(self, asset_id: str) -> dict:
        return self._request("POST", TOGGLE_LIKE_PATH.format(asset_id=quote(asset_id, safe="")))

    def increment_download_sync(self, asset_id: str) -> dict:
        return self._request(
            "POST", INCREMENT_DOWNLOAD_PATH.format(asset_id=quote(asset_id, safe=""))
        )

    def list_avatars_sync(self) -> list[dict]:
        data = self._read(AVATARS_PATH)
        return list((data or {}).get("avatars") or [])

    # Async API used by the orchestrator and views

    async def generate_unified(self, payload: dict) -> dict:
        return await asyncio.to_thread(self.generate_unified_sync, payload)

    async def get_conversation(self, conversation_id: str) -> dict:
        return await asyncio.to_thread(self.get_conversation_sync, conversation_id)

    async def list_recent_conversations(self) -> list[dict]:
        return await asyncio.to_thread(self.list_recent_conversations_sync)

    async def list_assets(self) -> list[dict]:
        return await asyncio.to_thread(self.list_assets_sync)

    async def create_asset(self, payload: dict) -> dict:
        return await asyncio.to_thread(self.create_asset_sync, payload)

    async def toggle_like(self, asset_id: str) -> dict:
        return await asyncio.to_thread(self.toggle_like_sync, asset_id)

    async def increment_download(self, asset_id: str) -> dict:
        return await asyncio.to_thread(self.increment_download_sync, asset_id)

    async def list_avatars(self) -> list[dict]:
        return await asyncio.to_thread(self.list_avatars_sync)

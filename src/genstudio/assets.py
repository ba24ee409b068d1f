"""
Asset interaction sync: likes and download counts.

Each view keeps its own copy of the assets it shows. A mutation is applied
locally first, sent to the backend, then either reconciled with the server's
answer or rolled back. Confirmed changes are broadcast on the AssetEventBus
so other views can refresh their own copies.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from pydantic import ValidationError

from genstudio.client import BackendError
from genstudio.config import Config, default_config
from genstudio.events import AssetEventBus, AssetsChanged, Notice, Notifier, log_notice
from genstudio.models import Asset
from genstudio.transcript import parse_asset

logger = logging.getLogger(__name__)


class AssetCollection(Protocol):
    def find_assets(self, asset_id: str) -> list[Asset]: ...

    def remove_asset(self, asset_id: str) -> int: ...


class SyncState(Enum):
    CLEAN = "clean"
    PENDING = "optimistic_pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class AssetLocks:
    """One lock per asset id; share an instance to serialise across views."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def for_asset(self, asset_id: str) -> asyncio.Lock:
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[asset_id] = lock
        return lock

    def is_pending(self, asset_id: str) -> bool:
        lock = self._locks.get(asset_id)
        return bool(lock and lock.locked())


class AssetInteractionSync:
    """Optimistic like/download mutations for the assets one view holds."""

    def __init__(
        self,
        backend,
        bus: AssetEventBus,
        collections: list[AssetCollection],
        *,
        config: Optional[Config] = None,
        notify: Optional[Notifier] = None,
        locks: Optional[AssetLocks] = None,
        refresh: Optional[Callable[[], Awaitable[object]]] = None,
        source: Optional[str] = None,
    ):
        self.backend = backend
        self.bus = bus
        self.collections = collections
        self.config = config or default_config
        self.notify = notify or log_notice
        self.locks = locks or AssetLocks()
        self.refresh = refresh
        self.source = source
        self.states: dict[str, SyncState] = {}

    def state(self, asset_id: str) -> SyncState:
        return self.states.get(asset_id, SyncState.CLEAN)

    def _copies(self, asset_id: str) -> list[Asset]:
        copies: list[Asset] = []
        for collection in self.collections:
            copies.extend(collection.find_assets(asset_id))
        return copies

    async def toggle_like(self, asset_id: str, *, persist_first: bool = False) -> Optional[Asset]:
        """
        Flip `liked` locally, then confirm with the backend.

        `persist_first` saves the asset to the user's collection before the
        toggle, for assets that so far only exist in a chat message. Returns
        the reconciled local asset, or None when the asset was deleted or the
        call failed.
        """
        async with self.locks.for_asset(asset_id):
            copies = self._copies(asset_id)
            previous = [(asset, asset.liked) for asset in copies]
            for asset in copies:
                asset.liked = not asset.liked
            self.states[asset_id] = SyncState.PENDING

            try:
                if persist_first and copies:
                    await self.backend.create_asset({
                        "id": copies[0].id,
                        "type": copies[0].type,
                        "url": copies[0].url,
                        "prompt": copies[0].prompt or "",
                    })
                updated = await self.backend.toggle_like(asset_id)
            except BackendError as exc:
                for asset, liked in previous:
                    asset.liked = liked
                self.states[asset_id] = SyncState.ROLLED_BACK
                logger.warning("[assets] toggle-like failed for %s, rolled back: %s", asset_id, exc)
                self.notify(Notice("Error", "Could not update asset.", "destructive"))
                await self._refetch()
                return None

            self.states[asset_id] = SyncState.CONFIRMED
            if updated.get("deleted"):
                removed = sum(collection.remove_asset(asset_id) for collection in self.collections)
                logger.info("[assets] %s deleted by backend, removed %d local copies", asset_id, removed)
                self.notify(Notice("Removed from Assets", "Removed from your collection."))
                self.bus.publish(AssetsChanged(asset_id, deleted=True, source=self.source))
                return None

            liked = bool(updated.get("liked"))
            for asset in self._copies(asset_id):
                asset.liked = liked
            self.notify(Notice("Added to Assets" if liked else "Updated"))
            self.bus.publish(AssetsChanged(
                asset_id, asset=self._server_asset(updated), source=self.source
            ))
            local = self._copies(asset_id)
            return local[0] if local else None

    async def record_download(self, asset_id: str) -> Optional[int]:
        """Increment the download counter; returns the server's count."""
        async with self.locks.for_asset(asset_id):
            copies = self._copies(asset_id)
            previous = [(asset, asset.downloads) for asset in copies]
            for asset in copies:
                asset.downloads += 1
            self.states[asset_id] = SyncState.PENDING

            try:
                updated = await self.backend.increment_download(asset_id)
            except BackendError as exc:
                for asset, downloads in previous:
                    asset.downloads = downloads
                self.states[asset_id] = SyncState.ROLLED_BACK
                logger.warning("[assets] increment-download failed for %s, rolled back: %s", asset_id, exc)
                self.notify(Notice("Error", "Could not register download.", "destructive"))
                return None

            downloads = int(updated.get("downloads") or 0)
            for asset in self._copies(asset_id):
                asset.downloads = downloads
            self.states[asset_id] = SyncState.CONFIRMED
            self.bus.publish(AssetsChanged(
                asset_id, asset=self._server_asset(updated), source=self.source
            ))
            return downloads

    def _server_asset(self, payload: dict) -> Optional[Asset]:
        if "id" not in payload or "url" not in payload:
            return None
        try:
            return parse_asset(payload, self.config.api_base_url)
        except ValidationError:
            return None

    async def _refetch(self) -> None:
        if self.refresh is None:
            return
        try:
            await self.refresh()
        except BackendError as exc:
            logger.warning("[assets] refresh after rollback failed: %s", exc)


class AssetLibrary:
    """
    The user's saved-asset gallery.

    Holds its own list fetched from the backend and re-fetches whenever
    another view reports a change.
    """

    name = "library"

    def __init__(
        self,
        backend,
        bus: AssetEventBus,
        *,
        config: Optional[Config] = None,
        notify: Optional[Notifier] = None,
        locks: Optional[AssetLocks] = None,
    ):
        self.backend = backend
        self.bus = bus
        self.config = config or default_config
        self.notify = notify or log_notice
        self.assets: list[Asset] = []
        self.loading = False
        self._refresh_token = 0
        self._pending_refresh: Optional[asyncio.Task] = None
        self.sync = AssetInteractionSync(
            backend,
            bus,
            [self],
            config=self.config,
            notify=self.notify,
            locks=locks,
            refresh=self.refresh,
            source=self.name,
        )
        self._unsubscribe = bus.subscribe(self._on_assets_changed)

    def close(self) -> None:
        self._unsubscribe()
        if self._pending_refresh is not None and not self._pending_refresh.done():
            self._pending_refresh.cancel()

    async def refresh(self) -> list[Asset]:
        self._refresh_token += 1
        token = self._refresh_token
        self.loading = True
        try:
            raw_assets = await self.backend.list_assets()
        except BackendError:
            if token == self._refresh_token:
                self.loading = False
                self.notify(Notice("Error", "Could not load assets."))
            raise
        if token != self._refresh_token:
            return self.assets
        self.assets = [parse_asset(item, self.config.api_base_url) for item in raw_assets]
        self.loading = False
        return self.assets

    def find_assets(self, asset_id: str) -> list[Asset]:
        return [asset for asset in self.assets if asset.id == asset_id]

    def remove_asset(self, asset_id: str) -> int:
        before = len(self.assets)
        self.assets = [asset for asset in self.assets if asset.id != asset_id]
        return before - len(self.assets)

    def filtered(self, query: str = "", kind: str = "all") -> list[Asset]:
        needle = query.lower()
        return [
            asset for asset in self.assets
            if needle in (asset.prompt or "").lower()
            and (kind == "all" or asset.type == kind)
        ]

    async def toggle_like(self, asset_id: str) -> Optional[Asset]:
        return await self.sync.toggle_like(asset_id)

    async def record_download(self, asset_id: str) -> Optional[int]:
        return await self.sync.record_download(asset_id)

    def _on_assets_changed(self, event: AssetsChanged) -> None:
        if event.source == self.name:
            return
        if event.deleted:
            self.remove_asset(event.asset_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._pending_refresh = loop.create_task(self._refresh_quietly())

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except BackendError as exc:
            logger.warning("[assets] library refresh failed: %s", exc)

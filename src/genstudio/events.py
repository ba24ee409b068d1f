"""
User notices and the cross-view "assets changed" channel.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from genstudio.models import Asset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    """A toast shown to the user."""
    title: str
    description: str = ""
    variant: str = "default"  # default | destructive

    @property
    def is_error(self) -> bool:
        return self.variant == "destructive"


Notifier = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    """Fallback notifier that only logs."""
    if notice.is_error:
        logger.warning("[notice] %s: %s", notice.title, notice.description)
    else:
        logger.info("[notice] %s: %s", notice.title, notice.description)


@dataclass(frozen=True)
class AssetsChanged:
    """Broadcast after a like/download mutation was confirmed by the backend."""
    asset_id: str
    asset: Optional[Asset] = None
    deleted: bool = False
    source: Optional[str] = None  # name of the view that made the change


AssetListener = Callable[[AssetsChanged], None]


@dataclass
class AssetEventBus:
    """Observer registry shared by every view that caches its own asset list."""
    _listeners: list[AssetListener] = field(default_factory=list)

    def subscribe(self, listener: AssetListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: AssetsChanged) -> None:
        # Snapshot so a listener may unsubscribe while being notified.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[assets] listener failed for asset %s", event.asset_id)

    def __len__(self) -> int:
        return len(self._listeners)

"""Cache abstractions for access decisions."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from ..catalog import PlanTier

logger = logging.getLogger(__name__)


class AccessCache(Protocol):
    """Protocol describing cache operations used by the access controller."""

    def get(self, user_id: str, tier: PlanTier) -> Optional[bool]:
        ...

    def generation(self, user_id: str) -> int:
        ...

    def set(self, user_id: str, tier: PlanTier, granted: bool, *, generation: int) -> bool:
        ...

    def invalidate_user(self, user_id: str) -> None:
        ...


@dataclass(frozen=True)
class _CacheEntry:
    granted: bool
    created_at: datetime


class InMemoryAccessCache:
    """Per-user access decisions without expiry.

    Entries only disappear through :meth:`invalidate_user`, which drops every
    tier for the user at once and bumps the user's generation. A decision
    computed against an older generation is never stored.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[PlanTier, _CacheEntry]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, tier: PlanTier) -> Optional[bool]:
        with self._lock:
            entry = self._entries.get(user_id, {}).get(tier)
        return entry.granted if entry else None

    def generation(self, user_id: str) -> int:
        with self._lock:
            return self._generations.get(user_id, 0)

    def set(self, user_id: str, tier: PlanTier, granted: bool, *, generation: int) -> bool:
        with self._lock:
            if self._generations.get(user_id, 0) != generation:
                return False
            entry = _CacheEntry(granted=granted, created_at=datetime.now(timezone.utc))
            self._entries.setdefault(user_id, {})[tier] = entry
            return True

    def invalidate_user(self, user_id: str) -> None:
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            dropped = self._entries.pop(user_id, None)
        logger.debug("Invalidated %d access entries for user=%s", len(dropped or {}), user_id)


__all__ = ["AccessCache", "InMemoryAccessCache"]

"""Tier-based access gating backed by an invalidated cache."""

from .cache import AccessCache, InMemoryAccessCache
from .service import AccessController, InviteDirectory, SubscriptionSource

__all__ = [
    "AccessCache",
    "AccessController",
    "InMemoryAccessCache",
    "InviteDirectory",
    "SubscriptionSource",
]

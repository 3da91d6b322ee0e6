"""Subscription lifecycle reconciliation."""

from .models import (
    ReconciliationOutcome,
    ReconciliationResult,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
    WebhookEnvelope,
)
from .service import AccessInvalidator, CommunityFulfiller, SubscriptionStateMachine
from .inbox import EventInbox
from .sweeper import SessionSweeper
from .sync import sync_subscription

__all__ = [
    "AccessInvalidator",
    "CommunityFulfiller",
    "EventInbox",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "SessionSweeper",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "SubscriptionStateMachine",
    "SubscriptionStatus",
    "WebhookEnvelope",
    "sync_subscription",
]

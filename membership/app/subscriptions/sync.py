"""Pull reconciliation against a provider's own view of a subscription."""
from __future__ import annotations

import logging
from typing import Optional

from ..providers.models import ProviderClient
from .models import ReconciliationResult, SubscriptionEvent, SubscriptionEventType
from .service import SubscriptionStateMachine

logger = logging.getLogger(__name__)


async def sync_subscription(
    client: ProviderClient,
    state_machine: SubscriptionStateMachine,
    user_id: str,
) -> Optional[ReconciliationResult]:
    """Apply the provider's current subscription as an update event.

    The provider's timestamp is used as the event time, so a pull that is
    older than an already applied webhook is discarded like any stale event.
    Returns ``None`` when the provider has no subscription for the user.
    """

    remote = await client.get_subscription_status(user_id)
    if remote is None:
        logger.info("No %s subscription found for user=%s", client.provider.value, user_id)
        return None

    event = SubscriptionEvent(
        event_type=SubscriptionEventType.SUBSCRIPTION_UPDATED,
        user_id=user_id,
        provider=client.provider,
        timestamp=remote.last_event_at,
        plan_id=remote.plan.value,
        status=remote.status,
        subscription_id=remote.provider_subscription_id,
    )
    return state_machine.apply_event(event)


__all__ = ["sync_subscription"]

"""Translate provider subscription payloads into canonical subscriptions."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from ..catalog import PlanCatalog
from ..errors import ProviderError
from ..subscriptions.models import Subscription, parse_provider_status, to_epoch_seconds
from .models import Provider


def subscription_from_payload(
    provider: Provider,
    catalog: PlanCatalog,
    user_id: str,
    payload: Mapping[str, Any],
) -> Subscription:
    identifier = payload.get("product_id") or payload.get("price_id") or payload.get("plan_id")
    plan = catalog.find_by_provider_id(str(identifier)) if identifier else None
    if plan is None and identifier in catalog:
        plan = catalog.resolve(str(identifier))
    if plan is None:
        raise ProviderError(
            f"{provider.value} subscription references unknown product {identifier!r}",
            provider=provider,
        )

    raw_timestamp = payload.get("updated_at") or payload.get("created_at")
    try:
        status = parse_provider_status(payload.get("status"))
        last_event_at = to_epoch_seconds(raw_timestamp)
    except ValueError as exc:
        raise ProviderError(
            f"{provider.value} subscription payload is malformed: {exc}", provider=provider
        ) from exc

    subscription_id = payload.get("id")
    return Subscription(
        user_id=user_id,
        plan=plan.tier,
        provider=provider,
        status=status,
        last_event_at=last_event_at,
        provider_subscription_id=str(subscription_id) if subscription_id else None,
    )


def latest_subscription(subscriptions: Iterable[Subscription]) -> Optional[Subscription]:
    return max(subscriptions, key=lambda item: item.last_event_at, default=None)

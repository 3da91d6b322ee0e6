"""Domain models for subscription reconciliation."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..catalog.models import PlanTier
from ..enums import Provider
from ..errors import ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from ..catalog.catalog import PlanCatalog


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: Mapping[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.NONE: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.PAST_DUE: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.CANCELLED: frozenset(),
}

# Provider vocabularies differ; each maps onto a canonical state.
_PROVIDER_STATUS_ALIASES: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "completed": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "cancelled": SubscriptionStatus.CANCELLED,
    "canceled": SubscriptionStatus.CANCELLED,
    "expired": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
}


def parse_provider_status(value: object) -> SubscriptionStatus:
    """Normalize a provider status string; raises ``ValueError`` if unknown."""

    if isinstance(value, SubscriptionStatus):
        return value
    try:
        return _PROVIDER_STATUS_ALIASES[str(value).strip().lower()]
    except KeyError as exc:
        raise ValueError(f"Unsupported subscription status: {value!r}") from exc


def is_valid_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def to_epoch_seconds(value: object) -> float:
    """Convert a numeric, ISO-8601, or datetime timestamp into epoch seconds."""

    if isinstance(value, bool):
        raise ValueError("Boolean is not a valid timestamp")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return aware.timestamp()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            return to_epoch_seconds(parsed)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


class SubscriptionEventType(str, Enum):
    """Lifecycle events delivered by providers."""

    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"


_FIXED_EVENT_STATUS: Mapping[SubscriptionEventType, SubscriptionStatus] = {
    SubscriptionEventType.SUBSCRIPTION_CREATED: SubscriptionStatus.ACTIVE,
    SubscriptionEventType.SUBSCRIPTION_CANCELLED: SubscriptionStatus.CANCELLED,
    SubscriptionEventType.PAYMENT_SUCCEEDED: SubscriptionStatus.ACTIVE,
    SubscriptionEventType.PAYMENT_FAILED: SubscriptionStatus.PAST_DUE,
}


class Subscription(BaseModel):
    """Canonical subscription state for one (user, provider) pair."""

    user_id: str
    plan: PlanTier
    provider: Provider
    status: SubscriptionStatus
    last_event_at: float
    provider_subscription_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_past_due(self) -> bool:
        return self.status == SubscriptionStatus.PAST_DUE


class SubscriptionEvent(BaseModel):
    """Normalized lifecycle event consumed by the state machine."""

    event_type: SubscriptionEventType
    user_id: str = Field(min_length=1)
    provider: Provider
    timestamp: float
    plan_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    subscription_id: Optional[str] = None
    checkout_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: object) -> float:
        return to_epoch_seconds(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> Optional[SubscriptionStatus]:
        if value is None:
            return None
        return parse_provider_status(value)

    @property
    def target_status(self) -> SubscriptionStatus:
        """Status this event moves the subscription into."""

        fixed = _FIXED_EVENT_STATUS.get(self.event_type)
        if fixed is not None:
            return fixed
        return self.status or SubscriptionStatus.ACTIVE


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


class WebhookEnvelope(BaseModel):
    """Pre-verified webhook payload as forwarded by the trusted backend."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def to_event(
        self, provider: Provider, catalog: Optional["PlanCatalog"] = None
    ) -> Optional[SubscriptionEvent]:
        """Normalize the envelope, returning ``None`` for unhandled event types.

        With a ``catalog``, a provider ``product_id`` or ``price_id`` is
        translated into the plan it is configured for.
        """

        try:
            event_type = SubscriptionEventType(self.type)
        except ValueError:
            return None

        data = self.data
        user_id = _first(data, "user_id", "userId")
        if not user_id:
            raise ValidationError(f"{self.type} event is missing user_id")
        timestamp = _first(data, "timestamp", "updated_at", "created_at")
        if timestamp is None:
            raise ValidationError(f"{self.type} event is missing timestamp")

        status = _first(data, "status")
        try:
            return SubscriptionEvent(
                event_type=event_type,
                user_id=str(user_id),
                provider=provider,
                timestamp=timestamp,
                plan_id=_plan_reference(data, catalog),
                status=status if event_type == SubscriptionEventType.SUBSCRIPTION_UPDATED else None,
                subscription_id=_optional_str(_first(data, "subscription_id", "id")),
                checkout_id=_optional_str(_first(data, "checkout_id", "checkoutId")),
            )
        except ValueError as exc:
            raise ValidationError(f"Malformed {self.type} event: {exc}") from exc


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _plan_reference(data: Mapping[str, Any], catalog: Optional["PlanCatalog"]) -> Optional[str]:
    plan_id = _first(data, "plan_id", "planId", "plan_name", "plan")
    if plan_id is not None:
        return str(plan_id)
    identifier = _first(data, "product_id", "productId", "price_id", "priceId")
    if identifier is None:
        return None
    plan = catalog.find_by_provider_id(str(identifier)) if catalog is not None else None
    return plan.tier.value if plan else str(identifier)


class ReconciliationOutcome(str, Enum):
    """How the state machine disposed of an event."""

    APPLIED = "applied"
    ANOMALY = "anomaly"
    STALE = "stale"
    IGNORED = "ignored"


class ReconciliationResult(BaseModel):
    """Outcome of applying a single lifecycle event."""

    outcome: ReconciliationOutcome
    event_type: SubscriptionEventType
    user_id: str
    provider: Provider
    previous_status: SubscriptionStatus = SubscriptionStatus.NONE
    subscription: Optional[Subscription] = None
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def accepted(self) -> bool:
        return self.outcome in {ReconciliationOutcome.APPLIED, ReconciliationOutcome.ANOMALY}

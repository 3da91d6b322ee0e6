"""Subscription lifecycle reconciliation driven by provider events."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple

from ..catalog import PlanCatalog, PlanTier
from ..checkout.models import CheckoutSession, CheckoutStatus
from ..enums import Provider
from ..errors import StateConflict, SubscriptionNotFound
from .models import (
    ReconciliationOutcome,
    ReconciliationResult,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

SubscriptionKey = Tuple[str, Provider]


class AccessInvalidator(Protocol):
    """Drops cached entitlement answers affected by a subscription change."""

    def invalidate_user(self, user_id: str) -> None:
        ...


class CommunityFulfiller(Protocol):
    """Grants community access when a subscription becomes active."""

    def grant_community_access(self, user_id: str, plan_id: PlanTier) -> Any:
        ...


_SESSION_SETTLEMENT = {
    SubscriptionEventType.SUBSCRIPTION_CREATED: CheckoutStatus.COMPLETED,
    SubscriptionEventType.PAYMENT_SUCCEEDED: CheckoutStatus.COMPLETED,
    SubscriptionEventType.SUBSCRIPTION_CANCELLED: CheckoutStatus.CANCELLED,
}


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


@dataclass(frozen=True)
class _Tombstone:
    """Newest event seen for a key that has no record yet."""

    timestamp: float
    status: SubscriptionStatus
    event_type: SubscriptionEventType
    subscription_id: Optional[str] = None


class SubscriptionStateMachine:
    """Maintains canonical subscription status per (user, provider).

    Events are ordered by their own timestamp, never by arrival: anything not
    newer than the newest event seen for the key is discarded. That includes
    events seen before a record could be created; a plan-less event is kept
    as a tombstone, and the first plan-bearing event materialises the record
    in the tombstone's status when the tombstone is newer.

    Events that jump outside the transition graph are still applied, because
    providers send terminal-state corrections, but are reported as anomalies.
    This covers any newer event on a cancelled record, payment events
    included, so the final state never depends on arrival order.
    """

    def __init__(
        self,
        catalog: PlanCatalog,
        invalidator: AccessInvalidator,
        community: CommunityFulfiller,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._catalog = catalog
        self._invalidator = invalidator
        self._community = community
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._subscriptions: Dict[SubscriptionKey, Subscription] = {}
        self._tombstones: Dict[SubscriptionKey, _Tombstone] = {}
        self._sessions: Dict[str, CheckoutSession] = {}
        self._key_locks: Dict[SubscriptionKey, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()
        self._records_lock = threading.Lock()

    @contextmanager
    def _locked(self, key: SubscriptionKey) -> Iterator[None]:
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._key_locks[key]

    @property
    def held_locks(self) -> int:
        with self._key_locks_guard:
            return len(self._key_locks)

    def apply_event(self, event: SubscriptionEvent) -> ReconciliationResult:
        key: SubscriptionKey = (event.user_id, event.provider)
        with self._locked(key):
            try:
                return self._apply_locked(key, event)
            except StateConflict as conflict:
                reason = conflict.detail.get("reason", "conflict")
                previous = self._subscriptions.get(key)
                logger.info(
                    "Discarded %s for user=%s provider=%s: %s",
                    event.event_type.value,
                    event.user_id,
                    event.provider.value,
                    conflict.message,
                )
                return ReconciliationResult(
                    outcome=(
                        ReconciliationOutcome.STALE
                        if reason == "stale"
                        else ReconciliationOutcome.IGNORED
                    ),
                    event_type=event.event_type,
                    user_id=event.user_id,
                    provider=event.provider,
                    previous_status=previous.status if previous else SubscriptionStatus.NONE,
                    subscription=previous,
                    reason=conflict.message,
                )

    def get_status(self, user_id: str, provider: Provider) -> Subscription:
        with self._records_lock:
            subscription = self._subscriptions.get((user_id, provider))
        if subscription is None:
            raise SubscriptionNotFound(user_id, provider)
        return subscription

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        with self._records_lock:
            return [
                subscription
                for (owner, _), subscription in self._subscriptions.items()
                if owner == user_id
            ]

    def register_session(self, session: CheckoutSession) -> CheckoutSession:
        with self._records_lock:
            self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[CheckoutSession]:
        with self._records_lock:
            return self._sessions.get(session_id)

    def expire_sessions(self, now: Optional[datetime] = None) -> List[CheckoutSession]:
        """Mark pending sessions past their expiry as expired and return them."""

        moment = now or self._clock()
        expired: List[CheckoutSession] = []
        with self._records_lock:
            for session_id, session in list(self._sessions.items()):
                if session.is_expired(moment):
                    updated = session.model_copy(
                        update={"status": CheckoutStatus.EXPIRED, "updated_at": moment}
                    )
                    self._sessions[session_id] = updated
                    expired.append(updated)
        for session in expired:
            logger.info("Checkout session %s expired", session.session_id)
        return expired

    def prune_sessions(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """Forget settled sessions last updated more than ``retention`` ago."""

        cutoff = (now or self._clock()) - retention
        with self._records_lock:
            stale = [
                session_id
                for session_id, session in self._sessions.items()
                if not session.is_pending and session.updated_at < cutoff
            ]
            for session_id in stale:
                del self._sessions[session_id]
        if stale:
            logger.debug("Pruned %d settled checkout sessions", len(stale))
        return len(stale)

    def _apply_locked(self, key: SubscriptionKey, event: SubscriptionEvent) -> ReconciliationResult:
        now = self._clock()
        with self._records_lock:
            existing = self._subscriptions.get(key)
            tombstone = self._tombstones.get(key)
        previous_status = existing.status if existing else SubscriptionStatus.NONE
        target = event.target_status

        if existing is None:
            if not event.plan_id:
                self._remember(key, event, tombstone)
                raise StateConflict(
                    f"cannot create a subscription from {event.event_type.value} without a plan",
                    detail={"reason": "missing_plan"},
                )
            plan = self._catalog.resolve(event.plan_id).tier
            if tombstone is not None and event.timestamp <= tombstone.timestamp:
                return self._materialize(key, event, plan, tombstone, now)
            subscription = Subscription(
                user_id=event.user_id,
                plan=plan,
                provider=event.provider,
                status=target,
                last_event_at=event.timestamp,
                provider_subscription_id=event.subscription_id,
                created_at=now,
                updated_at=now,
            )
        else:
            if event.timestamp <= existing.last_event_at:
                raise StateConflict(
                    f"event at {event.timestamp} is not newer than stored {existing.last_event_at}",
                    detail={"reason": "stale"},
                )
            plan = self._catalog.resolve(event.plan_id).tier if event.plan_id else existing.plan
            subscription = existing.model_copy(
                update={
                    "plan": plan,
                    "status": target,
                    "last_event_at": event.timestamp,
                    "provider_subscription_id": event.subscription_id
                    or existing.provider_subscription_id,
                    "updated_at": now,
                }
            )

        anomalous = target != previous_status and not is_valid_transition(previous_status, target)
        if anomalous:
            logger.warning(
                "Applied out-of-graph transition %s -> %s for user=%s provider=%s (%s)",
                previous_status.value,
                target.value,
                event.user_id,
                event.provider.value,
                event.event_type.value,
            )

        self._store(key, subscription)
        if event.checkout_id:
            self._settle_session(event, now)

        self._invalidator.invalidate_user(event.user_id)
        if target == SubscriptionStatus.ACTIVE and previous_status != SubscriptionStatus.ACTIVE:
            self._fulfill(subscription)

        logger.info(
            "Subscription %s for user=%s provider=%s: %s -> %s",
            event.event_type.value,
            event.user_id,
            event.provider.value,
            previous_status.value,
            target.value,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.ANOMALY if anomalous else ReconciliationOutcome.APPLIED,
            event_type=event.event_type,
            user_id=event.user_id,
            provider=event.provider,
            previous_status=previous_status,
            subscription=subscription,
        )

    def _remember(
        self,
        key: SubscriptionKey,
        event: SubscriptionEvent,
        tombstone: Optional[_Tombstone],
    ) -> None:
        if tombstone is not None and event.timestamp <= tombstone.timestamp:
            return
        with self._records_lock:
            self._tombstones[key] = _Tombstone(
                timestamp=event.timestamp,
                status=event.target_status,
                event_type=event.event_type,
                subscription_id=event.subscription_id,
            )

    def _materialize(
        self,
        key: SubscriptionKey,
        event: SubscriptionEvent,
        plan: PlanTier,
        tombstone: _Tombstone,
        now: datetime,
    ) -> ReconciliationResult:
        subscription = Subscription(
            user_id=event.user_id,
            plan=plan,
            provider=event.provider,
            status=tombstone.status,
            last_event_at=tombstone.timestamp,
            provider_subscription_id=tombstone.subscription_id or event.subscription_id,
            created_at=now,
            updated_at=now,
        )
        self._store(key, subscription)
        self._invalidator.invalidate_user(event.user_id)
        if subscription.is_active:
            self._fulfill(subscription)

        reason = f"superseded by {tombstone.event_type.value} at {tombstone.timestamp}"
        logger.info(
            "Created %s subscription for user=%s provider=%s from %s; %s",
            subscription.status.value,
            event.user_id,
            event.provider.value,
            event.event_type.value,
            reason,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.STALE,
            event_type=event.event_type,
            user_id=event.user_id,
            provider=event.provider,
            previous_status=SubscriptionStatus.NONE,
            subscription=subscription,
            reason=reason,
        )

    def _store(self, key: SubscriptionKey, subscription: Subscription) -> None:
        with self._records_lock:
            self._subscriptions[key] = subscription
            self._tombstones.pop(key, None)

    def _settle_session(self, event: SubscriptionEvent, now: datetime) -> None:
        settled_status = _SESSION_SETTLEMENT.get(event.event_type)
        if settled_status is None:
            return
        with self._records_lock:
            session = self._sessions.get(event.checkout_id or "")
            if session is None or not session.is_pending:
                return
            self._sessions[session.session_id] = session.model_copy(
                update={
                    "status": settled_status,
                    "user_id": session.user_id or event.user_id,
                    "provider_reference": event.subscription_id or session.provider_reference,
                    "updated_at": now,
                }
            )

    def _fulfill(self, subscription: Subscription) -> None:
        try:
            self._community.grant_community_access(subscription.user_id, subscription.plan)
        except Exception:
            logger.exception(
                "Community fulfillment failed for user=%s plan=%s",
                subscription.user_id,
                subscription.plan.value,
            )


__all__ = [
    "AccessInvalidator",
    "CommunityFulfiller",
    "SubscriptionStateMachine",
]

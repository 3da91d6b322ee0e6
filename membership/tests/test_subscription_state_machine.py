"""Tests for subscription reconciliation from provider events."""
from __future__ import annotations

import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

from membership.app.catalog import PlanTier
from membership.app.checkout import CheckoutSession, CheckoutStatus
from membership.app.errors import SubscriptionNotFound, UnknownPlan, ValidationError
from membership.app.providers import Provider
from membership.app.subscriptions import (
    ReconciliationOutcome,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStateMachine,
    SubscriptionStatus,
    WebhookEnvelope,
)


class FakeInvalidator:
    def __init__(self) -> None:
        self.user_ids: List[str] = []

    def invalidate_user(self, user_id: str) -> None:
        self.user_ids.append(user_id)


class FakeCommunity:
    def __init__(self) -> None:
        self.grants: List[Tuple[str, PlanTier]] = []

    def grant_community_access(self, user_id: str, plan_id: PlanTier):
        self.grants.append((user_id, plan_id))


@pytest.fixture
def components(catalog):
    invalidator = FakeInvalidator()
    community = FakeCommunity()
    machine = SubscriptionStateMachine(catalog, invalidator, community)
    return machine, invalidator, community


def _event(event_type: SubscriptionEventType, timestamp: float, **overrides) -> SubscriptionEvent:
    values = {
        "event_type": event_type,
        "user_id": "user-1",
        "provider": Provider.MARKETPLACE,
        "timestamp": timestamp,
        "plan_id": "pro",
    }
    values.update(overrides)
    return SubscriptionEvent(**values)


def test_lifecycle_ignores_late_arriving_older_event(components):
    machine, invalidator, _ = components

    created = machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))
    failed = machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 200))
    late = machine.apply_event(_event(SubscriptionEventType.PAYMENT_SUCCEEDED, 150))

    assert created.outcome == ReconciliationOutcome.APPLIED
    assert created.previous_status == SubscriptionStatus.NONE
    assert failed.outcome == ReconciliationOutcome.APPLIED
    assert late.outcome == ReconciliationOutcome.STALE
    assert late.accepted is False
    stored = machine.get_status("user-1", Provider.MARKETPLACE)
    assert stored.status == SubscriptionStatus.PAST_DUE
    assert stored.last_event_at == 200.0

    cancelled = machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CANCELLED, 300))

    assert cancelled.subscription.status == SubscriptionStatus.CANCELLED
    assert invalidator.user_ids == ["user-1", "user-1", "user-1"]


def test_equal_timestamp_is_discarded(components):
    machine, _, _ = components
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))

    result = machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 100))

    assert result.outcome == ReconciliationOutcome.STALE
    assert machine.get_status("user-1", Provider.MARKETPLACE).status == SubscriptionStatus.ACTIVE


def test_final_state_does_not_depend_on_arrival_order(catalog):
    events = [
        _event(SubscriptionEventType.SUBSCRIPTION_CREATED, 10),
        _event(SubscriptionEventType.PAYMENT_FAILED, 20),
        _event(SubscriptionEventType.PAYMENT_SUCCEEDED, 30),
        _event(SubscriptionEventType.SUBSCRIPTION_UPDATED, 40, plan_id="elite", status="active"),
    ]

    outcomes = set()
    for permutation in itertools.permutations(events):
        machine = SubscriptionStateMachine(catalog, FakeInvalidator(), FakeCommunity())
        for event in permutation:
            machine.apply_event(event)
        stored = machine.get_status("user-1", Provider.MARKETPLACE)
        outcomes.add((stored.status, stored.plan, stored.last_event_at))

    assert outcomes == {(SubscriptionStatus.ACTIVE, PlanTier.ELITE, 40.0)}


def test_out_of_graph_transition_is_applied_as_anomaly(components):
    machine, _, community = components
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CANCELLED, 200))

    result = machine.apply_event(_event(SubscriptionEventType.PAYMENT_SUCCEEDED, 300))

    assert result.outcome == ReconciliationOutcome.ANOMALY
    assert result.accepted is True
    assert result.previous_status == SubscriptionStatus.CANCELLED
    assert machine.get_status("user-1", Provider.MARKETPLACE).status == SubscriptionStatus.ACTIVE
    assert community.grants == [("user-1", PlanTier.PRO), ("user-1", PlanTier.PRO)]


def test_first_event_may_skip_to_past_due(components):
    machine, _, community = components

    result = machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 100))

    assert result.outcome == ReconciliationOutcome.ANOMALY
    assert result.subscription.status == SubscriptionStatus.PAST_DUE
    assert community.grants == []


def test_event_without_plan_cannot_create_record(components):
    machine, invalidator, _ = components

    result = machine.apply_event(_event(SubscriptionEventType.PAYMENT_SUCCEEDED, 100, plan_id=None))

    assert result.outcome == ReconciliationOutcome.IGNORED
    assert result.subscription is None
    assert invalidator.user_ids == []
    with pytest.raises(SubscriptionNotFound):
        machine.get_status("user-1", Provider.MARKETPLACE)


def test_unknown_plan_in_event_is_rejected(components):
    machine, _, _ = components

    with pytest.raises(UnknownPlan):
        machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100, plan_id="gold"))


def test_providers_are_tracked_separately(components):
    machine, _, _ = components
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))
    machine.apply_event(
        _event(
            SubscriptionEventType.SUBSCRIPTION_CREATED,
            50,
            provider=Provider.CARD_PROCESSOR,
            plan_id="starter",
        )
    )

    subscriptions = machine.list_subscriptions("user-1")

    assert {(item.provider, item.plan) for item in subscriptions} == {
        (Provider.MARKETPLACE, PlanTier.PRO),
        (Provider.CARD_PROCESSOR, PlanTier.STARTER),
    }
    assert machine.list_subscriptions("someone-else") == []


def test_fulfillment_runs_only_when_entering_active(components):
    machine, _, community = components

    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))
    machine.apply_event(_event(SubscriptionEventType.PAYMENT_SUCCEEDED, 200))
    machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 300))
    machine.apply_event(_event(SubscriptionEventType.PAYMENT_SUCCEEDED, 400))

    assert community.grants == [("user-1", PlanTier.PRO), ("user-1", PlanTier.PRO)]


def test_fulfillment_failure_does_not_undo_the_transition(catalog, caplog):
    class BrokenCommunity:
        def grant_community_access(self, user_id, plan_id):
            raise RuntimeError("discord is down")

    machine = SubscriptionStateMachine(catalog, FakeInvalidator(), BrokenCommunity())

    result = machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))

    assert result.outcome == ReconciliationOutcome.APPLIED
    assert machine.get_status("user-1", Provider.MARKETPLACE).is_active
    assert "Community fulfillment failed" in caplog.text


def test_checkout_session_settles_from_event(components):
    machine, _, _ = components
    session = machine.register_session(
        CheckoutSession(session_id="chk_1", plan=PlanTier.PRO, provider=Provider.MARKETPLACE)
    )
    assert session.is_pending

    machine.apply_event(
        _event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100, checkout_id="chk_1", subscription_id="mem_1")
    )

    settled = machine.get_session("chk_1")
    assert settled.status == CheckoutStatus.COMPLETED
    assert settled.user_id == "user-1"
    assert settled.provider_reference == "mem_1"

    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CANCELLED, 200, checkout_id="chk_1"))

    assert machine.get_session("chk_1").status == CheckoutStatus.COMPLETED


def test_expire_sessions_only_touches_overdue_pending_sessions(components):
    machine, _, _ = components
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    machine.register_session(
        CheckoutSession(
            session_id="old",
            plan=PlanTier.STARTER,
            provider=Provider.MARKETPLACE,
            expires_at=now - timedelta(minutes=1),
        )
    )
    machine.register_session(
        CheckoutSession(
            session_id="fresh",
            plan=PlanTier.STARTER,
            provider=Provider.MARKETPLACE,
            expires_at=now + timedelta(minutes=30),
        )
    )
    machine.register_session(
        CheckoutSession(
            session_id="done",
            plan=PlanTier.STARTER,
            provider=Provider.CARD_PROCESSOR,
            status=CheckoutStatus.COMPLETED,
            expires_at=now - timedelta(minutes=1),
        )
    )

    expired = machine.expire_sessions(now)

    assert [session.session_id for session in expired] == ["old"]
    assert machine.get_session("old").status == CheckoutStatus.EXPIRED
    assert machine.get_session("fresh").status == CheckoutStatus.PENDING
    assert machine.get_session("done").status == CheckoutStatus.COMPLETED


def test_concurrent_events_for_one_key_keep_the_newest(components):
    machine, _, _ = components
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 1))
    barrier = threading.Barrier(8)

    def worker(offset: int) -> None:
        barrier.wait()
        for step in range(50):
            event_type = (
                SubscriptionEventType.PAYMENT_FAILED
                if step % 2
                else SubscriptionEventType.PAYMENT_SUCCEEDED
            )
            machine.apply_event(_event(event_type, 2 + offset + step * 8))

    threads = [threading.Thread(target=worker, args=(offset,)) for offset in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stored = machine.get_status("user-1", Provider.MARKETPLACE)
    assert stored.last_event_at == float(2 + 7 + 49 * 8)
    assert stored.status == SubscriptionStatus.PAST_DUE
    assert machine.held_locks == 0


def test_envelope_normalizes_provider_aliases():
    envelope = WebhookEnvelope(
        type="subscription.updated",
        data={
            "userId": "user-9",
            "updated_at": "2024-03-01T00:00:00Z",
            "plan_name": "elite",
            "status": "trialing",
            "id": "mem_9",
            "checkoutId": "chk_9",
        },
    )

    event = envelope.to_event(Provider.MARKETPLACE)

    assert event.user_id == "user-9"
    assert event.plan_id == "elite"
    assert event.status == SubscriptionStatus.ACTIVE
    assert event.subscription_id == "mem_9"
    assert event.checkout_id == "chk_9"
    assert event.timestamp == datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp()


def test_envelope_ignores_status_outside_updates():
    event = WebhookEnvelope(
        type="payment.failed",
        data={"user_id": "user-1", "timestamp": 5, "status": "active"},
    ).to_event(Provider.CARD_PROCESSOR)

    assert event.status is None
    assert event.target_status == SubscriptionStatus.PAST_DUE


def test_envelope_with_unhandled_type_is_skipped():
    assert WebhookEnvelope(type="invoice.created", data={}).to_event(Provider.MARKETPLACE) is None


@pytest.mark.parametrize(
    "data",
    [
        {"timestamp": 5},
        {"user_id": "user-1"},
        {"user_id": "user-1", "timestamp": "yesterday"},
        {"user_id": "user-1", "timestamp": 5, "status": "frozen"},
    ],
)
def test_malformed_envelope_is_a_validation_error(data):
    with pytest.raises(ValidationError):
        WebhookEnvelope(type="subscription.updated", data=data).to_event(Provider.MARKETPLACE)


def test_newer_planless_event_outranks_older_create(components):
    machine, invalidator, community = components

    cancelled = machine.apply_event(
        _event(SubscriptionEventType.SUBSCRIPTION_CANCELLED, 200, plan_id=None)
    )
    created = machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))

    assert cancelled.outcome == ReconciliationOutcome.IGNORED
    assert created.outcome == ReconciliationOutcome.STALE
    assert created.accepted is False
    stored = machine.get_status("user-1", Provider.MARKETPLACE)
    assert (stored.status, stored.plan, stored.last_event_at) == (
        SubscriptionStatus.CANCELLED,
        PlanTier.PRO,
        200.0,
    )
    assert community.grants == []
    assert invalidator.user_ids == ["user-1"]


def test_planless_event_older_than_create_is_superseded(components):
    machine, _, _ = components
    machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 50, plan_id=None))

    result = machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))

    assert result.outcome == ReconciliationOutcome.APPLIED
    stored = machine.get_status("user-1", Provider.MARKETPLACE)
    assert (stored.status, stored.last_event_at) == (SubscriptionStatus.ACTIVE, 100.0)


def test_cancelled_record_follows_newest_event_in_any_order(catalog):
    events = [
        _event(SubscriptionEventType.SUBSCRIPTION_CREATED, 10),
        _event(SubscriptionEventType.SUBSCRIPTION_CANCELLED, 20),
        _event(SubscriptionEventType.PAYMENT_SUCCEEDED, 30),
    ]

    outcomes = set()
    for permutation in itertools.permutations(events):
        machine = SubscriptionStateMachine(catalog, FakeInvalidator(), FakeCommunity())
        for event in permutation:
            machine.apply_event(event)
        stored = machine.get_status("user-1", Provider.MARKETPLACE)
        outcomes.add((stored.status, stored.last_event_at))

    assert outcomes == {(SubscriptionStatus.ACTIVE, 30.0)}


def test_key_locks_are_released_after_use(components):
    machine, _, _ = components

    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100))
    machine.apply_event(_event(SubscriptionEventType.SUBSCRIPTION_CREATED, 100, user_id="user-2"))
    machine.apply_event(_event(SubscriptionEventType.PAYMENT_FAILED, 50))

    assert machine.held_locks == 0


def test_prune_sessions_forgets_only_old_settled_sessions(components):
    machine, _, _ = components
    now = datetime(2024, 1, 2, tzinfo=timezone.utc)
    old = now - timedelta(days=2)
    machine.register_session(
        CheckoutSession(
            session_id="settled-old",
            plan=PlanTier.PRO,
            provider=Provider.MARKETPLACE,
            status=CheckoutStatus.COMPLETED,
            updated_at=old,
        )
    )
    machine.register_session(
        CheckoutSession(
            session_id="pending-old",
            plan=PlanTier.PRO,
            provider=Provider.MARKETPLACE,
            updated_at=old,
        )
    )
    machine.register_session(
        CheckoutSession(
            session_id="settled-recent",
            plan=PlanTier.PRO,
            provider=Provider.MARKETPLACE,
            status=CheckoutStatus.EXPIRED,
            updated_at=now - timedelta(minutes=5),
        )
    )

    pruned = machine.prune_sessions(timedelta(days=1), now)

    assert pruned == 1
    assert machine.get_session("settled-old") is None
    assert machine.get_session("pending-old") is not None
    assert machine.get_session("settled-recent") is not None


def test_envelope_resolves_provider_product_to_plan(catalog):
    event = WebhookEnvelope(
        type="subscription.created",
        data={"user_id": "user-1", "timestamp": 5, "product_id": "prod_elite"},
    ).to_event(Provider.MARKETPLACE, catalog)

    assert event.plan_id == "elite"


def test_envelope_resolves_processor_price_to_plan(catalog):
    event = WebhookEnvelope(
        type="payment.succeeded",
        data={"userId": "user-1", "timestamp": 5, "priceId": "price_starter_monthly"},
    ).to_event(Provider.CARD_PROCESSOR, catalog)

    assert event.plan_id == "starter"


def test_envelope_keeps_unmatched_provider_identifier(catalog):
    event = WebhookEnvelope(
        type="subscription.created",
        data={"user_id": "user-1", "timestamp": 5, "product_id": "prod_unknown"},
    ).to_event(Provider.MARKETPLACE, catalog)

    assert event.plan_id == "prod_unknown"

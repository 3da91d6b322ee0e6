from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from membership.app.catalog import PlanTier
from membership.app.context import build_context
from membership.app.providers import Provider
from membership.app.routes import membership as membership_routes
from membership.app.schemas.membership import CheckoutRequest
from membership.app.subscriptions import ReconciliationOutcome, SubscriptionStatus, WebhookEnvelope
from membership.main import app


def _marketplace_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/checkout"):
        return httpx.Response(200, json={"id": "chk_42", "checkout_url": "https://whop.test/c/42"})
    if request.url.path.endswith("/subscriptions"):
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": "mem_1", "product_id": "prod_elite", "status": "active", "updated_at": 700}
                ]
            },
        )
    return httpx.Response(404)


@pytest.fixture
def transport(recording_transport):
    return recording_transport(_marketplace_handler)


@pytest.fixture
def context(config, transport):
    return build_context(config, client_factory=transport.factory)


def _webhook(context, provider: Provider, event_type: str, **data):
    return asyncio.run(
        membership_routes.receive_webhook(
            provider,
            WebhookEnvelope(type=event_type, data=data),
            context=context,
        )
    )


def test_get_context_requires_initialised_state(context):
    ready = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(membership=context)))
    missing = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    assert membership_routes.get_context(ready) is context
    with pytest.raises(HTTPException) as excinfo:
        membership_routes.get_context(missing)
    assert excinfo.value.status_code == 503


def test_list_plans_returns_catalog_in_rank_order(context):
    response = membership_routes.list_plans(context=context)

    assert [plan.id for plan in response.plans] == [PlanTier.STARTER, PlanTier.PRO, PlanTier.ELITE]
    assert response.plans[2].display_price == "$199"


def test_checkout_returns_redirect_for_marketplace(context, transport):
    payload = CheckoutRequest(planId="elite", userId="user-1", email="ada@example.com")

    outcome = asyncio.run(membership_routes.start_checkout(payload, context=context))

    assert outcome.redirect_url == "https://whop.test/c/42"
    assert outcome.retryable is False
    assert outcome.session.session_id == "chk_42"
    assert outcome.session.provider == Provider.MARKETPLACE
    assert json.loads(transport.requests[0].content)["metadata"] == {"user_id": "user-1"}
    assert context.state_machine.get_session("chk_42") is not None


def test_checkout_errors_carry_retryable_flag(make_config, transport):
    context = build_context(
        make_config(drop=("WHOP_API_KEY", "STRIPE_PUBLISHABLE_KEY")),
        client_factory=transport.factory,
    )

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            membership_routes.start_checkout(CheckoutRequest(planId="pro"), context=context)
        )

    assert excinfo.value.status_code == 503
    assert excinfo.value.detail["error"] == "no_provider_configured"
    assert excinfo.value.detail["retryable"] is False


def test_checkout_provider_failure_is_retryable(config, recording_transport):
    failing = recording_transport(lambda request: httpx.Response(503, text="maintenance"))
    context = build_context(config, client_factory=failing.factory)

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            membership_routes.start_checkout(CheckoutRequest(planId="pro"), context=context)
        )

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail["error"] == "checkout_failed"
    assert excinfo.value.detail["retryable"] is True
    assert excinfo.value.detail["cause"] == "provider_error"


def test_webhook_is_queued_then_reflected_in_access(context):
    accepted = _webhook(
        context,
        Provider.MARKETPLACE,
        "subscription.created",
        user_id="user-1",
        plan_id="pro",
        timestamp=100,
    )

    assert accepted.accepted is True
    assert accepted.queued == 1
    denied_before = membership_routes.check_access("user-1", "pro", context=context)
    assert denied_before.granted is False

    asyncio.run(context.inbox.drain())

    granted = membership_routes.check_access("user-1", "pro", context=context)
    assert granted.granted is True
    assert granted.upgrade is None

    _webhook(
        context,
        Provider.MARKETPLACE,
        "subscription.cancelled",
        user_id="user-1",
        timestamp=200,
    )
    asyncio.run(context.inbox.drain())

    denied = membership_routes.check_access("user-1", "pro", context=context)
    assert denied.granted is False
    assert denied.upgrade.discord_invite == "https://discord.gg/keeton-pro"


def test_webhook_with_unknown_plan_is_rejected(context):
    with pytest.raises(HTTPException) as excinfo:
        _webhook(
            context,
            Provider.MARKETPLACE,
            "subscription.created",
            user_id="user-1",
            plan_id="platinum",
            timestamp=1,
        )

    assert excinfo.value.status_code == 400
    assert context.inbox.pending == 0


def test_webhook_with_provider_product_id_creates_subscription(context):
    _webhook(
        context,
        Provider.MARKETPLACE,
        "subscription.created",
        user_id="user-1",
        product_id="prod_elite",
        timestamp=100,
    )
    asyncio.run(context.inbox.drain())

    stored = membership_routes.get_subscription("user-1", Provider.MARKETPLACE, context=context)
    assert stored.plan == PlanTier.ELITE

    with pytest.raises(HTTPException) as excinfo:
        _webhook(
            context,
            Provider.MARKETPLACE,
            "subscription.created",
            user_id="user-2",
            product_id="prod_unknown",
            timestamp=100,
        )
    assert excinfo.value.status_code == 400


def test_unhandled_webhook_type_is_acknowledged_without_queueing(context):
    accepted = _webhook(context, Provider.CARD_PROCESSOR, "invoice.finalized", id="in_1")

    assert accepted.accepted is False
    assert context.inbox.pending == 0


def test_closed_inbox_returns_service_unavailable(context):
    context.inbox.close()

    with pytest.raises(HTTPException) as excinfo:
        _webhook(context, Provider.MARKETPLACE, "payment.failed", user_id="user-1", timestamp=5)

    assert excinfo.value.status_code == 503


def test_access_check_for_unknown_plan_is_bad_request(context):
    with pytest.raises(HTTPException) as excinfo:
        membership_routes.check_access("user-1", "gold", context=context)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["error"] == "unknown_plan"


def test_subscription_lookup_and_sync(context, transport):
    with pytest.raises(HTTPException) as excinfo:
        membership_routes.get_subscription("user-1", Provider.MARKETPLACE, context=context)
    assert excinfo.value.status_code == 404

    synced = asyncio.run(
        membership_routes.sync_user_subscription("user-1", Provider.MARKETPLACE, context=context)
    )

    assert synced.outcome == ReconciliationOutcome.APPLIED
    assert synced.subscription.plan == PlanTier.ELITE
    assert str(transport.requests[-1].url) == "https://marketplace.test/v1/users/user-1/subscriptions"
    stored = membership_routes.get_subscription("user-1", Provider.MARKETPLACE, context=context)
    assert stored.status == SubscriptionStatus.ACTIVE
    assert stored.last_event_at == 700.0
    assert membership_routes.check_access("user-1", "elite", context=context).granted is True


def test_sync_against_missing_backend_record_maps_provider_error(context):
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            membership_routes.sync_user_subscription(
                "user-1", Provider.CARD_PROCESSOR, context=context
            )
        )

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail["error"] == "provider_not_found"


def test_application_serves_plans_and_rejects_unconfigured_checkout(monkeypatch):
    for key in ("WHOP_API_KEY", "STRIPE_PUBLISHABLE_KEY"):
        monkeypatch.delenv(key, raising=False)
    with TestClient(app) as client:
        plans = client.get("/api/membership/plans")
        checkout = client.post("/api/membership/checkout", json={"planId": "pro"})
        webhook = client.post(
            "/api/membership/webhooks/whop",
            json={"type": "subscription.created", "data": {"user_id": "u1", "plan_id": "pro", "timestamp": 1}},
        )
        health = client.get("/health")
        sweeper_running = not app.state.membership_sweeper_task.done()

    assert plans.status_code == 200
    assert [plan["id"] for plan in plans.json()["plans"]] == ["starter", "pro", "elite"]
    assert plans.json()["plans"][1]["displayPrice"] == "$99"
    assert checkout.status_code == 503
    assert checkout.json()["detail"]["retryable"] is False
    assert webhook.status_code == 202
    assert webhook.json()["accepted"] is True
    assert health.json()["providers"]["marketplace"]["configured"] == "false"
    assert sweeper_running is True
    assert app.state.membership_sweeper_task.cancelled() is True

"""API routes exposing checkout, reconciliation, and access gating."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..context import MembershipContext
from ..enums import Provider
from ..errors import MembershipError, UnknownPlan
from ..schemas.membership import (
    AccessResponse,
    CheckoutOutcome,
    CheckoutRequest,
    InvitePayload,
    PlanListResponse,
    PlanResponse,
    SubscriptionResponse,
    SyncResponse,
    WebhookAccepted,
)
from ..subscriptions import WebhookEnvelope, sync_subscription

logger = logging.getLogger(__name__)


def get_context(request: Request) -> MembershipContext:
    context = getattr(request.app.state, "membership", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Membership services are not initialised",
        )
    return context


router = APIRouter(prefix="/api/membership", tags=["membership"])


@router.get("/plans", response_model=PlanListResponse)
def list_plans(context: MembershipContext = Depends(get_context)) -> PlanListResponse:
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in context.catalog.plans()])


@router.post("/checkout", response_model=CheckoutOutcome)
async def start_checkout(
    payload: CheckoutRequest,
    context: MembershipContext = Depends(get_context),
) -> CheckoutOutcome:
    try:
        session = await context.checkout.start_checkout(payload.plan_id, payload.to_context())
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutOutcome.from_session(session)


@router.get("/access/{user_id}/{plan_id}", response_model=AccessResponse)
def check_access(
    user_id: str,
    plan_id: str,
    context: MembershipContext = Depends(get_context),
) -> AccessResponse:
    try:
        plan = context.catalog.resolve(plan_id)
        granted = context.access.check_access(user_id, plan.tier)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc

    invite = None if granted else context.access.on_access_denied(plan.tier)
    return AccessResponse(
        user_id=user_id,
        plan=plan.tier,
        granted=granted,
        upgrade=InvitePayload.from_invite(invite) if invite else None,
    )


@router.post(
    "/webhooks/{provider}",
    response_model=WebhookAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def receive_webhook(
    provider: Provider,
    payload: WebhookEnvelope,
    context: MembershipContext = Depends(get_context),
) -> WebhookAccepted:
    try:
        event = payload.to_event(provider, context.catalog)
        if event is not None and event.plan_id and event.plan_id not in context.catalog:
            raise UnknownPlan(event.plan_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc

    if event is None:
        logger.info("Ignoring unhandled %s event %s", provider.value, payload.type)
        return WebhookAccepted(accepted=False, event_type=payload.type)

    if not context.inbox.put_nowait(event):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event inbox is not accepting events",
        )
    return WebhookAccepted(accepted=True, event_type=payload.type, queued=context.inbox.pending)


@router.post("/users/{user_id}/sync/{provider}", response_model=SyncResponse)
async def sync_user_subscription(
    user_id: str,
    provider: Provider,
    context: MembershipContext = Depends(get_context),
) -> SyncResponse:
    try:
        result = await sync_subscription(context.client_for(provider), context.state_machine, user_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SyncResponse.from_result(result)


@router.get("/users/{user_id}/subscriptions/{provider}", response_model=SubscriptionResponse)
def get_subscription(
    user_id: str,
    provider: Provider,
    context: MembershipContext = Depends(get_context),
) -> SubscriptionResponse:
    try:
        subscription = context.state_machine.get_status(user_id, provider)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse.from_subscription(subscription)

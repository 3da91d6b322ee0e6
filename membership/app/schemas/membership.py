"""API schemas for membership endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..catalog import Plan, PlanTier
from ..checkout import CheckoutSession, CheckoutStatus, PurchaseContext
from ..community import InviteRef
from ..enums import Provider
from ..subscriptions import (
    ReconciliationOutcome,
    ReconciliationResult,
    Subscription,
    SubscriptionStatus,
)


class PlanResponse(BaseModel):
    id: PlanTier
    name: str
    price: int
    currency: str
    display_price: str = Field(alias="displayPrice")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.tier,
            name=plan.display_name,
            price=plan.price,
            currency=plan.currency,
            display_price=plan.display_price,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class CheckoutRequest(BaseModel):
    plan_id: str = Field(alias="planId")
    user_id: Optional[str] = Field(alias="userId", default=None)
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    card_token: Optional[str] = Field(alias="cardToken", default=None)
    success_url: Optional[str] = Field(alias="successUrl", default=None)
    cancel_url: Optional[str] = Field(alias="cancelUrl", default=None)
    idempotency_key: Optional[str] = Field(alias="idempotencyKey", default=None, min_length=8)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    def to_context(self) -> PurchaseContext:
        values = self.model_dump(exclude={"plan_id"}, exclude_none=True)
        return PurchaseContext(**values)


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    plan: PlanTier
    provider: Provider
    status: CheckoutStatus
    user_id: Optional[str] = Field(alias="userId", default=None)
    provider_reference: Optional[str] = Field(alias="providerReference", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(
            session_id=session.session_id,
            plan=session.plan,
            provider=session.provider,
            status=session.status,
            user_id=session.user_id,
            provider_reference=session.provider_reference,
            expires_at=session.expires_at,
        )


class CheckoutOutcome(BaseModel):
    session: CheckoutSessionResponse
    redirect_url: Optional[str] = Field(alias="redirectUrl", default=None)
    retryable: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutOutcome":
        return cls(
            session=CheckoutSessionResponse.from_session(session),
            redirect_url=session.redirect_url,
        )


class InvitePayload(BaseModel):
    plan: PlanTier
    discord_invite: Optional[str] = Field(alias="discordInvite", default=None)
    telegram_group: Optional[str] = Field(alias="telegramGroup", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_invite(cls, invite: InviteRef) -> "InvitePayload":
        return cls(
            plan=invite.plan,
            discord_invite=invite.discord_invite,
            telegram_group=invite.telegram_group,
        )


class AccessResponse(BaseModel):
    user_id: str = Field(alias="userId")
    plan: PlanTier
    granted: bool
    upgrade: Optional[InvitePayload] = None

    model_config = ConfigDict(populate_by_name=True)


class WebhookAccepted(BaseModel):
    accepted: bool
    event_type: str = Field(alias="eventType")
    queued: int = 0

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionResponse(BaseModel):
    user_id: str = Field(alias="userId")
    plan: PlanTier
    provider: Provider
    status: SubscriptionStatus
    last_event_at: float = Field(alias="lastEventAt")
    provider_subscription_id: Optional[str] = Field(alias="providerSubscriptionId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            user_id=subscription.user_id,
            plan=subscription.plan,
            provider=subscription.provider,
            status=subscription.status,
            last_event_at=subscription.last_event_at,
            provider_subscription_id=subscription.provider_subscription_id,
        )


class SyncResponse(BaseModel):
    outcome: Optional[ReconciliationOutcome] = None
    subscription: Optional[SubscriptionResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: Optional[ReconciliationResult]) -> "SyncResponse":
        if result is None:
            return cls()
        return cls(
            outcome=result.outcome,
            subscription=(
                SubscriptionResponse.from_subscription(result.subscription)
                if result.subscription
                else None
            ),
        )

"""Route purchase intents to the configured provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Dict
from uuid import uuid4

from ..catalog import Plan, PlanCatalog
from ..config import MembershipConfig, is_configured
from ..enums import Provider
from ..errors import (
    CheckoutFailed,
    NoProviderConfigured,
    NotConfigured,
    ProviderError,
    ValidationError,
)
from ..providers.models import CheckoutOptions
from .models import CheckoutSession, CheckoutStatus, PurchaseContext

if TYPE_CHECKING:  # pragma: no cover
    from ..providers import CardProcessorClient, MarketplaceClient
    from ..subscriptions.service import SubscriptionStateMachine

logger = logging.getLogger(__name__)

_PROCESSOR_SETTLED_STATUSES = frozenset({"active", "trialing"})


@dataclass
class CheckoutRouter:
    """Chooses a provider for a purchase and opens a checkout session.

    The marketplace takes precedence whenever it is configured; the card
    processor is the fallback. Sessions are registered with the state machine
    only after the provider accepted the request.
    """

    catalog: PlanCatalog
    marketplace: MarketplaceClient
    processor: CardProcessorClient
    state_machine: SubscriptionStateMachine
    config: MembershipConfig

    def select_provider(self) -> Provider:
        if self.marketplace.configured:
            return Provider.MARKETPLACE
        if self.processor.configured:
            return Provider.CARD_PROCESSOR
        raise NoProviderConfigured()

    async def start_checkout(self, plan_id: str, context: PurchaseContext) -> CheckoutSession:
        plan = self.catalog.resolve(plan_id)
        provider = self.select_provider()
        handlers: Dict[
            Provider, Callable[[Plan, PurchaseContext], Awaitable[CheckoutSession]]
        ] = {
            Provider.MARKETPLACE: self._marketplace_checkout,
            Provider.CARD_PROCESSOR: self._processor_checkout,
        }

        try:
            session = await handlers[provider](plan, context)
        except ProviderError as exc:
            logger.warning(
                "Checkout for plan %s via %s failed: %s",
                plan.tier.value,
                provider.value,
                exc.message,
                extra={"provider": provider.value, "error_code": exc.code},
            )
            raise CheckoutFailed(f"{provider.value} checkout failed: {exc.message}", exc) from exc

        self.state_machine.register_session(session)
        logger.info(
            "Opened %s checkout session %s for plan %s",
            provider.value,
            session.session_id,
            plan.tier.value,
            extra={"user_id": context.user_id, "status": session.status.value},
        )
        return session

    def _options_for(self, context: PurchaseContext) -> CheckoutOptions:
        metadata = dict(context.metadata)
        if context.user_id:
            metadata.setdefault("user_id", context.user_id)
        return CheckoutOptions(
            success_url=context.success_url or self.config.success_url,
            cancel_url=context.cancel_url or self.config.cancel_url,
            metadata=metadata,
        )

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.config.checkout_session_ttl_seconds)

    async def _marketplace_checkout(
        self, plan: Plan, context: PurchaseContext
    ) -> CheckoutSession:
        if not is_configured(plan.product_id):
            raise NotConfigured(
                Provider.MARKETPLACE,
                f"No marketplace product is configured for plan {plan.tier.value}",
            )
        ref = await self.marketplace.create_checkout_session(plan, self._options_for(context))
        if not ref.checkout_url.strip():
            raise CheckoutFailed(
                "Marketplace returned an empty checkout URL",
                ProviderError("empty checkout_url", provider=Provider.MARKETPLACE),
            )

        now = datetime.now(timezone.utc)
        return CheckoutSession(
            session_id=ref.session_id or f"cs_{uuid4().hex}",
            plan=plan.tier,
            provider=Provider.MARKETPLACE,
            status=CheckoutStatus.PENDING,
            redirect_url=ref.checkout_url,
            user_id=context.user_id,
            created_at=now,
            updated_at=now,
            expires_at=ref.expires_at or self._expiry(now),
        )

    async def _processor_checkout(
        self, plan: Plan, context: PurchaseContext
    ) -> CheckoutSession:
        if not context.card_token:
            raise ValidationError(
                "A processor card token is required to pay by card",
                detail={"field": "card_token"},
            )
        if not is_configured(plan.price_id):
            raise NotConfigured(
                Provider.CARD_PROCESSOR,
                f"No processor price is configured for plan {plan.tier.value}",
            )

        billing_details: Dict[str, str] = {}
        if context.name:
            billing_details["name"] = context.name
        if context.email:
            billing_details["email"] = str(context.email)

        payment_method = await self.processor.create_payment_method(
            context.card_token,
            billing_details=billing_details,
            idempotency_key=context.idempotency_key,
        )
        subscription = await self.processor.create_subscription(
            payment_method.id,
            plan.price_id,
            idempotency_key=context.idempotency_key,
            customer_id=context.user_id,
            email=str(context.email) if context.email else None,
        )

        settled = subscription.status.lower() in _PROCESSOR_SETTLED_STATUSES
        now = datetime.now(timezone.utc)
        return CheckoutSession(
            session_id=f"cs_{uuid4().hex}",
            plan=plan.tier,
            provider=Provider.CARD_PROCESSOR,
            status=CheckoutStatus.COMPLETED if settled else CheckoutStatus.PENDING,
            redirect_url=self._options_for(context).success_url if settled else None,
            user_id=context.user_id,
            provider_reference=subscription.id,
            created_at=now,
            updated_at=now,
            expires_at=None if settled else self._expiry(now),
        )


__all__ = ["CheckoutRouter"]

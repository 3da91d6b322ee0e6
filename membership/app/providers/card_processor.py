"""Client for the card processor (Stripe) and the backend holding its secret."""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from ..catalog import PlanCatalog
from ..config import ProviderCredential
from ..errors import NotConfigured
from ..subscriptions.models import Subscription
from .http import ClientFactory, ProviderTransport, require_field
from .models import PaymentMethodRef, ProcessorSubscriptionRef, Provider
from .normalize import subscription_from_payload

logger = logging.getLogger(__name__)


class CardProcessorClient:
    """Creates payment methods and subscriptions from processor card tokens.

    Only the publishable key lives here. Raw card numbers never reach this
    client: callers hand over the opaque token produced by the processor's
    own client-side SDK. Subscription creation goes through the trusted
    backend, which owns the secret key.
    """

    provider = Provider.CARD_PROCESSOR

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        backend_url: str,
        catalog: PlanCatalog,
        timeout: float = 5.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.configured = credential.configured
        self._catalog = catalog
        self._api = ProviderTransport(
            self.provider,
            base_url=credential.base_url,
            headers={"Authorization": f"Bearer {credential.api_key}"},
            timeout=timeout,
            client_factory=client_factory,
        )
        self._backend = ProviderTransport(
            self.provider,
            base_url=backend_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            client_factory=client_factory,
        )

    def describe(self) -> Dict[str, str]:
        return {
            "provider": self.provider.value,
            "base_url": self._api.base_url,
            "backend_url": self._backend.base_url,
            "configured": str(self.configured).lower(),
        }

    def _require_configured(self) -> None:
        if not self.configured:
            raise NotConfigured(self.provider)

    async def create_payment_method(
        self,
        card_token: str,
        *,
        billing_details: Optional[Mapping[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentMethodRef:
        self._require_configured()
        form: Dict[str, str] = {"type": "card", "card[token]": card_token}
        for key, value in (billing_details or {}).items():
            if value:
                form[f"billing_details[{key}]"] = value
        headers = {"Idempotency-Key": f"{idempotency_key}-pm"} if idempotency_key else None

        payload = await self._api.request("POST", "/payment_methods", data=form, headers=headers)
        return PaymentMethodRef(id=str(require_field(self.provider, payload, "id")))

    async def create_subscription(
        self,
        payment_method_id: str,
        price_id: str,
        *,
        idempotency_key: str,
        customer_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ProcessorSubscriptionRef:
        self._require_configured()
        body = {
            "paymentMethodId": payment_method_id,
            "priceId": price_id,
            "customerId": customer_id,
            "email": email,
        }
        payload = await self._backend.request(
            "POST",
            "/create-subscription",
            json=body,
            headers={"Idempotency-Key": f"{idempotency_key}-sub"},
        )
        subscription_id = require_field(self.provider, payload, "id")
        status = str(payload.get("status") or "incomplete")
        logger.info(
            "Processor subscription %s created with status %s", subscription_id, status
        )
        return ProcessorSubscriptionRef(id=str(subscription_id), status=status)

    async def get_subscription_status(self, user_id: str) -> Optional[Subscription]:
        self._require_configured()
        payload = await self._backend.request("GET", f"/users/{user_id}/subscription")
        if not payload:
            return None
        return subscription_from_payload(self.provider, self._catalog, user_id, payload)


__all__ = ["CardProcessorClient"]

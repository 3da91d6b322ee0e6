"""Client for the membership marketplace (Whop) REST API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..catalog import Plan, PlanCatalog
from ..config import ProviderCredential, is_configured
from ..errors import NotConfigured
from ..subscriptions.models import Subscription
from .http import ClientFactory, ProviderTransport, require_field
from .models import CheckoutOptions, MarketplaceProduct, Provider, SessionRef
from .normalize import latest_subscription, subscription_from_payload

logger = logging.getLogger(__name__)


class MarketplaceClient:
    """Issues bearer-authenticated calls to the marketplace API.

    A client built from a placeholder credential reports ``configured=False``
    and refuses every call with :class:`NotConfigured` before touching the
    network.
    """

    provider = Provider.MARKETPLACE

    def __init__(
        self,
        credential: ProviderCredential,
        *,
        company_id: str,
        catalog: PlanCatalog,
        timeout: float = 5.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.configured = credential.configured
        self.company_id = company_id
        self._catalog = catalog
        self._transport = ProviderTransport(
            self.provider,
            base_url=credential.base_url,
            headers={
                "Authorization": f"Bearer {credential.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            client_factory=client_factory,
        )

    def describe(self) -> Dict[str, str]:
        return {
            "provider": self.provider.value,
            "base_url": self._transport.base_url,
            "configured": str(self.configured).lower(),
        }

    def _require_configured(self) -> None:
        if not self.configured:
            raise NotConfigured(self.provider)

    async def create_checkout_session(self, plan: Plan, options: CheckoutOptions) -> SessionRef:
        self._require_configured()
        body: Dict[str, Any] = {
            "product_id": plan.product_id,
            "company_id": self.company_id,
            "success_url": options.success_url,
            "cancel_url": options.cancel_url,
        }
        if options.metadata:
            body["metadata"] = dict(options.metadata)

        payload = await self._transport.request("POST", "/checkout", json=body)
        checkout_url = require_field(self.provider, payload, "checkout_url")
        logger.info(
            "Created marketplace checkout",
            extra={"plan": plan.tier.value, "product_id": plan.product_id},
        )
        return SessionRef(
            session_id=payload.get("id"),
            checkout_url=str(checkout_url),
            expires_at=payload.get("expires_at"),
        )

    async def get_subscription_status(self, user_id: str) -> Optional[Subscription]:
        """Return the most recently updated subscription the marketplace reports."""

        self._require_configured()
        payload = await self._transport.request("GET", f"/users/{user_id}/subscriptions")
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        subscriptions = [
            subscription_from_payload(self.provider, self._catalog, user_id, item)
            for item in items or []
            if isinstance(item, dict)
        ]
        return latest_subscription(subscriptions)

    async def list_products(self) -> List[MarketplaceProduct]:
        self._require_configured()
        payload = await self._transport.request("GET", f"/companies/{self.company_id}/products")
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        return [
            MarketplaceProduct.model_validate(item)
            for item in items or []
            if isinstance(item, dict) and item.get("id")
        ]

    async def validate_access(self, user_id: str, plan: Plan) -> bool:
        """Ask the marketplace whether ``user_id`` holds the plan's product."""

        self._require_configured()
        if not is_configured(plan.product_id):
            raise NotConfigured(
                self.provider,
                f"No marketplace product is configured for plan {plan.tier.value}",
            )
        payload = await self._transport.request(
            "GET", f"/users/{user_id}/access/{plan.product_id}"
        )
        return isinstance(payload, dict) and payload.get("has_access") is True


__all__ = ["MarketplaceClient"]

"""Provider identifiers, request options, and response references."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ..enums import Provider

if TYPE_CHECKING:  # pragma: no cover
    from ..subscriptions.models import Subscription


class CheckoutOptions(BaseModel):
    """Parameters forwarded to a hosted checkout."""

    success_url: str
    cancel_url: str
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class SessionRef(BaseModel):
    """Provider handle for a hosted checkout session."""

    session_id: Optional[str] = None
    checkout_url: str
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class PaymentMethodRef(BaseModel):
    """Opaque payment method created from a processor card token."""

    id: str

    model_config = ConfigDict(frozen=True)


class ProcessorSubscriptionRef(BaseModel):
    """Subscription as reported back by the processor after confirmation."""

    id: str
    status: str

    model_config = ConfigDict(frozen=True)


class MarketplaceProduct(BaseModel):
    """Product listed by the marketplace for this company."""

    id: str
    name: Optional[str] = None
    visibility: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class ProviderClient(Protocol):
    """Capabilities common to every provider client."""

    provider: Provider
    configured: bool

    async def get_subscription_status(self, user_id: str) -> Optional["Subscription"]:
        ...


__all__ = [
    "CheckoutOptions",
    "MarketplaceProduct",
    "PaymentMethodRef",
    "ProcessorSubscriptionRef",
    "Provider",
    "ProviderClient",
    "SessionRef",
]

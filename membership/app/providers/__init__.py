"""Provider clients for the card processor and the membership marketplace."""

from .card_processor import CardProcessorClient
from .http import ProviderTransport, raise_for_provider_status
from .marketplace import MarketplaceClient
from .models import (
    CheckoutOptions,
    MarketplaceProduct,
    PaymentMethodRef,
    ProcessorSubscriptionRef,
    Provider,
    ProviderClient,
    SessionRef,
)

__all__ = [
    "CardProcessorClient",
    "CheckoutOptions",
    "MarketplaceClient",
    "MarketplaceProduct",
    "PaymentMethodRef",
    "ProcessorSubscriptionRef",
    "Provider",
    "ProviderClient",
    "ProviderTransport",
    "SessionRef",
    "raise_for_provider_status",
]

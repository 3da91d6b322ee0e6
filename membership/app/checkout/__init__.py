"""Checkout routing across the configured providers."""

from .models import CheckoutSession, CheckoutStatus, PurchaseContext
from .service import CheckoutRouter

__all__ = ["CheckoutRouter", "CheckoutSession", "CheckoutStatus", "PurchaseContext"]

"""Domain models for checkout sessions and purchase attempts."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..catalog.models import PlanTier
from ..enums import Provider


class CheckoutStatus(str, Enum):
    """Lifecycle status for a checkout session."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PurchaseContext(BaseModel):
    """Caller supplied details for a single purchase attempt.

    ``card_token`` is the opaque token produced by the processor's
    client-side SDK; card numbers are never accepted here. Reuse the same
    ``idempotency_key`` when retrying an attempt so the processor does not
    charge twice.
    """

    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    card_token: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    idempotency_key: str = Field(default_factory=lambda: f"chk_{uuid4().hex}", min_length=8)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class CheckoutSession(BaseModel):
    """Provider-tracked handle for an in-progress purchase."""

    session_id: str
    plan: PlanTier
    provider: Provider
    status: CheckoutStatus = CheckoutStatus.PENDING
    redirect_url: Optional[str] = None
    user_id: Optional[str] = None
    provider_reference: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_pending(self) -> bool:
        return self.status == CheckoutStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return self.is_pending and self.expires_at is not None and now >= self.expires_at

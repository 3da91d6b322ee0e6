"""Plan and tier models for the membership catalog."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PlanTier(str, Enum):
    """Canonical identifiers for membership plans, ordered by rank."""

    STARTER = "starter"
    PRO = "pro"
    ELITE = "elite"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def satisfies(self, required: "PlanTier") -> bool:
        """Return whether this tier grants access to ``required`` content."""

        return self.rank >= required.rank


_TIER_RANKS = {PlanTier.STARTER: 1, PlanTier.PRO: 2, PlanTier.ELITE: 3}


@dataclass(frozen=True)
class Plan:
    """Describes a purchasable plan and its provider identifiers."""

    tier: PlanTier
    display_name: str
    price: int
    currency: str
    price_id: str
    product_id: str
    discord_invite: Optional[str] = None
    telegram_group: Optional[str] = None

    @property
    def display_price(self) -> str:
        symbol = _CURRENCY_SYMBOLS.get(self.currency.lower())
        if symbol:
            return f"{symbol}{self.price:,}"
        return f"{self.price:,} {self.currency.upper()}"


_CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£"}

"""Static configuration for providers, plans, and gating policy."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"YOUR_[A-Z0-9_]*_HERE")

PLAN_NAMES = ("starter", "pro", "elite")

_DEFAULT_PRICES = {"starter": 49, "pro": 99, "elite": 199}


def is_configured(value: Optional[str]) -> bool:
    """Return ``True`` when ``value`` is a real credential, not a placeholder.

    A missing or empty value, or any value containing a ``YOUR_..._HERE``
    marker, is treated as unconfigured.
    """

    if not value:
        return False
    return PLACEHOLDER_PATTERN.search(value) is None


@dataclass(frozen=True)
class ProviderCredential:
    """API key and endpoint base for a single provider."""

    api_key: str
    base_url: str

    @property
    def configured(self) -> bool:
        return is_configured(self.api_key)


@dataclass(frozen=True)
class PlanSettings:
    """Per-plan pricing and provider identifiers."""

    price: int
    price_id: str
    product_id: str
    discord_invite: Optional[str] = None
    telegram_group: Optional[str] = None


@dataclass(frozen=True)
class MembershipConfig:
    """Configuration for checkout routing and entitlement gating."""

    processor: ProviderCredential
    processor_backend_url: str
    marketplace: ProviderCredential
    marketplace_company_id: str
    currency: str
    plans: Mapping[str, PlanSettings]
    app_base_url: str
    request_timeout_seconds: float
    checkout_session_ttl_seconds: int
    session_sweep_interval_seconds: float
    session_retention_seconds: int
    past_due_grants_access: bool

    @property
    def success_url(self) -> str:
        return f"{self.app_base_url}/success"

    @property
    def cancel_url(self) -> str:
        return f"{self.app_base_url}/cancel"

    def validate(self) -> List[str]:
        """Return human readable warnings for unconfigured settings."""

        warnings: List[str] = []
        if not self.processor.configured:
            warnings.append("Stripe publishable key needs to be configured")
        if not self.marketplace.configured:
            warnings.append("Whop API key needs to be configured")
        elif not is_configured(self.marketplace_company_id):
            warnings.append("Whop company ID needs to be configured")
        for name, settings in self.plans.items():
            if self.processor.configured and not is_configured(settings.price_id):
                warnings.append(f"Stripe price ID for plan '{name}' needs to be configured")
            if self.marketplace.configured and not is_configured(settings.product_id):
                warnings.append(f"Whop product ID for plan '{name}' needs to be configured")
        return warnings


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _load_plans(env_mapping: Mapping[str, str]) -> Dict[str, PlanSettings]:
    plans: Dict[str, PlanSettings] = {}
    for name in PLAN_NAMES:
        suffix = name.upper()
        plans[name] = PlanSettings(
            price=_to_int(env_mapping.get(f"PLAN_PRICE_{suffix}"), default=_DEFAULT_PRICES[name]),
            price_id=env_mapping.get(
                f"STRIPE_PRICE_{suffix}", f"price_{name}_monthly_YOUR_PRICE_ID_HERE"
            ),
            product_id=env_mapping.get(
                f"WHOP_PRODUCT_{suffix}", f"prod_{name}_YOUR_PRODUCT_ID_HERE"
            ),
            discord_invite=env_mapping.get(
                f"DISCORD_INVITE_{suffix}", f"https://discord.gg/keeton-{name}"
            )
            or None,
            telegram_group=env_mapping.get(f"TELEGRAM_GROUP_{suffix}", f"@keeton_{name}") or None,
        )
    return plans


def load_membership_config(env: Optional[Mapping[str, str]] = None) -> MembershipConfig:
    """Load :class:`MembershipConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    processor = ProviderCredential(
        api_key=env_mapping.get(
            "STRIPE_PUBLISHABLE_KEY",
            "pk_test_51234567890abcdef_YOUR_STRIPE_PUBLISHABLE_KEY_HERE",
        ),
        base_url=env_mapping.get("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/"),
    )
    marketplace = ProviderCredential(
        api_key=env_mapping.get("WHOP_API_KEY", "whop_YOUR_API_KEY_HERE"),
        base_url=env_mapping.get("WHOP_API_BASE", "https://api.whop.com/v1").rstrip("/"),
    )

    return MembershipConfig(
        processor=processor,
        processor_backend_url=env_mapping.get(
            "BILLING_BACKEND_URL", "http://localhost:3000"
        ).rstrip("/"),
        marketplace=marketplace,
        marketplace_company_id=env_mapping.get("WHOP_COMPANY_ID", "comp_YOUR_COMPANY_ID_HERE"),
        currency=(env_mapping.get("MEMBERSHIP_CURRENCY") or "usd").strip().lower(),
        plans=_load_plans(env_mapping),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
        request_timeout_seconds=max(
            0.1, _to_float(env_mapping.get("PROVIDER_TIMEOUT_SECONDS"), default=5.0)
        ),
        checkout_session_ttl_seconds=max(
            60, _to_int(env_mapping.get("CHECKOUT_SESSION_TTL_SECONDS"), default=1800)
        ),
        session_sweep_interval_seconds=max(
            1.0, _to_float(env_mapping.get("CHECKOUT_SWEEP_INTERVAL_SECONDS"), default=60.0)
        ),
        session_retention_seconds=max(
            0, _to_int(env_mapping.get("CHECKOUT_SESSION_RETENTION_SECONDS"), default=86400)
        ),
        past_due_grants_access=_to_bool(
            env_mapping.get("PAST_DUE_GRANTS_ACCESS"), default=True
        ),
    )


__all__ = [
    "MembershipConfig",
    "PLACEHOLDER_PATTERN",
    "PLAN_NAMES",
    "PlanSettings",
    "ProviderCredential",
    "is_configured",
    "load_membership_config",
]

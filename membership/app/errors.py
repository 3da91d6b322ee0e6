"""Error taxonomy shared by checkout, reconciliation, and gating."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class MembershipError(Exception):
    """Base class for actionable failures surfaced to callers.

    Every subclass exposes a stable ``code``, the HTTP status used when the
    error crosses the API boundary, and whether the caller may retry.
    """

    code = "membership_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = dict(detail or {})

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        base: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        base.update(self.detail)
        return base

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


def _provider_name(provider: Any) -> str:
    return str(getattr(provider, "value", provider))


class ConfigurationError(MembershipError):
    """Missing or placeholder configuration; fatal to one provider path only."""

    code = "configuration_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NotConfigured(ConfigurationError):
    code = "provider_not_configured"

    def __init__(self, provider: Any, message: Optional[str] = None) -> None:
        name = _provider_name(provider)
        super().__init__(
            message or f"{name} credentials are not configured",
            detail={"provider": name},
        )
        self.provider = provider


class NoProviderConfigured(ConfigurationError):
    code = "no_provider_configured"

    def __init__(self) -> None:
        super().__init__("Checkout is unavailable: no payment provider is configured")


class ValidationError(MembershipError):
    """Bad caller input such as an unknown plan or malformed purchase details."""

    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class UnknownPlan(ValidationError, LookupError):
    code = "unknown_plan"

    def __init__(self, plan_id: object) -> None:
        super().__init__(f"Unknown plan: {plan_id}", detail={"plan_id": str(plan_id)})
        self.plan_id = plan_id


class ProviderError(MembershipError):
    """Network or HTTP failure reported by an external provider."""

    code = "provider_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        provider: Any,
        provider_status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        detail: Dict[str, Any] = {"provider": _provider_name(provider)}
        if provider_status is not None:
            detail["provider_status"] = provider_status
        super().__init__(message, detail=detail)
        self.provider = provider
        self.provider_status = provider_status
        self.body = body


class Unauthorized(ProviderError):
    code = "provider_unauthorized"
    retryable = False


class RateLimited(ProviderError):
    code = "provider_rate_limited"


class NotFound(ProviderError, LookupError):
    code = "provider_not_found"
    retryable = False


class Unreachable(ProviderError):
    code = "provider_unreachable"


class CheckoutFailed(MembershipError):
    """A provider call failed while starting a checkout."""

    code = "checkout_failed"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, reason: str, provider_error: ProviderError) -> None:
        super().__init__(
            reason,
            detail={"provider": _provider_name(provider_error.provider), "cause": provider_error.code},
        )
        self.reason = reason
        self.provider_error = provider_error
        self.retryable = provider_error.retryable


class StateConflict(MembershipError):
    """Stale or impossible lifecycle event; absorbed by the state machine."""

    code = "state_conflict"
    status_code = status.HTTP_409_CONFLICT


class SubscriptionNotFound(MembershipError, LookupError):
    code = "subscription_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str, provider: Any) -> None:
        super().__init__(
            f"No subscription for user {user_id} with {_provider_name(provider)}",
            detail={"user_id": user_id, "provider": _provider_name(provider)},
        )


class AccessDenied(MembershipError):
    code = "upgrade_required"
    status_code = status.HTTP_403_FORBIDDEN


__all__ = [
    "AccessDenied",
    "CheckoutFailed",
    "ConfigurationError",
    "MembershipError",
    "NoProviderConfigured",
    "NotConfigured",
    "NotFound",
    "ProviderError",
    "RateLimited",
    "StateConflict",
    "SubscriptionNotFound",
    "Unauthorized",
    "UnknownPlan",
    "Unreachable",
    "ValidationError",
]

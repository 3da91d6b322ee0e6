"""Answers whether a user holds at least a given membership tier."""
from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence, Union

from ..catalog import PlanCatalog, PlanTier
from ..community import InviteRef
from ..errors import AccessDenied
from ..subscriptions.models import Subscription, SubscriptionStatus
from .cache import AccessCache

logger = logging.getLogger(__name__)


class SubscriptionSource(Protocol):
    """Read access to the canonical subscriptions of a user."""

    def list_subscriptions(self, user_id: str) -> Sequence[Subscription]:
        ...


class InviteDirectory(Protocol):
    def invite_for(self, plan_id: Union[str, PlanTier]) -> InviteRef:
        ...


class AccessController:
    """Coordinates cached access decisions with lazy resolution.

    A miss resolves against the state machine's records and stores the answer
    only if no invalidation for that user happened in between. Access is
    granted by an active subscription, or a past-due one while the grace
    policy is enabled, whose tier ranks at least as high as the required one.
    """

    def __init__(
        self,
        catalog: PlanCatalog,
        subscriptions: SubscriptionSource,
        cache: AccessCache,
        invites: InviteDirectory,
        *,
        past_due_grants_access: bool = True,
    ) -> None:
        self._catalog = catalog
        self._subscriptions = subscriptions
        self._cache = cache
        self._invites = invites
        self._past_due_grants_access = past_due_grants_access

    def check_access(self, user_id: str, required: Union[str, PlanTier]) -> bool:
        tier = self._catalog.resolve(required).tier
        cached = self._cache.get(user_id, tier)
        if cached is not None:
            return cached

        generation = self._cache.generation(user_id)
        granted = any(
            self._grants(subscription, tier)
            for subscription in self._subscriptions.list_subscriptions(user_id)
        )
        if not self._cache.set(user_id, tier, granted, generation=generation):
            logger.debug("Skipped caching stale access decision for user=%s", user_id)
        return granted

    def on_access_denied(self, plan_id: Union[str, PlanTier]) -> Optional[InviteRef]:
        """Return the community target to advertise for ``plan_id``, if any."""

        invite = self._invites.invite_for(plan_id)
        return invite if invite.available else None

    def require_access(self, user_id: str, required: Union[str, PlanTier]) -> None:
        if self.check_access(user_id, required):
            return
        plan = self._catalog.resolve(required)
        invite = self.on_access_denied(plan.tier)
        raise AccessDenied(
            f"The {plan.display_name} plan or higher is required.",
            detail={
                "required_plan": plan.tier.value,
                "price": plan.display_price,
                "upgrade": invite.as_dict() if invite else None,
            },
        )

    def invalidate_user(self, user_id: str) -> None:
        self._cache.invalidate_user(user_id)

    def _grants(self, subscription: Subscription, required: PlanTier) -> bool:
        if subscription.status == SubscriptionStatus.ACTIVE:
            eligible = True
        elif subscription.status == SubscriptionStatus.PAST_DUE:
            eligible = self._past_due_grants_access
        else:
            eligible = False
        return eligible and subscription.plan.satisfies(required)


__all__ = ["AccessController", "InviteDirectory", "SubscriptionSource"]

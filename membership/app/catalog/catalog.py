"""Static catalog resolving plan identifiers to plans."""
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union

from ..config import MembershipConfig
from ..errors import UnknownPlan
from .models import Plan, PlanTier


class PlanCatalog:
    """Immutable lookup of plans by identifier."""

    def __init__(self, plans: Mapping[PlanTier, Plan]) -> None:
        missing = [tier.value for tier in PlanTier if tier not in plans]
        if missing:
            raise ValueError(f"Catalog is missing plans: {', '.join(missing)}")
        self._plans: Mapping[PlanTier, Plan] = MappingProxyType(dict(plans))

    def resolve(self, plan_id: Union[str, PlanTier]) -> Plan:
        """Return the plan for ``plan_id``, raising :class:`UnknownPlan` if absent."""

        try:
            tier = PlanTier(plan_id)
        except ValueError as exc:
            raise UnknownPlan(plan_id) from exc
        return self._plans[tier]

    def find_by_provider_id(self, identifier: str) -> Optional[Plan]:
        """Return the plan whose processor price or marketplace product id matches."""

        for plan in self._plans.values():
            if identifier in (plan.price_id, plan.product_id):
                return plan
        return None

    def plans(self) -> Tuple[Plan, ...]:
        return tuple(sorted(self._plans.values(), key=lambda plan: plan.tier.rank))

    def __contains__(self, plan_id: object) -> bool:
        try:
            PlanTier(plan_id)
        except ValueError:
            return False
        return True


def build_plan_catalog(config: MembershipConfig) -> PlanCatalog:
    """Build the catalog from the configured price and product tables."""

    plans: Dict[PlanTier, Plan] = {}
    for tier in PlanTier:
        try:
            settings = config.plans[tier.value]
        except KeyError as exc:
            raise ValueError(f"No plan settings configured for {tier.value}") from exc
        plans[tier] = Plan(
            tier=tier,
            display_name=tier.value.capitalize(),
            price=settings.price,
            currency=config.currency,
            price_id=settings.price_id,
            product_id=settings.product_id,
            discord_invite=settings.discord_invite,
            telegram_group=settings.telegram_group,
        )
    return PlanCatalog(plans)

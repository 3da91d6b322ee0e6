"""Plan catalog shared by checkout, reconciliation, and gating."""

from .catalog import PlanCatalog, build_plan_catalog
from .models import Plan, PlanTier

__all__ = [
    "Plan",
    "PlanCatalog",
    "PlanTier",
    "build_plan_catalog",
]

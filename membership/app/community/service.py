"""Community invitations granted alongside an active subscription."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from ..catalog import PlanCatalog, PlanTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InviteRef:
    """Community destinations a plan unlocks."""

    plan: PlanTier
    discord_invite: Optional[str] = None
    telegram_group: Optional[str] = None

    @property
    def available(self) -> bool:
        return bool(self.discord_invite or self.telegram_group)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "plan": self.plan.value,
            "discord_invite": self.discord_invite,
            "telegram_group": self.telegram_group,
        }


class CommunityFulfillment:
    """Hands out community invites once per (user, plan).

    Repeat grants return the recorded invite without announcing it again, so
    replayed activation events stay harmless.
    """

    def __init__(self, catalog: PlanCatalog) -> None:
        self._catalog = catalog
        self._granted: Dict[Tuple[str, PlanTier], InviteRef] = {}
        self._lock = threading.Lock()

    def invite_for(self, plan_id: Union[str, PlanTier]) -> InviteRef:
        plan = self._catalog.resolve(plan_id)
        return InviteRef(
            plan=plan.tier,
            discord_invite=plan.discord_invite,
            telegram_group=plan.telegram_group,
        )

    def grant_community_access(self, user_id: str, plan_id: Union[str, PlanTier]) -> InviteRef:
        invite = self.invite_for(plan_id)
        key = (user_id, invite.plan)
        with self._lock:
            recorded = self._granted.get(key)
            if recorded is not None:
                return recorded
            self._granted[key] = invite

        logger.info(
            "Granted %s community access to user=%s",
            invite.plan.value,
            user_id,
            extra={"discord": invite.discord_invite, "telegram": invite.telegram_group},
        )
        return invite

    def granted(self, user_id: str) -> Tuple[InviteRef, ...]:
        with self._lock:
            return tuple(invite for (owner, _), invite in self._granted.items() if owner == user_id)


__all__ = ["CommunityFulfillment", "InviteRef"]

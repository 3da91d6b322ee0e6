"""Periodic expiry of abandoned checkout sessions."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..checkout.models import CheckoutSession
from .service import SubscriptionStateMachine

LOGGER = logging.getLogger("membership.sweeper")


class SessionSweeper:
    """Expires overdue pending sessions and forgets old settled ones."""

    def __init__(
        self,
        state_machine: SubscriptionStateMachine,
        *,
        interval_seconds: float = 60.0,
        retention_seconds: int = 86400,
    ) -> None:
        self._state_machine = state_machine
        self.interval_seconds = interval_seconds
        self._retention = timedelta(seconds=retention_seconds)

    def sweep(self, now: Optional[datetime] = None) -> List[CheckoutSession]:
        expired = self._state_machine.expire_sessions(now)
        self._state_machine.prune_sessions(self._retention, now)
        return expired

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception:
                LOGGER.exception("Checkout session sweep failed")


__all__ = ["SessionSweeper"]

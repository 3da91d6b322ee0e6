"""In-process queue decoupling webhook ingress from reconciliation."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..errors import MembershipError
from .models import ReconciliationResult, SubscriptionEvent
from .service import SubscriptionStateMachine

LOGGER = logging.getLogger("membership.inbox")


class EventInbox:
    """Buffers normalized provider events for a single consumer task.

    ``put_nowait`` must be called from the event loop thread; webhook
    handlers return as soon as the event is queued.
    """

    def __init__(self, state_machine: SubscriptionStateMachine, *, maxsize: int = 10_000) -> None:
        self._state_machine = state_machine
        self._queue: "asyncio.Queue[SubscriptionEvent]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, event: SubscriptionEvent) -> bool:
        if self._closed:
            LOGGER.warning("Inbox is closed; dropping %s for user=%s", event.event_type.value, event.user_id)
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            LOGGER.warning("Inbox is full; dropping %s for user=%s", event.event_type.value, event.user_id)
            return False
        return True

    def _process(self, event: SubscriptionEvent) -> Optional[ReconciliationResult]:
        try:
            return self._state_machine.apply_event(event)
        except MembershipError as exc:
            LOGGER.warning(
                "Rejected %s for user=%s: %s",
                event.event_type.value,
                event.user_id,
                exc.message,
                extra={"error_code": exc.code},
            )
        except Exception:  # pragma: no cover - keeps the consumer alive
            LOGGER.exception("Failed to apply %s for user=%s", event.event_type.value, event.user_id)
        return None

    async def run(self) -> None:
        try:
            while not self._closed:
                event = await self._queue.get()
                try:
                    self._process(event)
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            await self.drain()
            raise

    async def drain(self) -> List[ReconciliationResult]:
        """Apply every queued event now and return the recorded outcomes."""

        results: List[ReconciliationResult] = []
        while not self._queue.empty():
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:  # pragma: no cover - race guard
                break
            try:
                result = self._process(event)
            finally:
                self._queue.task_done()
            if result is not None:
                results.append(result)
        return results

    def close(self) -> None:
        self._closed = True


__all__ = ["EventInbox"]

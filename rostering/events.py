import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Topic(StrEnum):
    SHIFT_UPDATED = "shift.updated"
    SWAP_UPDATED = "swap.updated"
    FIXED_SCHEDULE_UPDATED = "fixed_schedule.updated"


class ChangeEvent(BaseModel):
    topic: Topic
    entity_id: str
    organization_id: str | None = None


Handler = Callable[[ChangeEvent], Awaitable[None]]


class ChangeFeed:
    """
    In-process fan-out of change events to async subscribers. Publishing is
    best-effort: a failing subscriber is logged and the others still run.
    """

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    async def publish(self, *events: ChangeEvent) -> None:
        calls = [(h, e) for e in events for h in list(self._handlers)]
        results = await asyncio.gather(
            *(h(e) for h, e in calls), return_exceptions=True
        )
        for (_handler, event), result in zip(calls, results):
            if isinstance(result, Exception):
                logger.error(
                    "change feed subscriber failed for %s %s",
                    event.topic,
                    event.entity_id,
                    exc_info=result,
                )

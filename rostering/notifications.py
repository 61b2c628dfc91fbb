import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from rostering.models import Notification
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None: ...


class RepositoryNotifier:
    """Stores notifications so staff apps can list them."""

    def __init__(self, repo: ScheduleRepository) -> None:
        self.repo = repo

    async def notify(self, notification: Notification) -> None:
        self.repo.put_notification(notification)
        logger.info(
            "notification %s -> staff %s (%s)",
            notification.type,
            notification.staff_id,
            notification.correlated_entity_id,
        )


async def emit_notifications(
    notifier: Notifier, notifications: Iterable[Notification]
) -> int:
    """
    Best-effort delivery. A failed send is logged and never propagates, so
    the state transition that triggered it stands. Returns how many went out.
    """
    pending = list(notifications)
    results = await asyncio.gather(
        *(notifier.notify(n) for n in pending), return_exceptions=True
    )
    sent = 0
    for notification, result in zip(pending, results):
        if isinstance(result, Exception):
            logger.error(
                "failed to notify staff %s about %s",
                notification.staff_id,
                notification.correlated_entity_id,
                exc_info=result,
            )
        else:
            sent += 1
    return sent

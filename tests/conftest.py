from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from rostering.events import ChangeFeed
from rostering.models import Shift, ShiftStatus
from rostering.repository import ScheduleRepository

ORG = "org-123"


@pytest.fixture
def repo() -> ScheduleRepository:
    return ScheduleRepository()


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def notifier() -> AsyncMock:
    """Stands in for the notification collaborator; `notify` is awaited."""
    return AsyncMock()


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def deps(notifier, feed, now) -> dict:
    return {"notifier": notifier, "events": feed, "now_fn": lambda: now}


@pytest.fixture
def add_shift(repo: ScheduleRepository):
    """Write a shift straight to the store, bypassing workflow checks."""

    def _add(
        staff_id: str | None,
        start: datetime,
        end: datetime,
        *,
        status: ShiftStatus = ShiftStatus.ACCEPTED,
        **extra,
    ) -> Shift:
        shift = Shift(
            organization_id=ORG,
            staff_id=staff_id,
            start_time=start,
            end_time=end,
            status=status,
            **extra,
        )
        repo.put_shift(shift)
        return shift

    return _add

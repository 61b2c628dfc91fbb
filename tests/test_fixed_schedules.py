from datetime import UTC, date, datetime

import pytest

from rostering import fixed_schedules
from rostering.errors import ConflictError, NotFoundError, ValidationError
from rostering.models import (
    DurationType,
    FixedScheduleCreate,
    FixedScheduleUpdate,
    ShiftStatus,
    ShiftType,
)
from rostering.recurrence import weekday_of

ORG = "org-123"
NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


def _now() -> datetime:
    return NOW


def _create(**overrides) -> FixedScheduleCreate:
    data = {
        "organization_id": ORG,
        "facility_id": "facility-1",
        "staff_id": "alice-id",
        "shift_type": ShiftType.MORNING,
        "duration_type": DurationType.PERMANENT,
        "start_date": date(2025, 3, 1),
        "weekdays": [1, 3],  # Mon, Wed
    }
    data.update(overrides)
    return FixedScheduleCreate(**data)


@pytest.mark.asyncio
async def test_create_materializes_default_horizon(repo, feed):
    schedule, created = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    generated = repo.list_shifts(fixed_schedule_id=schedule.id)
    assert created == 18  # Mondays and Wednesdays, March and April 2025
    assert len(generated) == 18
    assert generated[0].start_time == datetime(2025, 3, 3, 7, 0, tzinfo=UTC)
    assert generated[-1].start_time == datetime(2025, 4, 30, 7, 0, tzinfo=UTC)
    assert {weekday_of(s.start_time.date()) for s in generated} == {1, 3}
    assert all(s.status == ShiftStatus.PENDING for s in generated)
    assert all(s.staff_id == "alice-id" for s in generated)


@pytest.mark.asyncio
async def test_create_without_generation(repo, feed):
    schedule, created = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now, generate_months_ahead=None
    )
    assert created == 0
    assert repo.get_fixed_schedule(schedule.id).active is True
    assert repo.list_shifts() == []


@pytest.mark.asyncio
async def test_monthly_schedule_needs_end_date(repo, feed):
    with pytest.raises(ValidationError):
        await fixed_schedules.create_fixed_schedule(
            repo,
            _create(duration_type=DurationType.MONTHLY),
            events=feed,
            now_fn=_now,
        )
    assert repo.list_fixed_schedules() == []


@pytest.mark.asyncio
async def test_conflicting_schedule_is_rejected_and_not_saved(repo, feed, add_shift):
    # alice already works Tuesday 2025-04-01 07:00-19:00 at facility F
    existing = add_shift(
        "alice-id",
        datetime(2025, 4, 1, 7, 0, tzinfo=UTC),
        datetime(2025, 4, 1, 19, 0, tzinfo=UTC),
        facility_id="facility-F",
    )

    with pytest.raises(ConflictError) as exc_info:
        await fixed_schedules.create_fixed_schedule(
            repo,
            _create(facility_id="facility-F", start_date=date(2025, 3, 25), weekdays=[2]),
            events=feed,
            now_fn=_now,
        )

    err = exc_info.value
    assert "2025-04-01" in err.message
    assert err.conflicts[0].conflicting_id == existing.id
    assert err.conflicts[0].conflicting_dates == [date(2025, 4, 1)]
    assert repo.list_fixed_schedules() == []
    assert repo.list_shifts() == [existing]


@pytest.mark.asyncio
async def test_overlapping_fixed_schedules_report_weekdays(repo, feed):
    first, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    conflicts = fixed_schedules.preview_conflicts(repo, _create(weekdays=[3, 5]))

    assert len(conflicts) == 1
    assert conflicts[0].kind == "fixed_schedule"
    assert conflicts[0].conflicting_id == first.id
    assert conflicts[0].conflicting_weekdays == [3]


@pytest.mark.asyncio
async def test_generation_is_idempotent(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    again = fixed_schedules.generate_shifts_from_fixed_schedule(
        repo, schedule.id, date(2025, 3, 1), date(2025, 4, 30)
    )
    more = fixed_schedules.generate_shifts_from_fixed_schedule(
        repo, schedule.id, date(2025, 4, 1), date(2025, 5, 31)
    )

    assert again == 0
    assert more == 8  # May only
    assert len(repo.list_shifts(fixed_schedule_id=schedule.id)) == 26


@pytest.mark.asyncio
async def test_deactivation_stops_generation_but_keeps_shifts(repo, feed):
    schedule, created = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    inactive = await fixed_schedules.deactivate_fixed_schedule(
        repo, schedule.id, events=feed, now_fn=_now
    )

    assert inactive.active is False
    assert (
        fixed_schedules.generate_shifts_from_fixed_schedule(
            repo, schedule.id, date(2025, 5, 1), date(2025, 5, 31)
        )
        == 0
    )
    assert len(repo.list_shifts(fixed_schedule_id=schedule.id)) == created


@pytest.mark.asyncio
async def test_deactivating_through_update_keeps_shifts(repo, feed):
    schedule, created = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    updated, regenerated = await fixed_schedules.update_fixed_schedule(
        repo,
        schedule.id,
        FixedScheduleUpdate(active=False),
        events=feed,
        now_fn=_now,
    )

    assert updated.active is False
    assert regenerated == 0
    assert len(repo.list_shifts(fixed_schedule_id=schedule.id)) == created == 18
    assert repo.get_fixed_schedule(schedule.id).active is False


@pytest.mark.asyncio
async def test_update_with_null_required_field_is_rejected(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    with pytest.raises(ValidationError, match="shift_type"):
        await fixed_schedules.update_fixed_schedule(
            repo,
            schedule.id,
            FixedScheduleUpdate(shift_type=None),
            events=feed,
            now_fn=_now,
        )

    assert repo.get_fixed_schedule(schedule.id).shift_type == ShiftType.MORNING
    assert len(repo.list_shifts(fixed_schedule_id=schedule.id)) == 18


@pytest.mark.asyncio
async def test_generation_skips_dates_already_booked(repo, feed, add_shift):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now, generate_months_ahead=None
    )
    manual = add_shift(
        "alice-id",
        datetime(2025, 4, 7, 6, 0, tzinfo=UTC),
        datetime(2025, 4, 7, 10, 0, tzinfo=UTC),
    )

    created = fixed_schedules.generate_shifts_from_fixed_schedule(
        repo, schedule.id, date(2025, 3, 1), date(2025, 4, 30)
    )

    assert created == 17
    booked_that_day = repo.list_shifts(
        staff_id="alice-id",
        start=datetime(2025, 4, 7, tzinfo=UTC),
        end=datetime(2025, 4, 8, tzinfo=UTC),
    )
    assert booked_that_day == [manual]


@pytest.mark.asyncio
async def test_update_regenerates_future_shifts(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    updated, created = await fixed_schedules.update_fixed_schedule(
        repo,
        schedule.id,
        FixedScheduleUpdate(weekdays=[5]),
        events=feed,
        now_fn=_now,
    )

    assert updated.weekdays == [5]
    assert created == 6  # Fridays from 2025-03-21 through April
    remaining = repo.list_shifts(fixed_schedule_id=schedule.id)
    past = [s for s in remaining if s.start_time < NOW]
    future = [s for s in remaining if s.start_time > NOW]
    assert [s.start_time.day for s in past] == [3, 5, 10, 12]
    assert {weekday_of(s.start_time.date()) for s in future} == {5}


@pytest.mark.asyncio
async def test_update_is_validated(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )
    with pytest.raises(ValidationError):
        await fixed_schedules.update_fixed_schedule(
            repo,
            schedule.id,
            FixedScheduleUpdate(duration_type=DurationType.WEEKLY),
            events=feed,
            now_fn=_now,
        )
    assert len(repo.list_shifts(fixed_schedule_id=schedule.id)) == 18


@pytest.mark.asyncio
async def test_delete_removes_future_and_detaches_past(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )

    removed = await fixed_schedules.delete_fixed_schedule(
        repo, schedule.id, events=feed, now_fn=_now
    )

    assert removed == 14
    left = repo.list_shifts(staff_id="alice-id")
    assert len(left) == 4
    assert all(s.fixed_schedule_id is None for s in left)
    with pytest.raises(NotFoundError):
        repo.get_fixed_schedule(schedule.id)


@pytest.mark.asyncio
async def test_future_shift_in_swap_survives_deletion(repo, feed):
    schedule, _ = await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now
    )
    held = repo.list_shifts(fixed_schedule_id=schedule.id)[-1]
    repo.put_shift(held.model_copy(update={"status": ShiftStatus.SWAP_REQUESTED}))

    removed = fixed_schedules.delete_future_shifts(repo, schedule.id, now=NOW)

    assert removed == 13
    assert repo.get_shift(held.id).status == ShiftStatus.SWAP_REQUESTED


@pytest.mark.asyncio
async def test_generate_for_organization_and_calendar_view(repo, feed):
    await fixed_schedules.create_fixed_schedule(
        repo, _create(), events=feed, now_fn=_now, generate_months_ahead=None
    )
    await fixed_schedules.create_fixed_schedule(
        repo,
        _create(staff_id="bob-id", shift_type=ShiftType.NIGHT, weekdays=[6]),
        events=feed,
        now_fn=_now,
        generate_months_ahead=None,
    )
    await fixed_schedules.create_fixed_schedule(
        repo,
        _create(staff_id="carol-id", active=False),
        events=feed,
        now_fn=_now,
        generate_months_ahead=None,
    )

    may = fixed_schedules.generate_shifts_for_calendar_view(repo, ORG, date(2025, 5, 20))
    assert may == 8 + 5  # alice Mon/Wed, bob Saturdays

    march = fixed_schedules.generate_shifts_for_organization(
        repo, ORG, date(2025, 3, 1), date(2025, 3, 31)
    )
    assert march == 9 + 5
    assert repo.list_shifts(staff_id="carol-id") == []

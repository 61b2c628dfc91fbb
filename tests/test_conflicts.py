from datetime import UTC, date, datetime

import pytest

from rostering.conflicts import (
    check_fixed_schedule_conflicts,
    colliding_weekdays,
    find_conflicting_shifts,
    has_conflict,
)
from rostering.models import DurationType, FixedSchedule, ShiftStatus, ShiftType


def _dt(day: int, hour: int, month: int = 3) -> datetime:
    return datetime(2025, month, day, hour, 0, tzinfo=UTC)


def _schedule(**overrides) -> FixedSchedule:
    data = {
        "organization_id": "org-123",
        "facility_id": "facility-1",
        "staff_id": "alice-id",
        "shift_type": ShiftType.MORNING,
        "duration_type": DurationType.PERMANENT,
        "start_date": date(2025, 3, 25),
        "weekdays": [2],
    }
    data.update(overrides)
    return FixedSchedule(**data)


@pytest.fixture
def booked(add_shift):
    # alice works 2025-03-10 07:00-19:00
    return add_shift("alice-id", _dt(10, 7), _dt(10, 19))


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (_dt(10, 19), _dt(11, 7)),  # starts when the shift ends
        (_dt(9, 19), _dt(10, 7)),  # ends when the shift starts
        (_dt(11, 7), _dt(11, 19)),
    ],
)
def test_touching_or_disjoint_intervals_do_not_conflict(repo, booked, start, end):
    assert has_conflict(repo, "alice-id", start, end) is False


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (_dt(10, 18), _dt(11, 7)),
        (_dt(9, 19), _dt(10, 8)),
        (_dt(10, 9), _dt(10, 10)),  # inside
        (_dt(10, 0), _dt(11, 0)),  # covers
        (_dt(10, 7), _dt(10, 19)),  # identical
    ],
)
def test_any_overlap_is_a_conflict(repo, booked, start, end):
    assert has_conflict(repo, "alice-id", start, end) is True


def test_conflict_is_per_staff_member(repo, booked):
    assert has_conflict(repo, "bob-id", _dt(10, 7), _dt(10, 19)) is False


def test_excluded_shift_does_not_conflict_with_itself(repo, booked):
    assert (
        has_conflict(repo, "alice-id", _dt(10, 8), _dt(10, 20), exclude_shift_id=booked.id)
        is False
    )


def test_declined_shift_is_not_a_commitment(repo, add_shift):
    add_shift("alice-id", _dt(10, 7), _dt(10, 19), status=ShiftStatus.DECLINED)
    assert has_conflict(repo, "alice-id", _dt(10, 7), _dt(10, 19)) is False


def test_find_conflicting_shifts_names_the_collisions(repo, booked, add_shift):
    other = add_shift("alice-id", _dt(11, 7), _dt(11, 19))
    clashes = find_conflicting_shifts(repo, "alice-id", _dt(10, 18), _dt(11, 8))
    assert [s.id for s in clashes] == [booked.id, other.id]


def test_colliding_weekdays_reports_shared_days():
    candidate = _schedule(weekdays=[1, 2, 3])
    other = _schedule(weekdays=[2, 3, 4])
    assert colliding_weekdays(candidate, other) == [2, 3]


def test_adjacent_shift_types_do_not_collide():
    morning = _schedule(weekdays=[1, 2], shift_type=ShiftType.MORNING)
    afternoon = _schedule(weekdays=[1, 2], shift_type=ShiftType.AFTERNOON)
    night = _schedule(weekdays=[0, 1, 2], shift_type=ShiftType.NIGHT)
    assert colliding_weekdays(morning, afternoon) == []
    assert colliding_weekdays(afternoon, night) == []
    assert colliding_weekdays(night, morning) == []


def test_night_spills_into_next_week():
    saturday_night = _schedule(weekdays=[6], shift_type=ShiftType.NIGHT)
    sunday_night = _schedule(weekdays=[0], shift_type=ShiftType.NIGHT)
    assert colliding_weekdays(saturday_night, saturday_night) == [6]
    assert colliding_weekdays(saturday_night, sunday_night) == []


def test_fixed_schedule_conflicts_with_active_schedule(repo):
    existing = _schedule(weekdays=[2, 4], start_date=date(2025, 1, 1))
    repo.put_fixed_schedule(existing)

    conflicts = check_fixed_schedule_conflicts(repo, _schedule(weekdays=[1, 2]))

    assert len(conflicts) == 1
    assert conflicts[0].kind == "fixed_schedule"
    assert conflicts[0].conflicting_id == existing.id
    assert conflicts[0].conflicting_weekdays == [2]
    assert conflicts[0].facility_id == "facility-1"


def test_inactive_or_disjoint_schedules_are_ignored(repo):
    repo.put_fixed_schedule(_schedule(active=False))
    repo.put_fixed_schedule(
        _schedule(
            duration_type=DurationType.MONTHLY,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 2, 28),
        )
    )
    repo.put_fixed_schedule(_schedule(staff_id="bob-id"))

    assert check_fixed_schedule_conflicts(repo, _schedule()) == []


def test_fixed_schedule_conflicts_with_existing_shift(repo, add_shift):
    # alice already works Tuesday 2025-04-01 07:00-19:00 at facility F
    shift = add_shift(
        "alice-id",
        datetime(2025, 4, 1, 7, 0, tzinfo=UTC),
        datetime(2025, 4, 1, 19, 0, tzinfo=UTC),
        facility_id="facility-F",
    )

    conflicts = check_fixed_schedule_conflicts(
        repo, _schedule(facility_id="facility-F", start_date=date(2025, 3, 25))
    )

    assert len(conflicts) == 1
    assert conflicts[0].kind == "shift"
    assert conflicts[0].conflicting_id == shift.id
    assert conflicts[0].conflicting_dates == [date(2025, 4, 1)]
    assert conflicts[0].conflicting_weekdays == [2]


def test_shift_outside_window_or_on_other_weekday_is_fine(repo, add_shift):
    add_shift("alice-id", _dt(18, 7), _dt(18, 19))  # Tuesday before start_date
    add_shift("alice-id", _dt(26, 7), _dt(26, 19))  # Wednesday
    add_shift("alice-id", _dt(25, 13), _dt(25, 17))  # Tuesday afternoon

    assert check_fixed_schedule_conflicts(repo, _schedule()) == []


def test_night_schedule_catches_early_morning_shift(repo, add_shift):
    # Monday night runs until Tuesday 07:00
    shift = add_shift("alice-id", _dt(25, 5), _dt(25, 9))
    conflicts = check_fixed_schedule_conflicts(
        repo, _schedule(shift_type=ShiftType.NIGHT, weekdays=[1], start_date=date(2025, 3, 24))
    )
    assert [c.conflicting_id for c in conflicts] == [shift.id]
    assert conflicts[0].conflicting_weekdays == [1]


def test_own_generated_shifts_are_not_conflicts(repo, add_shift):
    schedule = _schedule()
    add_shift(
        "alice-id",
        datetime(2025, 4, 1, 7, 0, tzinfo=UTC),
        datetime(2025, 4, 1, 12, 0, tzinfo=UTC),
        fixed_schedule_id=schedule.id,
    )
    assert check_fixed_schedule_conflicts(repo, schedule) == []

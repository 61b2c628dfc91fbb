"""
Double-booking checks for shifts and fixed schedules.

All intervals are half-open: a shift ending at 07:00 and another starting at
07:00 on the same day do not conflict.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from rostering.errors import ConflictError
from rostering.models import (
    SHIFT_TYPE_TIMES,
    FixedSchedule,
    ScheduleConflict,
    Shift,
    ShiftStatus,
)
from rostering.recurrence import expand, weekday_of
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and a_end > b_start


def find_conflicting_shifts(
    repo: ScheduleRepository,
    staff_id: str,
    candidate_start: datetime,
    candidate_end: datetime,
    *,
    exclude_shift_ids: Iterable[str] = (),
) -> list[Shift]:
    excluded = set(exclude_shift_ids)
    return [
        s
        for s in repo.list_shifts(
            staff_id=staff_id, start=candidate_start, end=candidate_end
        )
        # a declined shift is no longer a commitment
        if s.id not in excluded
        and s.status != ShiftStatus.DECLINED
        and overlaps(s.start_time, s.end_time, candidate_start, candidate_end)
    ]


def has_conflict(
    repo: ScheduleRepository,
    staff_id: str,
    candidate_start: datetime,
    candidate_end: datetime,
    exclude_shift_id: str | None = None,
) -> bool:
    excluded = [exclude_shift_id] if exclude_shift_id else []
    return bool(
        find_conflicting_shifts(
            repo,
            staff_id,
            candidate_start,
            candidate_end,
            exclude_shift_ids=excluded,
        )
    )


def shift_conflicts(
    shifts: Iterable[Shift], *, tz: tzinfo = UTC
) -> list[ScheduleConflict]:
    conflicts = []
    for s in shifts:
        day = s.start_time.astimezone(tz).date()
        conflicts.append(
            ScheduleConflict(
                kind="shift",
                conflicting_id=s.id,
                facility_id=s.facility_id,
                conflicting_weekdays=[weekday_of(day)],
                conflicting_dates=[day],
            )
        )
    return conflicts


def ensure_no_shift_conflict(
    repo: ScheduleRepository,
    staff_id: str,
    candidate_start: datetime,
    candidate_end: datetime,
    *,
    exclude_shift_ids: Iterable[str] = (),
    tz: tzinfo = UTC,
) -> None:
    clashes = find_conflicting_shifts(
        repo,
        staff_id,
        candidate_start,
        candidate_end,
        exclude_shift_ids=exclude_shift_ids,
    )
    if clashes:
        dates = ", ".join(
            s.start_time.astimezone(tz).date().isoformat() for s in clashes
        )
        raise ConflictError(
            f"staff {staff_id} already has a shift overlapping that time ({dates})",
            shift_conflicts(clashes, tz=tz),
        )


# fixed schedules


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _weekly_occurrences(schedule: FixedSchedule) -> list[tuple[int, int, int]]:
    """(weekday, start, end) in minutes from Sunday 00:00."""
    window = SHIFT_TYPE_TIMES[schedule.shift_type]
    start = _minutes(window.start)
    end = _minutes(window.end)
    if end <= start:
        end += MINUTES_PER_DAY
    return [
        (d, d * MINUTES_PER_DAY + start, d * MINUTES_PER_DAY + end)
        for d in sorted(set(schedule.weekdays))
    ]


def colliding_weekdays(candidate: FixedSchedule, other: FixedSchedule) -> list[int]:
    """Weekdays of `candidate` whose occurrence overlaps one of `other`'s."""
    theirs = _weekly_occurrences(other)
    hits = set()
    for weekday, start, end in _weekly_occurrences(candidate):
        for _, other_start, other_end in theirs:
            # a Saturday night runs into Sunday morning of the next week
            for offset in (-MINUTES_PER_WEEK, 0, MINUTES_PER_WEEK):
                if overlaps(start, end, other_start + offset, other_end + offset):
                    hits.add(weekday)
    return sorted(hits)


def _windows_intersect(a: FixedSchedule, b: FixedSchedule) -> bool:
    a_end = a.end_date or date.max
    b_end = b.end_date or date.max
    return a.start_date <= b_end and b.start_date <= a_end


def check_fixed_schedule_conflicts(
    repo: ScheduleRepository,
    candidate: FixedSchedule,
    *,
    tz: tzinfo = UTC,
) -> list[ScheduleConflict]:
    """
    Conflicts a fixed schedule would create for its staff member.

    Reports other active fixed schedules whose recurrence collides on a
    shared weekday, and existing shifts inside the schedule window that an
    occurrence would overlap. Shifts generated by the candidate itself, or by
    a schedule already reported, are not reported again.
    """
    conflicts: list[ScheduleConflict] = []
    reported: set[str] = {candidate.id}

    for other in repo.list_fixed_schedules(
        staff_id=candidate.staff_id, active=True
    ):
        if other.id == candidate.id or not _windows_intersect(candidate, other):
            continue
        weekdays = colliding_weekdays(candidate, other)
        if weekdays:
            reported.add(other.id)
            conflicts.append(
                ScheduleConflict(
                    kind="fixed_schedule",
                    conflicting_id=other.id,
                    facility_id=other.facility_id,
                    conflicting_weekdays=weekdays,
                )
            )

    window_start = datetime.combine(
        candidate.start_date - timedelta(days=1), time.min, tzinfo=tz
    )
    window_end = None
    if candidate.end_date is not None:
        window_end = datetime.combine(
            candidate.end_date + timedelta(days=2), time.min, tzinfo=tz
        )

    for shift in repo.list_shifts(
        staff_id=candidate.staff_id, start=window_start, end=window_end
    ):
        if shift.status == ShiftStatus.DECLINED:
            continue
        if shift.fixed_schedule_id is not None and shift.fixed_schedule_id in reported:
            continue
        day = shift.start_time.astimezone(tz).date()
        hits = [
            d
            for d in expand(
                candidate, day - timedelta(days=1), day + timedelta(days=1), tz=tz
            )
            if overlaps(d.start_time, d.end_time, shift.start_time, shift.end_time)
        ]
        if hits:
            conflicts.append(
                ScheduleConflict(
                    kind="shift",
                    conflicting_id=shift.id,
                    facility_id=shift.facility_id,
                    conflicting_weekdays=sorted({weekday_of(d.shift_date) for d in hits}),
                    conflicting_dates=[day],
                )
            )

    if conflicts:
        logger.info(
            "fixed schedule %s for staff %s has %d conflict(s)",
            candidate.id,
            candidate.staff_id,
            len(conflicts),
        )
    return conflicts

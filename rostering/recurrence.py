from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from rostering.errors import ValidationError
from rostering.models import (
    SHIFT_TYPE_TIMES,
    DurationType,
    FixedSchedule,
    ShiftDraft,
)


def weekday_of(day: date) -> int:
    """Weekday with Sunday=0 ... Saturday=6."""
    return day.isoweekday() % 7


def daterange(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


def shift_window(
    day: date, start: time, end: time, *, tz: tzinfo = UTC
) -> tuple[datetime, datetime]:
    """
    Concrete [start, end) for a shift on `day`. An end time at or before the
    start time rolls over to the following day.
    """
    start_dt = datetime.combine(day, start, tzinfo=tz)
    end_dt = datetime.combine(day, end, tzinfo=tz)
    if end_dt <= start_dt:
        end_dt = datetime.combine(day + timedelta(days=1), end, tzinfo=tz)
    return start_dt, end_dt


def validate_fixed_schedule(schedule: FixedSchedule) -> None:
    if not schedule.weekdays:
        raise ValidationError("select at least one weekday")
    if any(d < 0 or d > 6 for d in schedule.weekdays):
        raise ValidationError("weekdays must be between 0 (Sunday) and 6")
    if schedule.duration_type != DurationType.PERMANENT and not schedule.end_date:
        raise ValidationError(
            "end_date is required unless duration_type is permanent"
        )
    if schedule.end_date is not None and schedule.end_date <= schedule.start_date:
        raise ValidationError("end_date must be after start_date")


def expand(
    schedule: FixedSchedule,
    horizon_start: date,
    horizon_end: date,
    *,
    tz: tzinfo = UTC,
) -> list[ShiftDraft]:
    """
    One draft per date of the schedule window clipped to the horizon whose
    weekday is selected. Does not dedupe against shifts already generated.
    """
    first = max(schedule.start_date, horizon_start)
    last = horizon_end
    if schedule.end_date is not None:
        last = min(schedule.end_date, horizon_end)
    if last < first:
        return []

    window = SHIFT_TYPE_TIMES[schedule.shift_type]
    weekdays = set(schedule.weekdays)

    drafts = []
    for day in daterange(first, last):
        if weekday_of(day) not in weekdays:
            continue
        start_time, end_time = shift_window(day, window.start, window.end, tz=tz)
        drafts.append(
            ShiftDraft(
                fixed_schedule_id=schedule.id,
                organization_id=schedule.organization_id,
                facility_id=schedule.facility_id,
                sector_id=schedule.sector_id,
                staff_id=schedule.staff_id,
                shift_date=day,
                start_time=start_time,
                end_time=end_time,
            )
        )
    return drafts


def month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return first, last


def default_generation_horizon(
    today: date, months_ahead: int = 1
) -> tuple[date, date]:
    """From the start of this month to the end of the month `months_ahead` on."""
    start, _ = month_bounds(today)
    _, end = month_bounds(today + relativedelta(months=months_ahead))
    return start, end

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, tzinfo

from pydantic import ValidationError as PydanticValidationError

from rostering.conflicts import check_fixed_schedule_conflicts, find_conflicting_shifts
from rostering.errors import ConflictError, ValidationError
from rostering.events import ChangeEvent, ChangeFeed, Topic
from rostering.models import (
    FixedSchedule,
    FixedScheduleCreate,
    FixedScheduleUpdate,
    ScheduleConflict,
    Shift,
    ShiftStatus,
)
from rostering.recurrence import (
    default_generation_horizon,
    expand,
    month_bounds,
    validate_fixed_schedule,
)
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]


def _changed(schedule: FixedSchedule) -> ChangeEvent:
    return ChangeEvent(
        topic=Topic.FIXED_SCHEDULE_UPDATED,
        entity_id=schedule.id,
        organization_id=schedule.organization_id,
    )


def _ensure_no_conflicts(
    repo: ScheduleRepository, schedule: FixedSchedule, tz: tzinfo
) -> None:
    conflicts = check_fixed_schedule_conflicts(repo, schedule, tz=tz)
    if conflicts:
        raise ConflictError(_describe(conflicts), conflicts)


def _describe(conflicts: list[ScheduleConflict]) -> str:
    parts = []
    for c in conflicts:
        if c.kind == "shift":
            dates = ", ".join(d.isoformat() for d in c.conflicting_dates)
            parts.append(f"shift {c.conflicting_id} on {dates}")
        else:
            days = ", ".join(str(d) for d in c.conflicting_weekdays)
            parts.append(f"fixed schedule {c.conflicting_id} on weekdays {days}")
    return "schedule conflicts with " + "; ".join(parts)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"])
    return f"{field}: {error['msg']}" if field else error["msg"]


def preview_conflicts(
    repo: ScheduleRepository, data: FixedScheduleCreate, *, tz: tzinfo = UTC
) -> list[ScheduleConflict]:
    """Conflicts a schedule would have, without creating it."""
    schedule = FixedSchedule(**data.model_dump())
    validate_fixed_schedule(schedule)
    return check_fixed_schedule_conflicts(repo, schedule, tz=tz)


async def create_fixed_schedule(
    repo: ScheduleRepository,
    data: FixedScheduleCreate,
    *,
    events: ChangeFeed,
    now_fn: NowFn,
    tz: tzinfo = UTC,
    generate_months_ahead: int | None = 1,
) -> tuple[FixedSchedule, int]:
    """
    Validate, conflict-check and persist a fixed schedule. When
    `generate_months_ahead` is set, shifts are materialized right away for the
    default horizon. Returns the schedule and the number of shifts created.
    """
    now = now_fn()
    schedule = FixedSchedule(**data.model_dump(), created_at=now, updated_at=now)
    validate_fixed_schedule(schedule)

    with repo.transaction():
        _ensure_no_conflicts(repo, schedule, tz)
        repo.put_fixed_schedule(schedule)
        created = 0
        if schedule.active and generate_months_ahead is not None:
            start, end = default_generation_horizon(
                now.astimezone(tz).date(), generate_months_ahead
            )
            created = _materialize(repo, schedule, start, end, tz=tz)

    logger.info(
        "created fixed schedule %s for staff %s (%d shift(s))",
        schedule.id,
        schedule.staff_id,
        created,
    )
    await events.publish(_changed(schedule))
    return schedule, created


async def update_fixed_schedule(
    repo: ScheduleRepository,
    schedule_id: str,
    changes: FixedScheduleUpdate,
    *,
    events: ChangeFeed,
    now_fn: NowFn,
    tz: tzinfo = UTC,
    generate_months_ahead: int | None = 1,
) -> tuple[FixedSchedule, int]:
    """
    Apply changes and, while the schedule stays active, replace its future
    generated shifts with ones following the new rules. An update that
    leaves the schedule inactive keeps generated shifts, like deactivation.
    """
    now = now_fn()
    with repo.transaction():
        current = repo.get_fixed_schedule(schedule_id)
        merged = {
            **current.model_dump(),
            **changes.model_dump(exclude_unset=True),
            "updated_at": now,
        }
        # re-run field validation on the merged values
        try:
            updated = FixedSchedule.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(_first_error(exc)) from exc
        validate_fixed_schedule(updated)

        removed = 0
        if updated.active:
            removed = delete_future_shifts(repo, schedule_id, now=now)
            _ensure_no_conflicts(repo, updated, tz)
        repo.put_fixed_schedule(updated)

        created = 0
        if updated.active and generate_months_ahead is not None:
            start, end = default_generation_horizon(
                now.astimezone(tz).date(), generate_months_ahead
            )
            created = _materialize(
                repo, updated, max(start, now.astimezone(tz).date()), end, tz=tz
            )

    logger.info(
        "updated fixed schedule %s (removed %d, created %d future shift(s))",
        schedule_id,
        removed,
        created,
    )
    await events.publish(_changed(updated))
    return updated, created


async def deactivate_fixed_schedule(
    repo: ScheduleRepository,
    schedule_id: str,
    *,
    events: ChangeFeed,
    now_fn: NowFn,
) -> FixedSchedule:
    # already generated shifts are left in place
    schedule = repo.get_fixed_schedule(schedule_id)
    if not schedule.active:
        return schedule
    schedule = schedule.model_copy(update={"active": False, "updated_at": now_fn()})
    repo.put_fixed_schedule(schedule)
    logger.info("deactivated fixed schedule %s", schedule_id)
    await events.publish(_changed(schedule))
    return schedule


async def delete_fixed_schedule(
    repo: ScheduleRepository,
    schedule_id: str,
    *,
    events: ChangeFeed,
    now_fn: NowFn,
) -> int:
    """
    Delete a fixed schedule with its future shifts. Past shifts stay as
    history, detached from the schedule. Returns shifts deleted.
    """
    now = now_fn()
    with repo.transaction():
        schedule = repo.get_fixed_schedule(schedule_id)
        removed = delete_future_shifts(repo, schedule_id, now=now)
        for shift in repo.list_shifts(fixed_schedule_id=schedule_id):
            repo.put_shift(shift.model_copy(update={"fixed_schedule_id": None}))
        repo.delete_fixed_schedule(schedule_id)

    logger.info("deleted fixed schedule %s (%d future shift(s))", schedule_id, removed)
    await events.publish(_changed(schedule))
    return removed


def delete_future_shifts(
    repo: ScheduleRepository, schedule_id: str, *, now: datetime
) -> int:
    """
    Delete shifts generated by a schedule that start after `now`. Shifts with
    a swap in progress are kept so the swap can still be settled.
    """
    removed = 0
    for shift in repo.list_shifts(fixed_schedule_id=schedule_id, start=now):
        if shift.start_time <= now or shift.status == ShiftStatus.SWAP_REQUESTED:
            continue
        repo.delete_shift(shift.id)
        removed += 1
    return removed


def _materialize(
    repo: ScheduleRepository,
    schedule: FixedSchedule,
    start: date,
    end: date,
    *,
    tz: tzinfo,
) -> int:
    if not schedule.active:
        return 0

    existing = {
        s.start_time.astimezone(tz).date()
        for s in repo.list_shifts(fixed_schedule_id=schedule.id)
    }
    created = 0
    for draft in expand(schedule, start, end, tz=tz):
        if draft.shift_date in existing:
            continue
        if find_conflicting_shifts(
            repo, draft.staff_id, draft.start_time, draft.end_time
        ):
            logger.warning(
                "skipping %s from fixed schedule %s: staff %s is already booked",
                draft.shift_date,
                schedule.id,
                draft.staff_id,
            )
            continue
        repo.put_shift(
            Shift(
                organization_id=draft.organization_id,
                facility_id=draft.facility_id,
                sector_id=draft.sector_id,
                staff_id=draft.staff_id,
                start_time=draft.start_time,
                end_time=draft.end_time,
                status=ShiftStatus.PENDING,
                fixed_schedule_id=schedule.id,
            )
        )
        created += 1
    return created


def generate_shifts_from_fixed_schedule(
    repo: ScheduleRepository,
    schedule_id: str,
    start: date,
    end: date,
    *,
    tz: tzinfo = UTC,
) -> int:
    """Materialize one schedule over [start, end]. Safe to call repeatedly."""
    with repo.transaction():
        schedule = repo.get_fixed_schedule(schedule_id)
        created = _materialize(repo, schedule, start, end, tz=tz)
    logger.info(
        "generated %d shift(s) from fixed schedule %s for %s..%s",
        created,
        schedule_id,
        start,
        end,
    )
    return created


def generate_shifts_for_organization(
    repo: ScheduleRepository,
    organization_id: str,
    start: date,
    end: date,
    *,
    tz: tzinfo = UTC,
) -> int:
    with repo.transaction():
        created = sum(
            _materialize(repo, schedule, start, end, tz=tz)
            for schedule in repo.list_fixed_schedules(
                organization_id=organization_id, active=True
            )
        )
    logger.info(
        "generated %d shift(s) for organization %s for %s..%s",
        created,
        organization_id,
        start,
        end,
    )
    return created


def generate_shifts_for_calendar_view(
    repo: ScheduleRepository,
    organization_id: str,
    view_date: date,
    *,
    tz: tzinfo = UTC,
) -> int:
    """Fill in the month a calendar is looking at."""
    start, end = month_bounds(view_date)
    return generate_shifts_for_organization(repo, organization_id, start, end, tz=tz)

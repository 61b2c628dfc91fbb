"""
Dated shift assignments and their status machine.

    pending --> accepted | declined
    accepted --> swap_requested --> accepted

Staff only answer pending shifts; a shift in swap_requested is released by
the swap workflow alone (decline, cancel, reject or approve).

Open shifts (no staff_id) sit outside the machine until someone is assigned.
Every write to a shift's staff_id or status is a conditional update against
the value read, so a concurrent editor cannot be silently overwritten.
"""

import logging
from datetime import UTC, datetime, tzinfo

from rostering.conflicts import ensure_no_shift_conflict
from rostering.errors import PreconditionError, ValidationError
from rostering.events import ChangeEvent, ChangeFeed, Topic
from rostering.models import Sector, SectorCreate, Shift, ShiftCreate, ShiftStatus
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ShiftStatus, frozenset[ShiftStatus]] = {
    ShiftStatus.PENDING: frozenset({ShiftStatus.ACCEPTED, ShiftStatus.DECLINED}),
    ShiftStatus.ACCEPTED: frozenset({ShiftStatus.SWAP_REQUESTED}),
    ShiftStatus.SWAP_REQUESTED: frozenset({ShiftStatus.ACCEPTED}),
    ShiftStatus.DECLINED: frozenset(),
}


def can_transition(current: ShiftStatus, target: ShiftStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(shift: Shift, target: ShiftStatus) -> Shift:
    if shift.is_open:
        raise PreconditionError(f"shift {shift.id} has no staff assigned")
    if not can_transition(shift.status, target):
        raise PreconditionError(
            f"shift {shift.id} cannot move from {shift.status} to {target}"
        )
    return shift.model_copy(update={"status": target})


def validate_shift_times(start_time: datetime, end_time: datetime) -> None:
    if start_time.tzinfo is None or end_time.tzinfo is None:
        raise ValidationError("shift times must include a UTC offset")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")


def _changed(shift: Shift) -> ChangeEvent:
    return ChangeEvent(
        topic=Topic.SHIFT_UPDATED,
        entity_id=shift.id,
        organization_id=shift.organization_id,
    )


# sectors


def create_sector(repo: ScheduleRepository, data: SectorCreate) -> Sector:
    sector = Sector(**data.model_dump())
    repo.put_sector(sector)
    return sector


def delete_sector(repo: ScheduleRepository, sector_id: str) -> int:
    """Delete a sector and detach it from its shifts. Returns shifts touched."""
    with repo.transaction():
        repo.get_sector(sector_id)
        shifts = repo.list_shifts(sector_id=sector_id)
        for shift in shifts:
            repo.put_shift(shift.model_copy(update={"sector_id": None}))
        repo.delete_sector(sector_id)
    logger.info("deleted sector %s, detached %d shift(s)", sector_id, len(shifts))
    return len(shifts)


# shifts


async def create_shift(
    repo: ScheduleRepository,
    data: ShiftCreate,
    *,
    events: ChangeFeed,
    tz: tzinfo = UTC,
) -> Shift:
    validate_shift_times(data.start_time, data.end_time)
    shift = Shift(**data.model_dump(), status=ShiftStatus.PENDING)

    with repo.transaction():
        if shift.staff_id is not None:
            ensure_no_shift_conflict(
                repo, shift.staff_id, shift.start_time, shift.end_time, tz=tz
            )
        repo.put_shift(shift)

    await events.publish(_changed(shift))
    return shift


async def respond_to_shift(
    repo: ScheduleRepository,
    shift_id: str,
    staff_id: str,
    *,
    accept: bool,
    events: ChangeFeed,
) -> Shift:
    target = ShiftStatus.ACCEPTED if accept else ShiftStatus.DECLINED

    shift = repo.get_shift(shift_id)
    if shift.staff_id != staff_id:
        raise PreconditionError(f"shift {shift_id} is not assigned to {staff_id}")
    if shift.status == ShiftStatus.SWAP_REQUESTED:
        raise PreconditionError(f"shift {shift_id} has a swap in progress")
    if shift.status == target:
        return shift

    updated = transition(shift, target)
    if not repo.update_shift_if(
        updated,
        lambda cur: cur.staff_id == staff_id and cur.status == shift.status,
    ):
        raise PreconditionError(f"shift {shift_id} changed while responding")

    logger.info("staff %s %s shift %s", staff_id, target, shift_id)
    await events.publish(_changed(updated))
    return updated


async def assign_staff(
    repo: ScheduleRepository,
    shift_id: str,
    staff_id: str | None,
    *,
    expected_staff_id: str | None,
    events: ChangeFeed,
    tz: tzinfo = UTC,
) -> Shift:
    """
    Put `staff_id` on a shift (or open it with None), provided the shift is
    still held by `expected_staff_id`. The new assignee starts at pending.
    """
    with repo.transaction():
        shift = repo.get_shift(shift_id)
        if shift.status == ShiftStatus.SWAP_REQUESTED:
            raise PreconditionError(f"shift {shift_id} has a swap in progress")
        if shift.staff_id != expected_staff_id:
            raise PreconditionError(
                f"shift {shift_id} is no longer assigned to {expected_staff_id}"
            )
        if staff_id is not None:
            ensure_no_shift_conflict(
                repo,
                staff_id,
                shift.start_time,
                shift.end_time,
                exclude_shift_ids=[shift.id],
                tz=tz,
            )

        updated = shift.model_copy(
            update={"staff_id": staff_id, "status": ShiftStatus.PENDING}
        )
        if not repo.update_shift_if(
            updated,
            lambda cur: cur.staff_id == expected_staff_id
            and cur.status != ShiftStatus.SWAP_REQUESTED,
        ):
            raise PreconditionError(f"shift {shift_id} changed while assigning")

    logger.info(
        "shift %s reassigned %s -> %s", shift_id, expected_staff_id, staff_id
    )
    await events.publish(_changed(updated))
    return updated


async def reschedule_shift(
    repo: ScheduleRepository,
    shift_id: str,
    start_time: datetime,
    end_time: datetime,
    *,
    events: ChangeFeed,
    tz: tzinfo = UTC,
) -> Shift:
    validate_shift_times(start_time, end_time)

    with repo.transaction():
        shift = repo.get_shift(shift_id)
        if shift.staff_id is not None:
            ensure_no_shift_conflict(
                repo,
                shift.staff_id,
                start_time,
                end_time,
                exclude_shift_ids=[shift.id],
                tz=tz,
            )
        updated = shift.model_copy(
            update={"start_time": start_time, "end_time": end_time}
        )
        if not repo.update_shift_if(
            updated, lambda cur: cur.staff_id == shift.staff_id
        ):
            raise PreconditionError(f"shift {shift_id} changed while rescheduling")

    await events.publish(_changed(updated))
    return updated


async def delete_shift(
    repo: ScheduleRepository, shift_id: str, *, events: ChangeFeed
) -> None:
    # swap requests keep their shift ids as history
    shift = repo.get_shift(shift_id)
    repo.delete_shift(shift_id)
    logger.info("deleted shift %s", shift_id)
    await events.publish(_changed(shift))

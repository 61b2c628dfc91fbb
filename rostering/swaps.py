"""
Shift swap requests: requester -> target staff -> admin.

| step            | status              | admin_status                    |
|-----------------|---------------------|---------------------------------|
| created         | pending             | pending_staff                   |
| target responds | accepted / declined | pending_admin / (pending_staff) |
| admin responds  | unchanged           | admin_approved / admin_rejected |

The requester may cancel while the target has not answered. While a
request is open both of its shifts sit in `swap_requested`, which blocks
other swap requests and direct reassignment of either shift. Approval
exchanges the two staff_ids inside one transaction guarded by a conditional
update on admin_status, so the exchange happens at most once.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from typing import NamedTuple

from rostering.conflicts import find_conflicting_shifts, shift_conflicts
from rostering.errors import (
    ConflictError,
    PreconditionError,
    StaleSwapError,
    ValidationError,
)
from rostering.events import ChangeEvent, ChangeFeed, Topic
from rostering.models import (
    AdminSwapStatus,
    Notification,
    NotificationType,
    Shift,
    ShiftStatus,
    ShiftSwapRequest,
    SwapRequestCreate,
    SwapStatus,
)
from rostering.notifications import Notifier, emit_notifications
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]


class SwapOutcome(NamedTuple):
    swap: ShiftSwapRequest
    applied: bool  # False when the call found the request already settled


def _events(swap: ShiftSwapRequest, *shifts: Shift) -> list[ChangeEvent]:
    events = [
        ChangeEvent(
            topic=Topic.SWAP_UPDATED,
            entity_id=swap.id,
            organization_id=swap.organization_id,
        )
    ]
    events.extend(
        ChangeEvent(
            topic=Topic.SHIFT_UPDATED,
            entity_id=s.id,
            organization_id=s.organization_id,
        )
        for s in shifts
    )
    return events


def _notification(
    swap: ShiftSwapRequest,
    staff_id: str,
    type_: NotificationType,
    title: str,
    body: str,
) -> Notification:
    return Notification(
        organization_id=swap.organization_id,
        staff_id=staff_id,
        type=type_,
        title=title,
        body=body,
        correlated_entity_id=swap.id,
    )


def _set_status(
    repo: ScheduleRepository, shift: Shift, expected: ShiftStatus, target: ShiftStatus
) -> Shift:
    updated = shift.model_copy(update={"status": target})
    if not repo.update_shift_if(
        updated,
        lambda cur: cur.status == expected and cur.staff_id == shift.staff_id,
    ):
        raise PreconditionError(f"shift {shift.id} changed concurrently")
    return updated


def _release_shifts(repo: ScheduleRepository, swap: ShiftSwapRequest) -> list[Shift]:
    """Put the request's shifts back to accepted if they are still held by it."""
    released = []
    for shift_id in (swap.original_shift_id, swap.target_shift_id):
        shift = repo.find_shift(shift_id)
        if shift is None or shift.status != ShiftStatus.SWAP_REQUESTED:
            continue
        released.append(
            _set_status(
                repo, shift, ShiftStatus.SWAP_REQUESTED, ShiftStatus.ACCEPTED
            )
        )
    return released


async def request_swap(
    repo: ScheduleRepository,
    data: SwapRequestCreate,
    *,
    notifier: Notifier,
    events: ChangeFeed,
    now_fn: NowFn,
) -> ShiftSwapRequest:
    if data.requester_id == data.target_staff_id:
        raise ValidationError("cannot request a swap with yourself")
    if data.original_shift_id == data.target_shift_id:
        raise ValidationError("original and target shift must differ")

    with repo.transaction():
        original = repo.get_shift(data.original_shift_id)
        target = repo.get_shift(data.target_shift_id)

        if original.staff_id != data.requester_id:
            raise ValidationError(
                f"shift {original.id} does not belong to {data.requester_id}"
            )
        if target.staff_id != data.target_staff_id:
            raise ValidationError(
                f"shift {target.id} does not belong to {data.target_staff_id}"
            )
        if original.organization_id != target.organization_id:
            raise ValidationError("shifts belong to different organizations")

        for shift in (original, target):
            if shift.status == ShiftStatus.SWAP_REQUESTED:
                raise PreconditionError(
                    f"shift {shift.id} already has a swap in progress"
                )
            if shift.status != ShiftStatus.ACCEPTED:
                raise PreconditionError(
                    f"shift {shift.id} must be accepted before it can be swapped"
                )

        original = _set_status(
            repo, original, ShiftStatus.ACCEPTED, ShiftStatus.SWAP_REQUESTED
        )
        target = _set_status(
            repo, target, ShiftStatus.ACCEPTED, ShiftStatus.SWAP_REQUESTED
        )

        swap = ShiftSwapRequest(
            organization_id=original.organization_id,
            requester_id=data.requester_id,
            target_staff_id=data.target_staff_id,
            original_shift_id=original.id,
            target_shift_id=target.id,
            requester_notes=data.requester_notes or None,
            created_at=now_fn(),
        )
        repo.put_swap(swap)

    logger.info(
        "swap %s requested: %s (%s) <-> %s (%s)",
        swap.id,
        swap.requester_id,
        swap.original_shift_id,
        swap.target_staff_id,
        swap.target_shift_id,
    )
    await emit_notifications(
        notifier,
        [
            _notification(
                swap,
                swap.target_staff_id,
                NotificationType.SHIFT_SWAP_REQUEST,
                "Shift swap request",
                "A colleague asked to swap shifts with you.",
            )
        ],
    )
    await events.publish(*_events(swap, original, target))
    return swap


async def respond_to_swap(
    repo: ScheduleRepository,
    swap_id: str,
    staff_id: str,
    *,
    accept: bool,
    notes: str | None = None,
    notifier: Notifier,
    events: ChangeFeed,
    now_fn: NowFn,
) -> SwapOutcome:
    """Target staff accepts (hand off to an admin) or declines (terminal)."""
    wanted = SwapStatus.ACCEPTED if accept else SwapStatus.DECLINED

    with repo.transaction():
        swap = repo.get_swap(swap_id)
        if swap.target_staff_id != staff_id:
            raise PreconditionError(
                f"only {swap.target_staff_id} can respond to swap {swap_id}"
            )
        if swap.status == wanted:
            return SwapOutcome(swap, applied=False)
        if (
            swap.status != SwapStatus.PENDING
            or swap.admin_status != AdminSwapStatus.PENDING_STAFF
        ):
            raise PreconditionError(f"swap {swap_id} is already {swap.status}")

        updated = swap.model_copy(
            update={
                "status": wanted,
                "admin_status": (
                    AdminSwapStatus.PENDING_ADMIN
                    if accept
                    else AdminSwapStatus.PENDING_STAFF
                ),
                "responder_notes": notes or None,
                "responded_at": now_fn(),
            }
        )
        if not repo.update_swap_if(
            updated,
            lambda cur: cur.status == SwapStatus.PENDING
            and cur.admin_status == AdminSwapStatus.PENDING_STAFF,
        ):
            raise PreconditionError(f"swap {swap_id} changed concurrently")

        released = [] if accept else _release_shifts(repo, updated)

    logger.info("swap %s %s by %s", swap_id, wanted, staff_id)
    if accept:
        note = _notification(
            updated,
            updated.requester_id,
            NotificationType.SHIFT_SWAP_ACCEPTED,
            "Shift swap accepted",
            "Your swap request was accepted and is waiting for admin approval.",
        )
    else:
        note = _notification(
            updated,
            updated.requester_id,
            NotificationType.SHIFT_SWAP_DECLINED,
            "Shift swap declined",
            "Your swap request was declined.",
        )
    await emit_notifications(notifier, [note])
    await events.publish(*_events(updated, *released))
    return SwapOutcome(updated, applied=True)


async def cancel_swap(
    repo: ScheduleRepository,
    swap_id: str,
    requester_id: str,
    *,
    notifier: Notifier,
    events: ChangeFeed,
) -> SwapOutcome:
    with repo.transaction():
        swap = repo.get_swap(swap_id)
        if swap.requester_id != requester_id:
            raise PreconditionError(
                f"only {swap.requester_id} can cancel swap {swap_id}"
            )
        if swap.status == SwapStatus.CANCELLED:
            return SwapOutcome(swap, applied=False)
        if swap.status != SwapStatus.PENDING:
            raise PreconditionError(f"swap {swap_id} is already {swap.status}")

        updated = swap.model_copy(update={"status": SwapStatus.CANCELLED})
        if not repo.update_swap_if(
            updated, lambda cur: cur.status == SwapStatus.PENDING
        ):
            raise PreconditionError(f"swap {swap_id} changed concurrently")
        released = _release_shifts(repo, updated)

    logger.info("swap %s cancelled by %s", swap_id, requester_id)
    await emit_notifications(
        notifier,
        [
            _notification(
                updated,
                updated.target_staff_id,
                NotificationType.SHIFT_SWAP_CANCELLED,
                "Shift swap cancelled",
                "The swap request sent to you was withdrawn.",
            )
        ],
    )
    await events.publish(*_events(updated, *released))
    return SwapOutcome(updated, applied=True)


def _check_exchange(
    repo: ScheduleRepository,
    swap: ShiftSwapRequest,
    original: Shift,
    target: Shift,
    tz: tzinfo,
) -> None:
    if original.staff_id != swap.requester_id:
        raise StaleSwapError(
            f"shift {original.id} is no longer assigned to {swap.requester_id}"
        )
    if target.staff_id != swap.target_staff_id:
        raise StaleSwapError(
            f"shift {target.id} is no longer assigned to {swap.target_staff_id}"
        )

    both = [original.id, target.id]
    clashes = find_conflicting_shifts(
        repo,
        swap.target_staff_id,
        original.start_time,
        original.end_time,
        exclude_shift_ids=both,
    ) + find_conflicting_shifts(
        repo,
        swap.requester_id,
        target.start_time,
        target.end_time,
        exclude_shift_ids=both,
    )
    if clashes:
        raise ConflictError(
            f"swap {swap.id} would double-book a staff member",
            shift_conflicts(clashes, tz=tz),
        )


async def approve_swap(
    repo: ScheduleRepository,
    swap_id: str,
    admin_id: str,
    notes: str | None = None,
    *,
    notifier: Notifier,
    events: ChangeFeed,
    now_fn: NowFn,
    tz: tzinfo = UTC,
) -> SwapOutcome:
    """
    Exchange the staff of both shifts and mark the request approved, all or
    nothing. Approving an already approved request returns it unchanged.
    """
    with repo.transaction():
        swap = repo.get_swap(swap_id)
        if swap.admin_status == AdminSwapStatus.ADMIN_APPROVED:
            logger.info("swap %s already approved, nothing to do", swap_id)
            return SwapOutcome(swap, applied=False)
        if swap.admin_status != AdminSwapStatus.PENDING_ADMIN:
            raise PreconditionError(
                f"swap {swap_id} is {swap.admin_status}, not pending_admin"
            )

        approved = swap.model_copy(
            update={
                "admin_status": AdminSwapStatus.ADMIN_APPROVED,
                "admin_id": admin_id,
                "admin_notes": notes or None,
                "admin_responded_at": now_fn(),
            }
        )
        # claim first: a second approver fails here and changes nothing
        if not repo.update_swap_if(
            approved,
            lambda cur: cur.admin_status == AdminSwapStatus.PENDING_ADMIN,
        ):
            raise PreconditionError(f"swap {swap_id} was settled concurrently")

        original = repo.find_shift(swap.original_shift_id)
        target = repo.find_shift(swap.target_shift_id)
        if original is None or target is None:
            raise StaleSwapError(f"a shift of swap {swap_id} no longer exists")
        _check_exchange(repo, swap, original, target, tz)

        exchanged = [
            original.model_copy(
                update={
                    "staff_id": swap.target_staff_id,
                    "status": ShiftStatus.ACCEPTED,
                }
            ),
            target.model_copy(
                update={
                    "staff_id": swap.requester_id,
                    "status": ShiftStatus.ACCEPTED,
                }
            ),
        ]
        for before, after in zip((original, target), exchanged):
            if not repo.update_shift_if(
                after, lambda cur, b=before: cur.staff_id == b.staff_id
            ):
                raise StaleSwapError(f"shift {before.id} changed concurrently")

    logger.info("swap %s approved by %s", swap_id, admin_id)
    await emit_notifications(
        notifier,
        [
            _notification(
                approved,
                approved.requester_id,
                NotificationType.SHIFT_SWAP_ADMIN_APPROVED,
                "Shift swap approved",
                "Your swap request was approved by an administrator.",
            ),
            _notification(
                approved,
                approved.target_staff_id,
                NotificationType.SHIFT_SWAP_ADMIN_APPROVED,
                "Shift swap approved",
                "The shift swap was approved by an administrator.",
            ),
        ],
    )
    await events.publish(*_events(approved, *exchanged))
    return SwapOutcome(approved, applied=True)


async def reject_swap(
    repo: ScheduleRepository,
    swap_id: str,
    admin_id: str,
    notes: str | None = None,
    *,
    notifier: Notifier,
    events: ChangeFeed,
    now_fn: NowFn,
) -> SwapOutcome:
    """
    Refuse a request that is waiting on an admin (or still waiting on the
    target). No shift changes hands; held shifts go back to accepted.
    """
    with repo.transaction():
        swap = repo.get_swap(swap_id)
        if swap.admin_status == AdminSwapStatus.ADMIN_REJECTED:
            return SwapOutcome(swap, applied=False)
        open_for_admin = swap.admin_status == AdminSwapStatus.PENDING_ADMIN or (
            swap.admin_status == AdminSwapStatus.PENDING_STAFF
            and swap.status == SwapStatus.PENDING
        )
        if not open_for_admin:
            raise PreconditionError(
                f"swap {swap_id} is {swap.status}/{swap.admin_status}"
            )

        rejected = swap.model_copy(
            update={
                "admin_status": AdminSwapStatus.ADMIN_REJECTED,
                "admin_id": admin_id,
                "admin_notes": notes or None,
                "admin_responded_at": now_fn(),
            }
        )
        if not repo.update_swap_if(
            rejected,
            lambda cur: cur.admin_status == swap.admin_status
            and cur.status == swap.status,
        ):
            raise PreconditionError(f"swap {swap_id} was settled concurrently")
        released = _release_shifts(repo, rejected)

    logger.info("swap %s rejected by %s", swap_id, admin_id)
    await emit_notifications(
        notifier,
        [
            _notification(
                rejected,
                rejected.requester_id,
                NotificationType.SHIFT_SWAP_ADMIN_REJECTED,
                "Shift swap rejected",
                f"Reason: {notes}"
                if notes
                else "Your swap request was rejected by an administrator.",
            ),
            _notification(
                rejected,
                rejected.target_staff_id,
                NotificationType.SHIFT_SWAP_ADMIN_REJECTED,
                "Shift swap rejected",
                f"Reason: {notes}"
                if notes
                else "The shift swap was rejected by an administrator.",
            ),
        ],
    )
    await events.publish(*_events(rejected, *released))
    return SwapOutcome(rejected, applied=True)


def list_swaps(
    repo: ScheduleRepository,
    *,
    organization_id: str | None = None,
    staff_id: str | None = None,
    status: SwapStatus | None = None,
    admin_status: AdminSwapStatus | None = None,
) -> list[ShiftSwapRequest]:
    return repo.list_swaps(
        organization_id=organization_id,
        staff_id=staff_id,
        status=status,
        admin_status=admin_status,
    )

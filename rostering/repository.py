"""
Typed access to the key/value store.

Rows are stored as plain dicts keyed "<kind>:<id>" and mapped to domain
models on the way in and out, so nothing loosely typed leaks past here.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as RowValidationError

from rostering.database import InMemoryKeyValueDatabase
from rostering.errors import NotFoundError, StorageFailure
from rostering.models import (
    AdminSwapStatus,
    FixedSchedule,
    MedicalStaff,
    Notification,
    Sector,
    Shift,
    ShiftSwapRequest,
    SwapStatus,
)

M = TypeVar("M", bound=BaseModel)

Row = dict


class ScheduleRepository:
    def __init__(self, db: InMemoryKeyValueDatabase[str, Row] | None = None):
        self.db: InMemoryKeyValueDatabase[str, Row] = (
            db if db is not None else InMemoryKeyValueDatabase()
        )

    @contextmanager
    def transaction(self) -> Iterator["ScheduleRepository"]:
        with self.db.transaction():
            yield self

    # generic row mapping

    def _get(self, kind: str, model: type[M], entity_id: str) -> M | None:
        row = self.db.get(f"{kind}:{entity_id}")
        if row is None:
            return None
        return _to_model(model, row)

    def _require(self, kind: str, model: type[M], entity_id: str) -> M:
        value = self._get(kind, model, entity_id)
        if value is None:
            raise NotFoundError(model.__name__, entity_id)
        return value

    def _put(self, kind: str, value: BaseModel) -> None:
        try:
            self.db.put(f"{kind}:{value.id}", value.model_dump())
        except StorageFailure:
            raise
        except Exception as exc:
            raise StorageFailure(f"failed to write {kind} {value.id}") from exc

    def _scan(self, kind: str, model: type[M]) -> list[M]:
        prefix = f"{kind}:"
        return [
            _to_model(model, row)
            for key, row in self.db.items()
            if key.startswith(prefix)
        ]

    def _update_if(
        self,
        kind: str,
        model: type[M],
        value: BaseModel,
        predicate: Callable[[M], bool],
    ) -> bool:
        return self.db.update_if(
            f"{kind}:{value.id}",
            lambda row: predicate(_to_model(model, row)),
            value.model_dump(),
        )

    # sectors / staff

    def get_sector(self, sector_id: str) -> Sector:
        return self._require("sector", Sector, sector_id)

    def put_sector(self, sector: Sector) -> None:
        self._put("sector", sector)

    def delete_sector(self, sector_id: str) -> None:
        self.db.delete(f"sector:{sector_id}")

    def get_staff(self, staff_id: str) -> MedicalStaff:
        return self._require("staff", MedicalStaff, staff_id)

    def put_staff(self, staff: MedicalStaff) -> None:
        self._put("staff", staff)

    # shifts

    def find_shift(self, shift_id: str) -> Shift | None:
        return self._get("shift", Shift, shift_id)

    def get_shift(self, shift_id: str) -> Shift:
        return self._require("shift", Shift, shift_id)

    def put_shift(self, shift: Shift) -> None:
        self._put("shift", shift)

    def update_shift_if(
        self, shift: Shift, predicate: Callable[[Shift], bool]
    ) -> bool:
        return self._update_if("shift", Shift, shift, predicate)

    def delete_shift(self, shift_id: str) -> None:
        self.db.delete(f"shift:{shift_id}")

    def list_shifts(
        self,
        *,
        organization_id: str | None = None,
        staff_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        fixed_schedule_id: str | None = None,
        sector_id: str | None = None,
    ) -> list[Shift]:
        """
        Shifts matching every given filter. `start`/`end` select shifts
        whose [start_time, end_time) intersects the range.
        """
        shifts = [
            s
            for s in self._scan("shift", Shift)
            if (organization_id is None or s.organization_id == organization_id)
            and (staff_id is None or s.staff_id == staff_id)
            and (
                fixed_schedule_id is None
                or s.fixed_schedule_id == fixed_schedule_id
            )
            and (sector_id is None or s.sector_id == sector_id)
            and (start is None or s.end_time > start)
            and (end is None or s.start_time < end)
        ]
        return sorted(shifts, key=lambda s: (s.start_time, s.id))

    # fixed schedules

    def get_fixed_schedule(self, schedule_id: str) -> FixedSchedule:
        return self._require("fixed_schedule", FixedSchedule, schedule_id)

    def put_fixed_schedule(self, schedule: FixedSchedule) -> None:
        self._put("fixed_schedule", schedule)

    def delete_fixed_schedule(self, schedule_id: str) -> None:
        self.db.delete(f"fixed_schedule:{schedule_id}")

    def list_fixed_schedules(
        self,
        *,
        organization_id: str | None = None,
        staff_id: str | None = None,
        active: bool | None = None,
    ) -> list[FixedSchedule]:
        schedules = [
            fs
            for fs in self._scan("fixed_schedule", FixedSchedule)
            if (organization_id is None or fs.organization_id == organization_id)
            and (staff_id is None or fs.staff_id == staff_id)
            and (active is None or fs.active == active)
        ]
        return sorted(schedules, key=lambda fs: (fs.start_date, fs.id))

    # swap requests

    def get_swap(self, swap_id: str) -> ShiftSwapRequest:
        return self._require("swap", ShiftSwapRequest, swap_id)

    def put_swap(self, swap: ShiftSwapRequest) -> None:
        self._put("swap", swap)

    def update_swap_if(
        self,
        swap: ShiftSwapRequest,
        predicate: Callable[[ShiftSwapRequest], bool],
    ) -> bool:
        return self._update_if("swap", ShiftSwapRequest, swap, predicate)

    def list_swaps(
        self,
        *,
        organization_id: str | None = None,
        staff_id: str | None = None,
        status: SwapStatus | None = None,
        admin_status: AdminSwapStatus | None = None,
    ) -> list[ShiftSwapRequest]:
        swaps = [
            sw
            for sw in self._scan("swap", ShiftSwapRequest)
            if (organization_id is None or sw.organization_id == organization_id)
            and (
                staff_id is None
                or staff_id in (sw.requester_id, sw.target_staff_id)
            )
            and (status is None or sw.status == status)
            and (admin_status is None or sw.admin_status == admin_status)
        ]
        return sorted(swaps, key=lambda sw: sw.created_at, reverse=True)

    # notifications

    def put_notification(self, notification: Notification) -> None:
        self._put("notification", notification)

    def list_notifications(self, staff_id: str) -> list[Notification]:
        notifications = [
            n
            for n in self._scan("notification", Notification)
            if n.staff_id == staff_id
        ]
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)


def _to_model(model: type[M], row: Row) -> M:
    try:
        return model.model_validate(row)
    except RowValidationError as exc:
        raise StorageFailure(f"malformed {model.__name__} row: {exc}") from exc

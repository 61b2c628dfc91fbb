"""
Domain models for shifts, fixed schedules and swap requests.
"""

from datetime import UTC, date, datetime, time
from enum import StrEnum
from typing import Annotated, Literal, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


Weekday = Annotated[int, Field(ge=0, le=6)]  # 0=Sun ... 6=Sat
Notes = Annotated[str, Field(max_length=500)]


class ShiftStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SWAP_REQUESTED = "swap_requested"


class ShiftType(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    NIGHT = "night"


class DurationType(StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    PERMANENT = "permanent"


class SwapStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class AdminSwapStatus(StrEnum):
    PENDING_STAFF = "pending_staff"  # waiting on the target staff member
    PENDING_ADMIN = "pending_admin"  # target accepted, waiting on an admin
    ADMIN_APPROVED = "admin_approved"  # shifts exchanged
    ADMIN_REJECTED = "admin_rejected"


class NotificationType(StrEnum):
    SHIFT_SWAP_REQUEST = "shift_swap_request"
    SHIFT_SWAP_ACCEPTED = "shift_swap_accepted"
    SHIFT_SWAP_DECLINED = "shift_swap_declined"
    SHIFT_SWAP_CANCELLED = "shift_swap_cancelled"
    SHIFT_SWAP_ADMIN_APPROVED = "shift_swap_admin_approved"
    SHIFT_SWAP_ADMIN_REJECTED = "shift_swap_admin_rejected"


class TimeWindow(NamedTuple):
    start: time
    end: time


SHIFT_TYPE_TIMES: dict[ShiftType, TimeWindow] = {
    ShiftType.MORNING: TimeWindow(time(7, 0), time(12, 0)),
    ShiftType.AFTERNOON: TimeWindow(time(12, 0), time(18, 0)),
    ShiftType.NIGHT: TimeWindow(time(18, 0), time(7, 0)),  # ends next day
}


class Sector(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str | None = None  # None for global sectors
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(pattern=r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


class MedicalStaff(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    name: str
    role: str
    color: str = "#3B82F6"
    profession_id: str | None = None
    specialty_id: str | None = None
    active: bool = True


class Shift(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    facility_id: str | None = None
    sector_id: str | None = None
    staff_id: str | None = None  # None means open/unfilled
    start_time: datetime
    end_time: datetime
    status: ShiftStatus = ShiftStatus.PENDING
    notes: str | None = None
    fixed_schedule_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.staff_id is None


class ShiftDraft(BaseModel):
    """A shift produced by expanding a fixed schedule, not yet persisted."""

    fixed_schedule_id: str
    organization_id: str
    facility_id: str
    sector_id: str | None = None
    staff_id: str
    shift_date: date
    start_time: datetime
    end_time: datetime


class FixedSchedule(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    facility_id: str
    staff_id: str
    sector_id: str | None = None
    shift_type: ShiftType
    duration_type: DurationType
    start_date: date
    end_date: date | None = None
    weekdays: list[Weekday]
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ShiftSwapRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    requester_id: str
    target_staff_id: str
    original_shift_id: str
    target_shift_id: str
    requester_notes: str | None = None
    status: SwapStatus = SwapStatus.PENDING
    responder_notes: str | None = None
    responded_at: datetime | None = None
    admin_status: AdminSwapStatus = AdminSwapStatus.PENDING_STAFF
    admin_id: str | None = None
    admin_notes: str | None = None
    admin_responded_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    organization_id: str
    staff_id: str
    type: NotificationType
    title: str
    body: str
    correlated_entity_id: str
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


class ScheduleConflict(BaseModel):
    kind: Literal["fixed_schedule", "shift"]
    conflicting_id: str
    facility_id: str | None = None
    conflicting_weekdays: list[int] = Field(default_factory=list)
    conflicting_dates: list[date] = Field(default_factory=list)


# request payloads


class SectorCreate(BaseModel):
    organization_id: str | None = None
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(pattern=r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


class ShiftCreate(BaseModel):
    organization_id: str
    facility_id: str | None = None
    sector_id: str | None = None
    staff_id: str | None = None
    start_time: datetime
    end_time: datetime
    notes: str | None = None


class FixedScheduleCreate(BaseModel):
    organization_id: str
    facility_id: str
    staff_id: str
    sector_id: str | None = None
    shift_type: ShiftType
    duration_type: DurationType
    start_date: date
    end_date: date | None = None
    weekdays: list[Weekday]
    active: bool = True


class FixedScheduleUpdate(BaseModel):
    facility_id: str | None = None
    sector_id: str | None = None
    shift_type: ShiftType | None = None
    duration_type: DurationType | None = None
    start_date: date | None = None
    end_date: date | None = None
    weekdays: list[Weekday] | None = None
    active: bool | None = None


class SwapRequestCreate(BaseModel):
    requester_id: str
    target_staff_id: str
    original_shift_id: str
    target_shift_id: str
    requester_notes: Notes | None = None

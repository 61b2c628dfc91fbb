import logging
from datetime import UTC, date, datetime

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rostering import fixed_schedules, shifts, swaps
from rostering.config import Settings, get_settings
from rostering.conflicts import find_conflicting_shifts, shift_conflicts
from rostering.errors import SchedulingError, ValidationError
from rostering.events import ChangeFeed
from rostering.models import (
    AdminSwapStatus,
    FixedSchedule,
    FixedScheduleCreate,
    FixedScheduleUpdate,
    MedicalStaff,
    Notes,
    Notification,
    ScheduleConflict,
    Sector,
    SectorCreate,
    Shift,
    ShiftCreate,
    ShiftSwapRequest,
    SwapRequestCreate,
    SwapStatus,
)
from rostering.notifications import Notifier, RepositoryNotifier
from rostering.recurrence import default_generation_horizon
from rostering.repository import ScheduleRepository

logger = logging.getLogger(__name__)

router = APIRouter()


class ShiftResponse(BaseModel):
    staff_id: str
    accept: bool


class ShiftAssignment(BaseModel):
    staff_id: str | None
    expected_staff_id: str | None


class ShiftReschedule(BaseModel):
    start_time: datetime
    end_time: datetime


class ConflictQuery(BaseModel):
    staff_id: str
    start_time: datetime
    end_time: datetime
    exclude_shift_id: str | None = None


class GenerateRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    view_date: date | None = None  # organizations only: generate that month


class SwapResponse(BaseModel):
    staff_id: str
    accept: bool
    notes: Notes | None = None


class SwapCancel(BaseModel):
    requester_id: str


class AdminDecision(BaseModel):
    admin_id: str
    notes: Notes | None = None


class SwapOutcomeOut(BaseModel):
    swap: ShiftSwapRequest
    applied: bool


class ConflictReport(BaseModel):
    has_conflict: bool
    conflicts: list[ScheduleConflict] = Field(default_factory=list)


def _repo(request: Request) -> ScheduleRepository:
    return request.app.state.repository


def _deps(request: Request) -> dict:
    state = request.app.state
    return {
        "notifier": state.notifier,
        "events": state.change_feed,
        "now_fn": state.now_fn,
    }


def _settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# staff


@router.post("/staff", status_code=201)
async def create_staff(staff: MedicalStaff, request: Request) -> MedicalStaff:
    _repo(request).put_staff(staff)
    return staff


@router.get("/staff/{staff_id}")
async def get_staff(staff_id: str, request: Request) -> MedicalStaff:
    return _repo(request).get_staff(staff_id)


# sectors


@router.post("/sectors", status_code=201)
async def create_sector(data: SectorCreate, request: Request) -> Sector:
    return shifts.create_sector(_repo(request), data)


@router.delete("/sectors/{sector_id}")
async def delete_sector(sector_id: str, request: Request) -> dict:
    detached = shifts.delete_sector(_repo(request), sector_id)
    return {"sector_id": sector_id, "detached_shifts": detached}


# shifts


@router.get("/shifts")
async def list_shifts(
    request: Request,
    organization_id: str | None = None,
    staff_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Shift]:
    if any(v is not None and v.tzinfo is None for v in (start, end)):
        raise ValidationError("start and end must include a UTC offset")
    return _repo(request).list_shifts(
        organization_id=organization_id, staff_id=staff_id, start=start, end=end
    )


@router.post("/shifts", status_code=201)
async def create_shift(data: ShiftCreate, request: Request) -> Shift:
    return await shifts.create_shift(
        _repo(request),
        data,
        events=request.app.state.change_feed,
        tz=_settings(request).tz,
    )


@router.post("/shifts/conflicts")
async def check_shift_conflict(
    query: ConflictQuery, request: Request
) -> ConflictReport:
    shifts.validate_shift_times(query.start_time, query.end_time)
    repo = _repo(request)
    excluded = [query.exclude_shift_id] if query.exclude_shift_id else []
    clashes = find_conflicting_shifts(
        repo,
        query.staff_id,
        query.start_time,
        query.end_time,
        exclude_shift_ids=excluded,
    )
    return ConflictReport(
        has_conflict=bool(clashes),
        conflicts=shift_conflicts(clashes, tz=_settings(request).tz),
    )


@router.post("/shifts/{shift_id}/respond")
async def respond_to_shift(
    shift_id: str, body: ShiftResponse, request: Request
) -> Shift:
    return await shifts.respond_to_shift(
        _repo(request),
        shift_id,
        body.staff_id,
        accept=body.accept,
        events=request.app.state.change_feed,
    )


@router.post("/shifts/{shift_id}/assign")
async def assign_shift(
    shift_id: str, body: ShiftAssignment, request: Request
) -> Shift:
    return await shifts.assign_staff(
        _repo(request),
        shift_id,
        body.staff_id,
        expected_staff_id=body.expected_staff_id,
        events=request.app.state.change_feed,
        tz=_settings(request).tz,
    )


@router.post("/shifts/{shift_id}/reschedule")
async def reschedule_shift(
    shift_id: str, body: ShiftReschedule, request: Request
) -> Shift:
    return await shifts.reschedule_shift(
        _repo(request),
        shift_id,
        body.start_time,
        body.end_time,
        events=request.app.state.change_feed,
        tz=_settings(request).tz,
    )


@router.delete("/shifts/{shift_id}", status_code=204)
async def delete_shift(shift_id: str, request: Request) -> None:
    await shifts.delete_shift(
        _repo(request), shift_id, events=request.app.state.change_feed
    )


# fixed schedules


def _months_ahead(settings: Settings) -> int | None:
    return settings.generation_months_ahead if settings.generate_on_create else None


@router.post("/fixed-schedules", status_code=201)
async def create_fixed_schedule(
    data: FixedScheduleCreate, request: Request
) -> dict:
    settings = _settings(request)
    schedule, created = await fixed_schedules.create_fixed_schedule(
        _repo(request),
        data,
        events=request.app.state.change_feed,
        now_fn=request.app.state.now_fn,
        tz=settings.tz,
        generate_months_ahead=_months_ahead(settings),
    )
    return {
        "fixed_schedule": schedule.model_dump(mode="json"),
        "generated_shifts": created,
    }


@router.post("/fixed-schedules/conflicts")
async def check_fixed_schedule_conflicts(
    data: FixedScheduleCreate, request: Request
) -> ConflictReport:
    conflicts = fixed_schedules.preview_conflicts(
        _repo(request), data, tz=_settings(request).tz
    )
    return ConflictReport(has_conflict=bool(conflicts), conflicts=conflicts)


@router.patch("/fixed-schedules/{schedule_id}")
async def update_fixed_schedule(
    schedule_id: str, changes: FixedScheduleUpdate, request: Request
) -> dict:
    settings = _settings(request)
    schedule, created = await fixed_schedules.update_fixed_schedule(
        _repo(request),
        schedule_id,
        changes,
        events=request.app.state.change_feed,
        now_fn=request.app.state.now_fn,
        tz=settings.tz,
        generate_months_ahead=_months_ahead(settings),
    )
    return {
        "fixed_schedule": schedule.model_dump(mode="json"),
        "generated_shifts": created,
    }


@router.post("/fixed-schedules/{schedule_id}/deactivate")
async def deactivate_fixed_schedule(
    schedule_id: str, request: Request
) -> FixedSchedule:
    return await fixed_schedules.deactivate_fixed_schedule(
        _repo(request),
        schedule_id,
        events=request.app.state.change_feed,
        now_fn=request.app.state.now_fn,
    )


@router.delete("/fixed-schedules/{schedule_id}")
async def delete_fixed_schedule(schedule_id: str, request: Request) -> dict:
    removed = await fixed_schedules.delete_fixed_schedule(
        _repo(request),
        schedule_id,
        events=request.app.state.change_feed,
        now_fn=request.app.state.now_fn,
    )
    return {"fixed_schedule_id": schedule_id, "deleted_shifts": removed}


def _horizon(body: GenerateRequest, request: Request) -> tuple[date, date]:
    settings = _settings(request)
    today = request.app.state.now_fn().astimezone(settings.tz).date()
    default_start, default_end = default_generation_horizon(
        today, settings.generation_months_ahead
    )
    return body.start_date or default_start, body.end_date or default_end


@router.post("/fixed-schedules/{schedule_id}/generate")
async def generate_from_fixed_schedule(
    schedule_id: str, body: GenerateRequest, request: Request
) -> dict:
    start, end = _horizon(body, request)
    created = fixed_schedules.generate_shifts_from_fixed_schedule(
        _repo(request), schedule_id, start, end, tz=_settings(request).tz
    )
    return {"fixed_schedule_id": schedule_id, "count": created}


@router.post("/organizations/{organization_id}/generate-shifts")
async def generate_for_organization(
    organization_id: str, body: GenerateRequest, request: Request
) -> dict:
    tz = _settings(request).tz
    if body.view_date is not None:
        created = fixed_schedules.generate_shifts_for_calendar_view(
            _repo(request), organization_id, body.view_date, tz=tz
        )
    else:
        start, end = _horizon(body, request)
        created = fixed_schedules.generate_shifts_for_organization(
            _repo(request), organization_id, start, end, tz=tz
        )
    return {"organization_id": organization_id, "count": created}


# swaps


@router.get("/swaps")
async def list_swaps(
    request: Request,
    organization_id: str | None = None,
    staff_id: str | None = None,
    status: SwapStatus | None = None,
    admin_status: AdminSwapStatus | None = None,
) -> list[ShiftSwapRequest]:
    return swaps.list_swaps(
        _repo(request),
        organization_id=organization_id,
        staff_id=staff_id,
        status=status,
        admin_status=admin_status,
    )


@router.post("/swaps", status_code=201)
async def request_swap(
    data: SwapRequestCreate, request: Request
) -> ShiftSwapRequest:
    return await swaps.request_swap(_repo(request), data, **_deps(request))


@router.post("/swaps/{swap_id}/respond")
async def respond_to_swap(
    swap_id: str, body: SwapResponse, request: Request
) -> SwapOutcomeOut:
    outcome = await swaps.respond_to_swap(
        _repo(request),
        swap_id,
        body.staff_id,
        accept=body.accept,
        notes=body.notes,
        **_deps(request),
    )
    return SwapOutcomeOut(swap=outcome.swap, applied=outcome.applied)


@router.post("/swaps/{swap_id}/cancel")
async def cancel_swap(
    swap_id: str, body: SwapCancel, request: Request
) -> SwapOutcomeOut:
    state = request.app.state
    outcome = await swaps.cancel_swap(
        _repo(request),
        swap_id,
        body.requester_id,
        notifier=state.notifier,
        events=state.change_feed,
    )
    return SwapOutcomeOut(swap=outcome.swap, applied=outcome.applied)


@router.post("/swaps/{swap_id}/approve")
async def approve_swap(
    swap_id: str, body: AdminDecision, request: Request
) -> SwapOutcomeOut:
    outcome = await swaps.approve_swap(
        _repo(request),
        swap_id,
        body.admin_id,
        body.notes,
        tz=_settings(request).tz,
        **_deps(request),
    )
    return SwapOutcomeOut(swap=outcome.swap, applied=outcome.applied)


@router.post("/swaps/{swap_id}/reject")
async def reject_swap(
    swap_id: str, body: AdminDecision, request: Request
) -> SwapOutcomeOut:
    outcome = await swaps.reject_swap(
        _repo(request), swap_id, body.admin_id, body.notes, **_deps(request)
    )
    return SwapOutcomeOut(swap=outcome.swap, applied=outcome.applied)


# notifications


@router.get("/staff/{staff_id}/notifications")
async def list_notifications(
    staff_id: str, request: Request
) -> list[Notification]:
    return _repo(request).list_notifications(staff_id)


async def scheduling_error_handler(
    request: Request, exc: SchedulingError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    *,
    repository: ScheduleRepository | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.app_name)
    repo = repository if repository is not None else ScheduleRepository()
    app.state.settings = settings
    app.state.repository = repo
    app.state.notifier = notifier if notifier is not None else RepositoryNotifier(repo)
    app.state.change_feed = ChangeFeed()

    app.state.now_fn = lambda: datetime.now(UTC)

    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.include_router(router)
    return app

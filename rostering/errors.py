"""
Typed failures raised by the scheduling workflow.

The API layer turns every `SchedulingError` into a JSON body of the form
{"error": <code>, "message": <text>, ...} so callers never see a raw trace.
"""

from collections.abc import Sequence

from rostering.models import ScheduleConflict


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(SchedulingError):
    """Malformed input, rejected before anything is written."""

    code = "validation_error"
    status_code = 422


class NotFoundError(SchedulingError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(SchedulingError):
    """An overlapping commitment exists for the same staff member."""

    code = "conflict"
    status_code = 409

    def __init__(
        self, message: str, conflicts: Sequence[ScheduleConflict]
    ) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflicts"] = [c.model_dump(mode="json") for c in self.conflicts]
        return data


class StaleSwapError(SchedulingError):
    """
    The shifts named by a swap request no longer belong to the staff
    members recorded when it was created.
    """

    code = "stale_swap"
    status_code = 409


class PreconditionError(SchedulingError):
    """Operation attempted from the wrong state."""

    code = "precondition_failed"
    status_code = 409


class StorageFailure(SchedulingError):
    code = "storage_failure"
    status_code = 503

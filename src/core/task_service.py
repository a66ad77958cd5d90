"""
Agenda Assistant — Task creation and update.

Shared validation for the create-task and update-task commands. Payloads are
parsed with pydantic; the schedule rule (reminder_at <= due_at) is checked on
the final values, so an update is validated after merging it with the stored
task.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import NotFoundError, ValidationError
from src.core.time_utils import as_utc

if TYPE_CHECKING:
    from src.data.db import TaskDB
    from src.data.models import Task, User

logger = logging.getLogger(__name__)

# Fields that may never be cleared by an update
_REQUIRED_FIELDS = ("description", "due_at", "reminder_at")


class CreateTaskPayload(BaseModel):
    """Structured create-task request.

    JSON example:
    {
        "action": "create_task",
        "description": "Dentista",
        "due_at": "2026-03-21 15:00",
        "reminder_at": "2026-03-21 14:00",
        "meta": "Saúde"
    }
    """
    description: str
    due_at: datetime
    reminder_at: datetime
    meta: str | None = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v


class UpdateTaskPayload(BaseModel):
    """Structured update-task request. Omitted fields keep their stored value.

    JSON example:
    {"action": "update_task", "task_id": 7, "due_at": "2026-03-22 15:00"}
    """
    task_id: int = Field(validation_alias=AliasChoices("task_id", "taskId", "taskid"))
    description: str | None = None
    due_at: datetime | None = None
    reminder_at: datetime | None = None
    meta: str | None = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v

    def provided_fields(self) -> dict:
        """Only the task fields the sender actually included."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "task_id"
        }


def _describe_pydantic_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_create_payload(data: dict) -> CreateTaskPayload:
    try:
        return CreateTaskPayload.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_pydantic_error(exc)) from exc


def parse_update_payload(data: dict) -> UpdateTaskPayload:
    try:
        return UpdateTaskPayload.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_pydantic_error(exc)) from exc


def validate_schedule(due_at: datetime, reminder_at: datetime) -> None:
    """Raise ValidationError unless the reminder fires no later than the due time."""
    if as_utc(reminder_at) > as_utc(due_at):
        raise ValidationError("reminder_at must not be later than due_at")


def create_task(task_db: TaskDB, user: User, payload: CreateTaskPayload) -> Task:
    """Validate and persist a new task owned by user."""
    validate_schedule(payload.due_at, payload.reminder_at)
    task = task_db.add_task(
        user_id=user.id,
        description=payload.description,
        due_at=as_utc(payload.due_at),
        reminder_at=as_utc(payload.reminder_at),
        meta=payload.meta,
    )
    logger.info("User %d created task #%d", user.id, task.id)
    return task


def update_task(task_db: TaskDB, user: User, payload: UpdateTaskPayload) -> Task:
    """Apply the provided fields to one of the user's tasks.

    Raises NotFoundError if the task isn't owned by user; the store is not
    touched in that case, nor when validation fails.
    """
    existing = task_db.get_task(payload.task_id, user_id=user.id)
    if existing is None:
        raise NotFoundError(f"task {payload.task_id} not found")

    fields = payload.provided_fields()
    for name in _REQUIRED_FIELDS:
        if name in fields and fields[name] is None:
            raise ValidationError(f"{name} cannot be cleared")

    if not fields:
        return existing

    for name in ("due_at", "reminder_at"):
        if name in fields:
            fields[name] = as_utc(fields[name])

    validate_schedule(
        fields.get("due_at", existing.due_at),
        fields.get("reminder_at", existing.reminder_at),
    )

    updated = task_db.update_task(existing.id, user.id, fields)
    if updated is None:
        raise NotFoundError(f"task {payload.task_id} not found")
    return updated

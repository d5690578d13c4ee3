from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, field_validator

from projectflow.models.task import TaskPriority, TaskStatus
from projectflow.schemas.recurrence import RecurrencePattern


class TaskRecord(BaseModel):
    """Task as seen by the recurrence engine.

    Templates carry ``is_recurring`` and a pattern; generated instances carry
    ``original_task_id`` and their ``occurrence_number``. Unknown keys are kept
    so that descriptive fields flow from a template to its instances.
    """
    id: str
    name: str
    description: str | None = None
    project_id: str | None = None
    priority: str = TaskPriority.MEDIUM.value
    status: str = TaskStatus.TODO.value
    assignee_id: str | None = None
    completed: bool = False
    due_date: datetime | None = None
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    original_task_id: str | None = None
    occurrence_number: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        extra = "allow"
        from_attributes = True


class TaskBase(BaseModel):
    name: str
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    assignee_id: str | None = None
    due_date: datetime | None = None
    # Recurring task fields
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None


class TaskCreate(TaskBase):
    project_id: str


class TaskUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    assignee_id: str | None = None
    due_date: datetime | None = None
    completed: bool | None = None

    class Config:
        # Allow extra fields to be ignored (frontend might send read-only fields)
        extra = "ignore"


class TaskPublic(TaskBase):
    id: str
    project_id: str
    completed: bool
    original_task_id: str | None = None
    occurrence_number: int | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Stored as naive UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def pattern_to_dict(pattern: RecurrencePattern | None) -> dict[str, Any] | None:
    """JSON-column form of a pattern, without unset keys."""
    if pattern is None:
        return None
    return pattern.model_dump(exclude_none=True)

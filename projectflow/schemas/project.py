from datetime import datetime

from pydantic import BaseModel, Field

from projectflow.schemas.task import TaskPublic, TaskRecord


class ProjectRecord(BaseModel):
    """Project with its full task list, as passed through the recurrence engine."""
    id: str
    name: str
    description: str | None = None
    tasks: list[TaskRecord] = Field(default_factory=list)


class ProjectBase(BaseModel):
    name: str
    description: str | None = None


class ProjectCreate(ProjectBase):
    pass


class ProjectPublic(ProjectBase):
    id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GeneratedInstances(BaseModel):
    project_id: str
    generated: list[TaskPublic]

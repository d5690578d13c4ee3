from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
import logging

from projectflow.db.session import get_db
from projectflow.models.project import Project
from projectflow.models.task import Task
from projectflow.schemas.task import TaskCreate, TaskPublic, TaskUpdate, pattern_to_dict
from projectflow.services import recurrence, recurring_tasks
from projectflow.services.recurring_tasks import TemplateDeletePolicy

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_task_or_404(db: Session, task_id: str) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found",
        )
    return task


@router.get("/", response_model=list[TaskPublic])
def list_tasks(
    project_id: str = Query(...),
    db: Session = Depends(get_db),
) -> list[Task]:
    return (
        db.query(Task)
        .filter(Task.project_id == project_id)
        .order_by(Task.due_date.asc().nulls_last(), Task.created_at.asc())
        .all()
    )


@router.get("/{task_id}", response_model=TaskPublic)
def get_task(task_id: str, db: Session = Depends(get_db)) -> Task:
    return _get_task_or_404(db, task_id)


@router.post("/", response_model=TaskPublic, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreate, db: Session = Depends(get_db)) -> Task:
    if not db.get(Project, payload.project_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        )

    if payload.is_recurring:
        if payload.recurrence_pattern is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Recurring tasks require a recurrence pattern",
            )
        validation = recurrence.validate_pattern(payload.recurrence_pattern)
        if not validation.valid:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=validation.error,
            )

    task_data = payload.model_dump(exclude={"recurrence_pattern"})
    task_data["priority"] = payload.priority.value
    task_data["status"] = payload.status.value
    task_data["due_date"] = recurring_tasks.to_storage_datetime(payload.due_date)
    task = Task(
        **task_data,
        recurrence_pattern=pattern_to_dict(payload.recurrence_pattern) if payload.is_recurring else None,
        occurrence_number=1 if payload.is_recurring else None,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@router.patch("/{task_id}", response_model=TaskPublic)
def update_task(
    task_id: str,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
) -> Task:
    task = _get_task_or_404(db, task_id)
    update_data = payload.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        if key in ("priority", "status") and value is not None:
            value = value.value
        elif key == "due_date":
            value = recurring_tasks.to_storage_datetime(value)
        setattr(task, key, value)
    db.commit()
    db.refresh(task)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: str,
    policy: TemplateDeletePolicy | None = Query(default=None),
    db: Session = Depends(get_db),
) -> None:
    task = _get_task_or_404(db, task_id)
    removed = recurring_tasks.delete_task(db, task, policy)
    logger.debug(f"Deleted task {task_id} ({removed} generated instance(s) removed)")

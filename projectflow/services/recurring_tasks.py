"""Service for persisting recurring task instances and the series index"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from projectflow.core.config import get_settings
from projectflow.models.project import Project
from projectflow.models.task import RecurringTaskInstance, Task
from projectflow.schemas.project import ProjectRecord
from projectflow.schemas.recurrence import RecurrencePattern
from projectflow.schemas.task import TaskRecord, pattern_to_dict
from projectflow.services import recurrence

logger = logging.getLogger(__name__)


class TemplateDeletePolicy(str, PyEnum):
    """What happens to generated instances when their template is deleted."""
    ORPHAN = "orphan"
    CASCADE = "cascade"


class InvalidPatternError(recurrence.RecurrenceError):
    """Raised when a pattern fails validation before being stored."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def _normalize_to_utc(dt: datetime | None) -> datetime | None:
    """Normalize datetime to aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage_datetime(dt: datetime | None) -> datetime | None:
    """Datetimes are stored as naive UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def task_to_record(task: Task) -> TaskRecord:
    """Convert a stored task into the engine's task shape."""
    pattern = task.recurrence_pattern
    return TaskRecord(
        id=task.id,
        name=task.name,
        description=task.description,
        project_id=task.project_id,
        priority=task.priority,
        status=task.status,
        assignee_id=task.assignee_id,
        completed=bool(task.completed),
        due_date=_normalize_to_utc(task.due_date),
        is_recurring=bool(task.is_recurring),
        recurrence_pattern=RecurrencePattern(**pattern) if pattern else None,
        original_task_id=task.original_task_id,
        occurrence_number=task.occurrence_number,
        created_at=_normalize_to_utc(task.created_at),
        updated_at=_normalize_to_utc(task.updated_at),
    )


def record_to_task(record: TaskRecord, project_id: str) -> Task:
    """Build a new task row from an engine record."""
    return Task(
        id=record.id,
        project_id=project_id,
        name=record.name,
        description=record.description,
        priority=record.priority,
        status=record.status,
        assignee_id=record.assignee_id,
        completed=record.completed,
        due_date=to_storage_datetime(record.due_date),
        is_recurring=record.is_recurring,
        recurrence_pattern=pattern_to_dict(record.recurrence_pattern),
        original_task_id=record.original_task_id,
        occurrence_number=record.occurrence_number,
        created_at=to_storage_datetime(record.created_at) or datetime.utcnow(),
        updated_at=to_storage_datetime(record.updated_at) or datetime.utcnow(),
    )


def project_to_record(project: Project) -> ProjectRecord:
    return ProjectRecord(
        id=project.id,
        name=project.name,
        description=project.description,
        tasks=[task_to_record(task) for task in project.tasks],
    )


def get_instances(db: Session, template_id: str) -> list[RecurringTaskInstance]:
    """All series index rows for a template, in occurrence order."""
    return (
        db.query(RecurringTaskInstance)
        .filter(RecurringTaskInstance.original_task_id == template_id)
        .order_by(RecurringTaskInstance.occurrence_number.asc())
        .all()
    )


def _latest_index_row(db: Session, template_id: str) -> RecurringTaskInstance | None:
    return (
        db.query(RecurringTaskInstance)
        .filter(RecurringTaskInstance.original_task_id == template_id)
        .order_by(RecurringTaskInstance.occurrence_number.desc())
        .first()
    )


def get_latest_instance(db: Session, template_id: str) -> TaskRecord | None:
    """
    Series-index lookup: the latest occurrence generated for a template.

    The index row is authoritative even when the generated task itself has
    since been deleted, so a deleted occurrence is never produced again.

    Args:
        db: Database session
        template_id: Id of the recurring template

    Returns:
        Record positioned at the latest occurrence, or None if nothing was generated
    """
    row = _latest_index_row(db, template_id)
    if row is None:
        return None

    template = db.get(Task, template_id)
    if template is None:
        return None

    return task_to_record(template).model_copy(
        update={
            "id": row.generated_task_id or row.id,
            "due_date": _normalize_to_utc(row.scheduled_date),
            "occurrence_number": row.occurrence_number,
            "original_task_id": template_id,
            "is_recurring": False,
            "recurrence_pattern": None,
        }
    )


def _index_row_exists(db: Session, template_id: str, occurrence_number: int) -> bool:
    return (
        db.query(RecurringTaskInstance.id)
        .filter(
            RecurringTaskInstance.original_task_id == template_id,
            RecurringTaskInstance.occurrence_number == occurrence_number,
        )
        .first()
        is not None
    )


def store_instance(db: Session, template: Task, record: TaskRecord) -> Task | None:
    """
    Persist a generated instance together with its series index row.

    Returns None when the occurrence is already indexed, either found up front
    or reported by the unique constraint under a concurrent writer.
    """
    if _index_row_exists(db, template.id, record.occurrence_number):
        logger.info(
            f"Occurrence {record.occurrence_number} of template {template.id} already exists; skipping"
        )
        return None

    task = record_to_task(record, template.project_id)
    try:
        with db.begin_nested():
            db.add(task)
            db.flush()
            db.add(
                RecurringTaskInstance(
                    original_task_id=template.id,
                    generated_task_id=task.id,
                    occurrence_number=record.occurrence_number,
                    scheduled_date=to_storage_datetime(record.due_date),
                )
            )
            db.flush()
    except IntegrityError:
        logger.info(
            f"Occurrence {record.occurrence_number} of template {template.id} was stored concurrently; skipping"
        )
        return None
    return task


def generate_next_for_template(
    db: Session,
    template: Task,
    now: datetime | None = None,
) -> Task | None:
    """
    Generate and persist the occurrence after the latest indexed one.

    Raises:
        NotARecurringTemplateError: if ``template`` is not a recurring template
        SeriesEndedError: if the series has reached its end date or occurrence cap
    """
    record = task_to_record(template)
    base_number = record.occurrence_number or 1
    latest = get_latest_instance(db, template.id)
    if latest is not None:
        record = record.model_copy(
            update={
                "due_date": latest.due_date,
                "occurrence_number": latest.occurrence_number,
            }
        )

    pattern = record.recurrence_pattern
    if record.is_recurring and pattern is not None:
        ordinal = (record.occurrence_number or base_number) + 1 - base_number
        if recurrence.has_series_ended(pattern, ordinal, now=now):
            logger.info(f"Series of template {template.id} has ended; nothing generated")
            raise recurrence.SeriesEndedError(template.id)

    instance = recurrence.generate_next_instance(record, now=now)
    task = store_instance(db, template, instance)
    db.commit()
    if task is not None:
        db.refresh(task)
    return task


def generate_due_instances(
    db: Session,
    project: Project,
    days_ahead: int | None = None,
    now: datetime | None = None,
) -> list[Task]:
    """
    Generate every instance due within the horizon for a project's templates.

    Args:
        db: Database session
        project: Project whose templates should be checked
        days_ahead: Horizon in days, defaults to ``recurrence_days_ahead``
        now: Current time, defaults to the wall clock

    Returns:
        Newly stored task instances
    """
    settings = get_settings()
    if days_ahead is None:
        days_ahead = settings.recurrence_days_ahead

    record = project_to_record(project)
    updated = recurrence.check_and_generate_due_instances(
        record,
        days_ahead,
        now=now,
        latest_instance=lambda template_id: get_latest_instance(db, template_id),
        max_instances=settings.recurrence_max_instances,
    )

    templates = {task.id: task for task in project.tasks if task.is_recurring}
    new_tasks = []
    for instance in updated.tasks[len(record.tasks):]:
        task = store_instance(db, templates[instance.original_task_id], instance)
        if task is not None:
            new_tasks.append(task)

    db.commit()
    for task in new_tasks:
        db.refresh(task)

    if new_tasks:
        logger.info(f"Generated {len(new_tasks)} recurring instance(s) for project {project.id}")
    return new_tasks


def generate_due_instances_for_all_projects(
    db: Session,
    days_ahead: int | None = None,
) -> dict[str, int]:
    """
    Bulk job: generate due instances across every project.

    A project that fails is rolled back and logged; the others still run.

    Returns:
        Number of instances generated per project id
    """
    results: dict[str, int] = {}
    for project in db.query(Project).all():
        try:
            results[project.id] = len(generate_due_instances(db, project, days_ahead))
        except (SQLAlchemyError, ValueError) as e:
            db.rollback()
            logger.error(f"Failed to generate recurring instances for project {project.id}: {e}")
    return results


def update_pattern(db: Session, template: Task, pattern: RecurrencePattern) -> Task:
    """
    Store a new recurrence pattern, turning the task into a template if needed.

    Raises:
        InvalidPatternError: if the pattern fails validation
    """
    validation = recurrence.validate_pattern(pattern)
    if not validation.valid:
        raise InvalidPatternError(validation.error)

    template.is_recurring = True
    template.recurrence_pattern = pattern_to_dict(pattern)
    if template.occurrence_number is None:
        template.occurrence_number = 1
    db.commit()
    db.refresh(template)
    return template


def delete_all_instances(db: Session, template_id: str) -> int:
    """
    Delete every generated instance of a template and clear its series index.

    Returns:
        Number of instance tasks deleted
    """
    instances = (
        db.query(Task)
        .filter(
            Task.original_task_id == template_id,
            Task.is_recurring.is_(False),
        )
        .all()
    )
    count = len(instances)
    db.query(RecurringTaskInstance).filter(
        RecurringTaskInstance.original_task_id == template_id
    ).delete(synchronize_session=False)
    for instance in instances:
        db.delete(instance)
    db.commit()
    return count


def delete_task(
    db: Session,
    task: Task,
    policy: TemplateDeletePolicy | None = None,
) -> int:
    """
    Delete a task, applying the template delete policy to recurring templates.

    ``ORPHAN`` keeps generated instances with their link to the deleted
    template; ``CASCADE`` deletes them as well.

    Returns:
        Number of generated instances deleted along with the task
    """
    if policy is None:
        policy = TemplateDeletePolicy(get_settings().template_delete_policy)

    removed = 0
    if task.is_recurring:
        if policy == TemplateDeletePolicy.CASCADE:
            instances = db.query(Task).filter(Task.original_task_id == task.id).all()
            removed = len(instances)
            for instance in instances:
                db.delete(instance)
        db.query(RecurringTaskInstance).filter(
            RecurringTaskInstance.original_task_id == task.id
        ).delete(synchronize_session=False)
    elif task.original_task_id:
        db.query(RecurringTaskInstance).filter(
            RecurringTaskInstance.generated_task_id == task.id
        ).update({RecurringTaskInstance.generated_task_id: None}, synchronize_session=False)

    db.delete(task)
    db.commit()
    if removed:
        logger.info(f"Deleted {removed} instance(s) along with template {task.id}")
    return removed

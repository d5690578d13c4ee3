from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
import logging

from projectflow.core.config import get_settings
from projectflow.db.session import get_db
from projectflow.models.task import RecurringTaskInstance, Task
from projectflow.schemas.recurrence import (
    NextDateRequest,
    NextDateResponse,
    OccurrencePreview,
    PatternDescription,
    PatternValidation,
    RecurrencePattern,
    SeriesInstancePublic,
    ShouldGenerateRequest,
    ShouldGenerateResponse,
    UpcomingRequest,
    UpcomingResponse,
)
from projectflow.schemas.task import TaskPublic
from projectflow.services import recurrence, recurring_tasks

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_template_or_404(db: Session, template_id: str) -> Task:
    template = db.get(Task, template_id)
    if not template:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Template not found",
        )
    return template


def _require_valid(pattern: RecurrencePattern) -> None:
    validation = recurrence.validate_pattern(pattern)
    if not validation.valid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=validation.error,
        )


@router.post("/validate", response_model=PatternValidation)
def validate_pattern(pattern: RecurrencePattern) -> PatternValidation:
    return recurrence.validate_pattern(pattern)


@router.post("/describe", response_model=PatternDescription)
def describe_pattern(pattern: RecurrencePattern) -> PatternDescription:
    _require_valid(pattern)
    return PatternDescription(description=recurrence.describe_pattern(pattern))


@router.post("/next-date", response_model=NextDateResponse)
def next_date(payload: NextDateRequest) -> NextDateResponse:
    _require_valid(payload.pattern)
    if payload.base_occurrence_number > payload.occurrence_number:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Occurrence number precedes the series base",
        )
    anchor = payload.from_date or datetime.now(timezone.utc)
    next_occurrence = recurrence.compute_next_occurrence(
        anchor, payload.pattern, payload.occurrence_number
    )
    # max_occurrences counts generated instances, not raw occurrence numbers
    ordinal = payload.occurrence_number + 1 - payload.base_occurrence_number
    return NextDateResponse(
        date=next_occurrence,
        series_ended=recurrence.has_series_ended(payload.pattern, ordinal),
    )


@router.post("/upcoming", response_model=UpcomingResponse)
def upcoming_dates(payload: UpcomingRequest) -> UpcomingResponse:
    _require_valid(payload.pattern)
    start = payload.from_date or datetime.now(timezone.utc)
    return UpcomingResponse(
        upcoming=recurrence.get_upcoming_dates(
            payload.pattern, start, payload.look_ahead_days
        )
    )


@router.post("/should-generate", response_model=ShouldGenerateResponse)
def should_generate(payload: ShouldGenerateRequest) -> ShouldGenerateResponse:
    _require_valid(payload.pattern)
    return ShouldGenerateResponse(
        should_generate=recurrence.should_generate_instance(
            payload.pattern, payload.last_generated
        )
    )


@router.post("/{template_id}/next", response_model=TaskPublic, status_code=status.HTTP_201_CREATED)
def generate_next_instance(template_id: str, db: Session = Depends(get_db)) -> Task:
    template = _get_template_or_404(db, template_id)
    try:
        task = recurring_tasks.generate_next_for_template(db, template)
    except recurrence.NotARecurringTemplateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except recurrence.SeriesEndedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Next occurrence already exists",
        )
    return task


@router.get("/{template_id}/instances", response_model=list[SeriesInstancePublic])
def list_instances(template_id: str, db: Session = Depends(get_db)) -> list[RecurringTaskInstance]:
    _get_template_or_404(db, template_id)
    return recurring_tasks.get_instances(db, template_id)


@router.get("/{template_id}/preview", response_model=list[OccurrencePreview])
def preview_occurrences(
    template_id: str,
    count: int | None = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
) -> list[OccurrencePreview]:
    template = _get_template_or_404(db, template_id)
    if not template.is_recurring:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Task is not a recurring task template",
        )
    if count is None:
        count = get_settings().recurrence_preview_count
    return recurrence.get_next_occurrences_preview(
        recurring_tasks.task_to_record(template), count
    )


@router.put("/{template_id}/pattern", response_model=TaskPublic)
def update_pattern(
    template_id: str,
    pattern: RecurrencePattern,
    db: Session = Depends(get_db),
) -> Task:
    template = _get_template_or_404(db, template_id)
    try:
        return recurring_tasks.update_pattern(db, template, pattern)
    except recurring_tasks.InvalidPatternError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.message,
        ) from e


@router.delete("/{template_id}/instances", status_code=status.HTTP_204_NO_CONTENT)
def delete_instances(template_id: str, db: Session = Depends(get_db)) -> None:
    _get_template_or_404(db, template_id)
    count = recurring_tasks.delete_all_instances(db, template_id)
    logger.info(f"Deleted {count} instance(s) of recurring template {template_id}")

"""Recurrence engine: date-pattern expansion for recurring task templates.

Pure computation. Nothing here reads or writes storage; callers hand in
templates and projects and persist whatever comes back. The only ambient
input is the wall clock, which every function accepts as an optional ``now``.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from dateutil.relativedelta import relativedelta

from projectflow.models.task import TaskStatus
from projectflow.schemas.project import ProjectRecord
from projectflow.schemas.recurrence import (
    OccurrencePreview,
    PatternValidation,
    RecurrencePattern,
)
from projectflow.schemas.task import TaskRecord

logger = logging.getLogger(__name__)

SUPPORTED_FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "quarterly", "yearly")
DEFAULT_MAX_INSTANCES = 100
DEFAULT_DAYS_AHEAD = 30
DEFAULT_PREVIEW_COUNT = 5

WEEKDAY_ABBREVIATIONS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

_FREQUENCY_UNITS = {
    "daily": ("day", 1),
    "weekly": ("week", 1),
    "biweekly": ("week", 2),
    "monthly": ("month", 1),
    "quarterly": ("quarter", 1),
    "yearly": ("year", 1),
}

LatestInstanceLookup = Callable[[str], "TaskRecord | None"]


class RecurrenceError(Exception):
    """Base class for recurrence engine errors."""


class NotARecurringTemplateError(RecurrenceError, ValueError):
    """Raised when generation is requested for a task that is not a template."""

    def __init__(self, task_id: str | None = None):
        self.task_id = task_id
        super().__init__("Task is not a recurring task template")


class SeriesEndedError(RecurrenceError):
    """Raised when a template's series has reached its end date or occurrence cap."""

    def __init__(self, task_id: str | None = None):
        self.task_id = task_id
        super().__init__("Recurring series has ended")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC, convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _weekday_index(dt: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return dt.isoweekday() % 7


def _is_template(task: TaskRecord) -> bool:
    return bool(task.is_recurring and task.recurrence_pattern)


def _next_matching_weekday(anchor: datetime, days_of_week: list[int]) -> datetime:
    wanted = {day for day in days_of_week if 0 <= day <= 6}
    if not wanted:
        return anchor
    candidate = anchor + timedelta(days=1)
    while _weekday_index(candidate) not in wanted:
        candidate += timedelta(days=1)
    return candidate


def compute_next_occurrence(
    anchor: datetime,
    pattern: RecurrencePattern,
    occurrence_number: int = 1,
) -> datetime:
    """Return the occurrence that follows ``anchor`` under ``pattern``.

    Termination is not checked here; see :func:`has_series_ended`.
    ``occurrence_number`` is the ordinal of ``anchor`` within its series and
    does not change the stepping.

    Month arithmetic clamps to the last day of the target month, so
    January 31st plus one month is the last day of February and a
    ``day_of_month`` of 31 lands on the 30th in thirty-day months.

    An unknown frequency returns ``anchor`` unchanged.
    """
    anchor = _as_utc(anchor)
    step = pattern.step
    frequency = pattern.frequency

    if frequency == "daily":
        return anchor + timedelta(days=step)
    if frequency == "weekly":
        if pattern.days_of_week:
            # Day-by-day stepping; interval only applies without explicit weekdays
            return _next_matching_weekday(anchor, pattern.days_of_week)
        return anchor + timedelta(days=7 * step)
    if frequency == "biweekly":
        return anchor + timedelta(days=14 * step)
    if frequency == "monthly":
        if pattern.day_of_month:
            return anchor + relativedelta(months=step, day=min(pattern.day_of_month, 31))
        return anchor + relativedelta(months=step)
    if frequency == "quarterly":
        return anchor + relativedelta(months=3 * step)
    if frequency == "yearly":
        return anchor + relativedelta(years=step)

    logger.warning(f"Unsupported recurrence frequency {frequency!r}; occurrence not advanced")
    return anchor


def has_series_ended(
    pattern: RecurrencePattern,
    occurrence_number: int,
    *,
    now: datetime | None = None,
) -> bool:
    """Whether the occurrence about to be produced falls outside the series.

    The count check compares ordinals only. The end-date check compares the
    current time, not the candidate's date, against ``end_date``.
    """
    if pattern.max_occurrences and occurrence_number > pattern.max_occurrences:
        return True

    end_date = pattern.end_datetime()
    if end_date is not None:
        current = _as_utc(now) if now else _utcnow()
        if current > end_date:
            return True

    return False


def _build_instance(
    template: TaskRecord,
    due_date: datetime,
    occurrence_number: int,
    now: datetime,
) -> TaskRecord:
    return template.model_copy(
        update={
            "id": str(uuid.uuid4()),
            "due_date": due_date,
            "occurrence_number": occurrence_number,
            "completed": False,
            "status": TaskStatus.TODO.value,
            "original_task_id": template.id,
            "is_recurring": False,
            "recurrence_pattern": None,
            "created_at": now,
            "updated_at": now,
        },
        deep=True,
    )


def generate_next_instance(template: TaskRecord, *, now: datetime | None = None) -> TaskRecord:
    """Create the instance that follows ``template``'s current occurrence.

    Raises:
        NotARecurringTemplateError: if ``template`` is not a recurring template
    """
    if not _is_template(template):
        raise NotARecurringTemplateError(template.id)

    now = _as_utc(now) if now else _utcnow()
    current_number = template.occurrence_number or 1
    anchor = template.due_date or now

    next_date = compute_next_occurrence(anchor, template.recurrence_pattern, current_number)
    return _build_instance(template, next_date, current_number + 1, now)


def generate_instances(
    template: TaskRecord,
    up_to_date: datetime,
    max_instances: int = DEFAULT_MAX_INSTANCES,
    *,
    now: datetime | None = None,
) -> list[TaskRecord]:
    """
    Expand a template into the instances that follow its anchor date.

    Args:
        template: The recurring task template
        up_to_date: Last date (inclusive) an instance may fall on
        max_instances: Hard ceiling on the number of instances returned
        now: Current time, defaults to the wall clock

    Returns:
        Instances in date order, empty for non-templates
    """
    if not _is_template(template):
        return []

    now = _as_utc(now) if now else _utcnow()
    up_to_date = _as_utc(up_to_date)
    pattern = template.recurrence_pattern
    base_number = template.occurrence_number or 1
    current_date = _as_utc(template.due_date) if template.due_date else now

    instances: list[TaskRecord] = []
    while len(instances) < max_instances:
        if has_series_ended(pattern, len(instances) + 1, now=now):
            break

        current_number = base_number + len(instances)
        next_date = compute_next_occurrence(current_date, pattern, current_number)
        if next_date <= current_date:
            break
        if next_date > up_to_date:
            break

        instances.append(_build_instance(template, next_date, current_number + 1, now))
        current_date = next_date

    return instances


def _latest_instance_in(tasks: list[TaskRecord], template_id: str) -> TaskRecord | None:
    series = [task for task in tasks if task.original_task_id == template_id]
    if not series:
        return None
    return max(series, key=lambda task: task.occurrence_number or 0)


def check_and_generate_due_instances(
    project: ProjectRecord,
    days_ahead: int = DEFAULT_DAYS_AHEAD,
    *,
    now: datetime | None = None,
    latest_instance: LatestInstanceLookup | None = None,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> ProjectRecord:
    """
    Materialize every instance due within ``days_ahead`` days for all templates.

    Args:
        project: Project holding templates and previously generated instances
        days_ahead: Horizon, in days from ``now``
        now: Current time, defaults to the wall clock
        latest_instance: Series-index lookup returning the latest generated
            instance for a template id. Defaults to scanning ``project.tasks``.
        max_instances: Per-template ceiling for a single call

    Returns:
        Copy of ``project`` with the new instances appended
    """
    now = _as_utc(now) if now else _utcnow()
    horizon = now + timedelta(days=days_ahead)
    lookup = latest_instance or (lambda template_id: _latest_instance_in(project.tasks, template_id))

    generated: list[TaskRecord] = []
    for template in project.tasks:
        if not _is_template(template):
            continue

        pattern = template.recurrence_pattern
        base_number = template.occurrence_number or 1
        latest = lookup(template.id)
        cursor = template
        if latest is not None:
            cursor = template.model_copy(
                update={
                    "due_date": latest.due_date or template.due_date,
                    "occurrence_number": latest.occurrence_number or base_number,
                }
            )

        created = 0
        while created < max_instances:
            current_number = cursor.occurrence_number or base_number
            if has_series_ended(pattern, current_number + 1 - base_number, now=now):
                break

            anchor = _as_utc(cursor.due_date) if cursor.due_date else now
            next_date = compute_next_occurrence(anchor, pattern, current_number)
            if next_date <= anchor:
                logger.warning(f"Recurring template {template.id} does not advance; skipping")
                break
            if next_date > horizon:
                break

            instance = generate_next_instance(cursor, now=now)
            generated.append(instance)
            created += 1
            cursor = cursor.model_copy(
                update={
                    "due_date": instance.due_date,
                    "occurrence_number": instance.occurrence_number,
                }
            )

        if created:
            logger.debug(f"Generated {created} instance(s) for recurring template {template.id}")

    return project.model_copy(update={"tasks": [*project.tasks, *generated]})


def get_next_occurrences_preview(
    template: TaskRecord,
    count: int = DEFAULT_PREVIEW_COUNT,
    *,
    now: datetime | None = None,
) -> list[OccurrencePreview]:
    """Upcoming occurrence dates for display; creates no tasks."""
    if not _is_template(template):
        return []

    now = _as_utc(now) if now else _utcnow()
    pattern = template.recurrence_pattern
    base_number = template.occurrence_number or 1
    current_date = _as_utc(template.due_date) if template.due_date else now

    preview: list[OccurrencePreview] = []
    for position in range(1, count + 1):
        if has_series_ended(pattern, position, now=now):
            break
        current_number = base_number + position - 1
        next_date = compute_next_occurrence(current_date, pattern, current_number)
        if next_date <= current_date:
            break
        preview.append(OccurrencePreview(date=next_date, occurrence_number=current_number + 1))
        current_date = next_date

    return preview


def get_upcoming_dates(
    pattern: RecurrencePattern,
    from_date: datetime,
    look_ahead_days: int = DEFAULT_DAYS_AHEAD,
) -> list[datetime]:
    """Occurrence dates from ``from_date`` (inclusive) within the look-ahead window."""
    start = _as_utc(from_date)
    window_end = start + timedelta(days=look_ahead_days)
    end_date = pattern.end_datetime()
    limit = pattern.max_occurrences or DEFAULT_MAX_INSTANCES

    upcoming: list[datetime] = []
    current = start
    while len(upcoming) < limit and current < window_end:
        if end_date is not None and current > end_date:
            break
        upcoming.append(current)
        next_date = compute_next_occurrence(current, pattern, len(upcoming))
        if next_date <= current:
            break
        current = next_date

    return upcoming


def should_generate_instance(
    pattern: RecurrencePattern,
    last_generated: datetime | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    """True when nothing was generated yet or the next occurrence is due."""
    if last_generated is None:
        return True
    current = _as_utc(now) if now else _utcnow()
    return current >= compute_next_occurrence(last_generated, pattern)


def validate_pattern(pattern: RecurrencePattern) -> PatternValidation:
    """Structural check of a pattern; reports the first violation found."""
    if not pattern.frequency:
        return PatternValidation(valid=False, error="Frequency is required")

    if pattern.interval is not None and pattern.interval < 1:
        return PatternValidation(valid=False, error="Interval must be at least 1")

    if pattern.days_of_week and any(day < 0 or day > 6 for day in pattern.days_of_week):
        return PatternValidation(valid=False, error="Days of week must be between 0-6")

    if pattern.day_of_month is not None and not 1 <= pattern.day_of_month <= 31:
        return PatternValidation(valid=False, error="Day of month must be between 1-31")

    if pattern.end_date:
        try:
            pattern.end_datetime()
        except (ValueError, OverflowError):
            return PatternValidation(valid=False, error="Invalid end date")

    if pattern.max_occurrences is not None and pattern.max_occurrences < 1:
        return PatternValidation(valid=False, error="Max occurrences must be at least 1")

    return PatternValidation(valid=True)


def ordinal_suffix(number: int) -> str:
    if number % 100 in (11, 12, 13):
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")


def _frequency_clause(pattern: RecurrencePattern) -> str:
    step = pattern.step
    if pattern.frequency not in _FREQUENCY_UNITS:
        return f"Every {pattern.frequency}" if step == 1 else f"Every {step} {pattern.frequency}s"

    unit, multiplier = _FREQUENCY_UNITS[pattern.frequency]
    amount = step * multiplier
    if amount == 1:
        return f"Every {unit}"
    return f"Every {amount} {unit}s"


def describe_pattern(pattern: RecurrencePattern) -> str:
    """Human-readable summary, e.g. "Every 2 weeks on Mon, Wed until 12/31/2025 (10 times)"."""
    description = _frequency_clause(pattern)

    if pattern.days_of_week:
        days = sorted({day for day in pattern.days_of_week if 0 <= day <= 6})
        description += " on " + ", ".join(WEEKDAY_ABBREVIATIONS[day] for day in days)

    if pattern.day_of_month:
        description += f" on the {pattern.day_of_month}{ordinal_suffix(pattern.day_of_month)}"

    if pattern.end_date:
        end_date = pattern.end_datetime()
        description += f" until {end_date.month}/{end_date.day}/{end_date.year}"

    if pattern.max_occurrences:
        description += f" ({pattern.max_occurrences} times)"

    return description

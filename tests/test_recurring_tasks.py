from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from projectflow.models.project import Project
from projectflow.models.task import RecurringTaskInstance, Task
from projectflow.schemas.recurrence import RecurrencePattern
from projectflow.services import recurring_tasks
from projectflow.services.recurrence import NotARecurringTemplateError, SeriesEndedError
from projectflow.services.recurring_tasks import InvalidPatternError, TemplateDeletePolicy

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _seed(db: Session, pattern: dict | None = None) -> tuple[Project, Task]:
    project = Project(name="Platform team")
    db.add(project)
    db.flush()
    template = Task(
        project_id=project.id,
        name="Rotate on-call",
        priority="high",
        assignee_id="member-3",
        due_date=datetime(2025, 1, 1),
        is_recurring=True,
        recurrence_pattern=pattern or {"frequency": "weekly", "interval": 1},
        occurrence_number=1,
    )
    db.add(template)
    db.commit()
    return project, template


def _instances(db: Session, template: Task) -> list[Task]:
    return (
        db.query(Task)
        .filter(Task.original_task_id == template.id)
        .order_by(Task.occurrence_number.asc())
        .all()
    )


def test_generate_due_instances_persists_tasks_and_index(db_session: Session):
    project, template = _seed(db_session)

    created = recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    assert [t.due_date for t in created] == [
        datetime(2025, 1, 8), datetime(2025, 1, 15), datetime(2025, 1, 22), datetime(2025, 1, 29),
    ]
    assert all(t.name == "Rotate on-call" and t.assignee_id == "member-3" for t in created)
    assert all(not t.is_recurring and t.recurrence_pattern is None for t in created)
    index = recurring_tasks.get_instances(db_session, template.id)
    assert [row.occurrence_number for row in index] == [2, 3, 4, 5]
    assert {row.generated_task_id for row in index} == {t.id for t in created}


def test_generate_due_instances_twice_creates_nothing_new(db_session: Session):
    project, template = _seed(db_session)

    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)
    second = recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    assert second == []
    assert len(_instances(db_session, template)) == 4


def test_deleted_instance_is_not_generated_again(db_session: Session):
    project, template = _seed(db_session)
    created = recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    recurring_tasks.delete_task(db_session, created[-1])
    again = recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    assert again == []
    assert len(_instances(db_session, template)) == 3
    latest = recurring_tasks.get_latest_instance(db_session, template.id)
    assert latest.occurrence_number == 5
    assert latest.due_date == datetime(2025, 1, 29, tzinfo=timezone.utc)


def test_generate_due_instances_honours_max_occurrences(db_session: Session):
    project, template = _seed(db_session, {"frequency": "daily", "max_occurrences": 3})

    created = recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    assert [t.occurrence_number for t in created] == [2, 3, 4]


def test_generate_next_for_template_follows_latest_instance(db_session: Session):
    project, template = _seed(db_session)
    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    task = recurring_tasks.generate_next_for_template(db_session, template)

    assert task.occurrence_number == 6
    assert task.due_date == datetime(2025, 2, 5)
    assert task.original_task_id == template.id


def test_generate_next_for_template_rejects_plain_task(db_session: Session):
    project, template = _seed(db_session)
    plain = Task(project_id=project.id, name="One-off")
    db_session.add(plain)
    db_session.commit()

    with pytest.raises(NotARecurringTemplateError):
        recurring_tasks.generate_next_for_template(db_session, plain)


def test_generate_next_for_template_stops_at_max_occurrences(db_session: Session):
    project, template = _seed(db_session, {"frequency": "weekly", "max_occurrences": 1})

    first = recurring_tasks.generate_next_for_template(db_session, template, now=NOW)
    with pytest.raises(SeriesEndedError):
        recurring_tasks.generate_next_for_template(db_session, template, now=NOW)

    assert first.occurrence_number == 2
    assert [t.occurrence_number for t in _instances(db_session, template)] == [2]


def test_generate_next_for_template_stops_after_end_date(db_session: Session):
    project, template = _seed(
        db_session, {"frequency": "weekly", "end_date": "2024-12-31T00:00:00Z"}
    )

    with pytest.raises(SeriesEndedError):
        recurring_tasks.generate_next_for_template(db_session, template, now=NOW)

    assert _instances(db_session, template) == []


def test_generate_next_for_template_agrees_with_bulk_cap(db_session: Session):
    project, template = _seed(db_session, {"frequency": "daily", "max_occurrences": 3})
    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    with pytest.raises(SeriesEndedError):
        recurring_tasks.generate_next_for_template(db_session, template, now=NOW)


def test_store_instance_skips_indexed_occurrence(db_session: Session):
    project, template = _seed(db_session)
    first = recurring_tasks.generate_next_for_template(db_session, template)
    record = recurring_tasks.task_to_record(first)

    assert recurring_tasks.store_instance(db_session, template, record) is None


def test_delete_template_orphans_instances_by_default(db_session: Session):
    project, template = _seed(db_session)
    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)
    template_id = template.id

    removed = recurring_tasks.delete_task(db_session, template, TemplateDeletePolicy.ORPHAN)

    assert removed == 0
    remaining = db_session.query(Task).filter(Task.original_task_id == template_id).all()
    assert len(remaining) == 4
    assert db_session.query(RecurringTaskInstance).count() == 0


def test_delete_template_cascade_removes_instances(db_session: Session):
    project, template = _seed(db_session)
    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)
    template_id = template.id

    removed = recurring_tasks.delete_task(db_session, template, TemplateDeletePolicy.CASCADE)

    assert removed == 4
    assert db_session.query(Task).filter(Task.original_task_id == template_id).count() == 0


def test_delete_all_instances_resets_series(db_session: Session):
    project, template = _seed(db_session)
    recurring_tasks.generate_due_instances(db_session, project, days_ahead=30, now=NOW)

    count = recurring_tasks.delete_all_instances(db_session, template.id)

    assert count == 4
    assert recurring_tasks.get_latest_instance(db_session, template.id) is None


def test_update_pattern_validates_and_marks_template(db_session: Session):
    project, _ = _seed(db_session)
    task = Task(project_id=project.id, name="Publish changelog")
    db_session.add(task)
    db_session.commit()

    with pytest.raises(InvalidPatternError):
        recurring_tasks.update_pattern(db_session, task, RecurrencePattern(frequency="weekly", interval=0))

    updated = recurring_tasks.update_pattern(
        db_session, task, RecurrencePattern(frequency="monthly", day_of_month=2)
    )
    assert updated.is_recurring is True
    assert updated.recurrence_pattern == {"frequency": "monthly", "day_of_month": 2}
    assert updated.occurrence_number == 1


def test_generate_for_all_projects_reports_counts(db_session: Session):
    project, _ = _seed(db_session, {"frequency": "daily", "max_occurrences": 2})

    results = recurring_tasks.generate_due_instances_for_all_projects(db_session, days_ahead=3650)

    assert results == {project.id: 2}

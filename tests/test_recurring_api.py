from datetime import datetime, timedelta, timezone

from projectflow.schemas.recurrence import RecurrencePattern
from projectflow.schemas.task import TaskRecord
from projectflow.services import recurrence


def _create_template(client, **pattern):
    project = client.post("/projects/", json={"name": "Website relaunch"}).json()
    due = datetime.now(timezone.utc) - timedelta(days=1)
    response = client.post(
        "/tasks/",
        json={
            "project_id": project["id"],
            "name": "Status report",
            "due_date": due.isoformat(),
            "is_recurring": True,
            "recurrence_pattern": pattern or {"frequency": "weekly"},
        },
    )
    assert response.status_code == 201
    return project, response.json()


def test_create_template_rejects_invalid_pattern(client):
    project = client.post("/projects/", json={"name": "Website relaunch"}).json()

    response = client.post(
        "/tasks/",
        json={
            "project_id": project["id"],
            "name": "Status report",
            "is_recurring": True,
            "recurrence_pattern": {"frequency": "weekly", "interval": 0},
        },
    )

    assert response.status_code == 422
    assert response.json()["detail"] == "Interval must be at least 1"


def test_generate_due_is_idempotent(client):
    project, template = _create_template(client)

    first = client.post(f"/projects/{project['id']}/generate-due", params={"days_ahead": 30})
    second = client.post(f"/projects/{project['id']}/generate-due", params={"days_ahead": 30})

    assert first.status_code == 200
    generated = first.json()["generated"]
    assert len(generated) >= 4
    assert all(task["original_task_id"] == template["id"] for task in generated)
    assert second.json()["generated"] == []

    instances = client.get(f"/recurring/{template['id']}/instances").json()
    assert [row["occurrence_number"] for row in instances] == list(range(2, 2 + len(generated)))


def test_next_instance_and_non_template(client):
    project, template = _create_template(client)
    plain = client.post("/tasks/", json={"project_id": project["id"], "name": "Kickoff"}).json()

    created = client.post(f"/recurring/{template['id']}/next")
    rejected = client.post(f"/recurring/{plain['id']}/next")

    assert created.status_code == 201
    assert created.json()["occurrence_number"] == 2
    assert rejected.status_code == 400


def test_preview_returns_requested_count(client):
    _, template = _create_template(client, frequency="daily", max_occurrences=10)

    response = client.get(f"/recurring/{template['id']}/preview", params={"count": 3})

    assert response.status_code == 200
    assert [item["occurrence_number"] for item in response.json()] == [2, 3, 4]


def test_validate_and_describe(client):
    invalid = client.post("/recurring/validate", json={"frequency": "weekly", "interval": 0})
    valid = client.post("/recurring/validate", json={"frequency": "weekly", "interval": 1})
    described = client.post("/recurring/describe", json={"frequency": "monthly", "day_of_month": 22})

    assert invalid.json() == {"valid": False, "error": "Interval must be at least 1"}
    assert valid.json()["valid"] is True
    assert described.json()["description"] == "Every month on the 22nd"


def test_next_date_and_upcoming(client):
    pattern = {"frequency": "daily", "interval": 2}

    next_date = client.post(
        "/recurring/next-date",
        json={"pattern": pattern, "from_date": "2025-01-01T00:00:00Z"},
    ).json()
    upcoming = client.post(
        "/recurring/upcoming",
        json={"pattern": pattern, "from_date": "2025-01-01T00:00:00Z", "look_ahead_days": 6},
    ).json()

    assert next_date["date"].startswith("2025-01-03T00:00:00")
    assert next_date["series_ended"] is False
    assert len(upcoming["upcoming"]) == 3


def test_update_pattern_and_delete_instances(client):
    project, template = _create_template(client)
    client.post(f"/projects/{project['id']}/generate-due", params={"days_ahead": 14})

    rejected = client.put(f"/recurring/{template['id']}/pattern", json={"frequency": "daily", "day_of_month": 40})
    accepted = client.put(f"/recurring/{template['id']}/pattern", json={"frequency": "daily"})
    deleted = client.delete(f"/recurring/{template['id']}/instances")

    assert rejected.status_code == 422
    assert accepted.json()["recurrence_pattern"]["frequency"] == "daily"
    assert deleted.status_code == 204
    assert client.get(f"/recurring/{template['id']}/instances").json() == []


def test_delete_template_with_cascade_policy(client):
    project, template = _create_template(client)
    client.post(f"/projects/{project['id']}/generate-due", params={"days_ahead": 14})

    response = client.delete(f"/tasks/{template['id']}", params={"policy": "cascade"})

    assert response.status_code == 204
    remaining = client.get("/tasks/", params={"project_id": project["id"]}).json()
    assert remaining == []


def test_next_instance_conflicts_once_series_has_ended(client):
    _, template = _create_template(client, frequency="weekly", max_occurrences=1)

    responses = [client.post(f"/recurring/{template['id']}/next") for _ in range(3)]

    assert [r.status_code for r in responses] == [201, 409, 409]
    assert responses[1].json()["detail"] == "Recurring series has ended"
    instances = client.get(f"/recurring/{template['id']}/instances").json()
    assert [row["occurrence_number"] for row in instances] == [2]


def test_next_date_and_upcoming_reject_malformed_end_date(client):
    pattern = {"frequency": "weekly", "end_date": "not-a-date"}

    next_date = client.post(
        "/recurring/next-date",
        json={"pattern": pattern, "from_date": "2025-01-01T00:00:00Z"},
    )
    upcoming = client.post(
        "/recurring/upcoming",
        json={"pattern": {**pattern, "end_date": "garbage"}, "from_date": "2025-01-01T00:00:00Z"},
    )

    assert next_date.status_code == 422
    assert next_date.json()["detail"] == "Invalid end date"
    assert upcoming.status_code == 422
    assert upcoming.json()["detail"] == "Invalid end date"


def test_next_date_series_ended_matches_generated_instances(client):
    pattern = {"frequency": "weekly", "max_occurrences": 3}
    template = TaskRecord(
        id="template-1",
        name="Status report",
        due_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        is_recurring=True,
        recurrence_pattern=RecurrencePattern(**pattern),
        occurrence_number=1,
    )
    generated = recurrence.generate_instances(
        template, datetime(2025, 12, 31, tzinfo=timezone.utc)
    )
    assert [i.occurrence_number for i in generated] == [2, 3, 4]

    last = client.post(
        "/recurring/next-date",
        json={"pattern": pattern, "from_date": "2025-01-15T00:00:00Z", "occurrence_number": 3},
    ).json()
    beyond = client.post(
        "/recurring/next-date",
        json={"pattern": pattern, "from_date": "2025-01-22T00:00:00Z", "occurrence_number": 4},
    ).json()

    assert last["date"].startswith("2025-01-22T00:00:00")
    assert last["series_ended"] is False
    assert beyond["series_ended"] is True


def test_next_date_counts_from_template_base_occurrence(client):
    pattern = {"frequency": "daily", "max_occurrences": 2}

    response = client.post(
        "/recurring/next-date",
        json={
            "pattern": pattern,
            "from_date": "2025-01-01T00:00:00Z",
            "occurrence_number": 6,
            "base_occurrence_number": 5,
        },
    ).json()
    before_base = client.post(
        "/recurring/next-date",
        json={"pattern": pattern, "occurrence_number": 2, "base_occurrence_number": 5},
    )

    assert response["series_ended"] is False
    assert before_base.status_code == 422


def test_should_generate(client):
    pattern = {"frequency": "daily"}

    first = client.post("/recurring/should-generate", json={"pattern": pattern})
    stale = client.post(
        "/recurring/should-generate",
        json={"pattern": pattern, "last_generated": "2020-01-01T00:00:00Z"},
    )
    fresh = client.post(
        "/recurring/should-generate",
        json={"pattern": pattern, "last_generated": datetime.now(timezone.utc).isoformat()},
    )
    invalid = client.post(
        "/recurring/should-generate",
        json={"pattern": {"frequency": "daily", "interval": 0}},
    )

    assert first.json() == {"should_generate": True}
    assert stale.json() == {"should_generate": True}
    assert fresh.json() == {"should_generate": False}
    assert invalid.status_code == 422

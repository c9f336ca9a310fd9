"""
Execution API Tests

Interactive execution through the HTTP routes, backed by SQLite.
"""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from models.test_execution import TestExecution

BASE = "/api/v1/executions"


def test_requires_authentication(client: TestClient, active_case):
    response = client.get(f"{BASE}/{active_case.id}")
    assert response.status_code == 401


def test_unrun_case_returns_default(client: TestClient, auth_headers, active_case):
    response = client.get(f"{BASE}/{active_case.id}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "not_run"
    assert data["id"] is None
    assert data["version"] is None
    assert data["completed_steps"] == []
    assert data["locked"] is False


def test_toggle_step_starts_execution(client: TestClient, auth_headers, active_case, db: Session):
    response = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "in_progress"
    assert data["completed_steps"] == [1]
    assert data["started_at"].endswith("Z")
    assert data["test_environment"] == "staging"
    assert data["version"] == 1

    row = db.query(TestExecution).filter(TestExecution.test_case_id == active_case.id).one()
    assert row.session_id is None
    assert row.executed_by == "user-1"


def test_toggle_twice_removes_step(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)
    response = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["completed_steps"] == []
    assert response.json()["status"] == "in_progress"
    assert response.json()["version"] == 2


def test_toggle_unknown_step_is_rejected(client: TestClient, auth_headers, active_case):
    response = client.post(f"{BASE}/{active_case.id}/steps/9/toggle", headers=auth_headers)
    assert response.status_code == 400


def test_fail_step_records_reason(client: TestClient, auth_headers, active_case):
    response = client.post(
        f"{BASE}/{active_case.id}/steps/2/fail",
        headers=auth_headers,
        json={"reason": "Submit button disabled"}
    )

    assert response.status_code == 200
    assert response.json()["failed_steps"] == [{"step_number": 2, "failure_reason": "Submit button disabled"}]


def test_mark_passed_with_shortcut(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    response = client.post(f"{BASE}/{active_case.id}/result", headers=auth_headers, json={"status": "P"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "passed"
    assert data["completed_at"] is not None
    assert data["duration_minutes"] == 0
    assert data["locked"] is True


def test_failed_without_details_is_not_saved(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    response = client.post(f"{BASE}/{active_case.id}/result", headers=auth_headers, json={"status": "failed"})
    assert response.status_code == 422

    current = client.get(f"{BASE}/{active_case.id}", headers=auth_headers).json()
    assert current["status"] == "in_progress"
    assert current["version"] == 1


def test_failed_with_details(client: TestClient, auth_headers, active_case):
    response = client.post(
        f"{BASE}/{active_case.id}/result",
        headers=auth_headers,
        json={
            "status": "failed",
            "details": {
                "environment": "production",
                "browser": "Firefox 128",
                "os_version": "Windows 11",
                "notes": "Crashed on submit",
                "failure_reason": "500 from API"
            }
        }
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "failed"
    assert data["test_environment"] == "production"
    assert data["browser"] == "Firefox 128"
    assert data["failure_reason"] == "500 from API"


def test_blocked_keeps_completed_at_empty(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    response = client.post(
        f"{BASE}/{active_case.id}/result",
        headers=auth_headers,
        json={"status": "B", "details": {"notes": "env down"}}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "blocked"
    assert response.json()["completed_at"] is None
    assert response.json()["notes"] == "env down"


def test_unknown_result_status_is_rejected(client: TestClient, auth_headers, active_case):
    response = client.post(f"{BASE}/{active_case.id}/result", headers=auth_headers, json={"status": "done"})
    assert response.status_code == 422


def test_locked_result_rejects_changes_until_reset(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/result", headers=auth_headers, json={"status": "passed"})

    response = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)
    assert response.status_code == 409

    response = client.post(f"{BASE}/{active_case.id}/reset", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "not_run"
    assert data["notes"] == ""
    assert data["started_at"] is None
    assert data["completed_at"] is None

    response = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)
    assert response.status_code == 200


def test_stale_version_returns_conflict(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)
    client.post(f"{BASE}/{active_case.id}/steps/2/toggle", headers=auth_headers)

    response = client.post(
        f"{BASE}/{active_case.id}/steps/3/toggle",
        headers=auth_headers,
        json={"expected_version": 1}
    )

    assert response.status_code == 409
    assert response.json()["detail"]["current_version"] == 2


def test_save_progress_updates_notes(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers)

    response = client.patch(
        f"{BASE}/{active_case.id}",
        headers=auth_headers,
        json={"notes": "Slow on first load", "expected_version": 1}
    )

    assert response.status_code == 200
    assert response.json()["notes"] == "Slow on first load"
    assert response.json()["completed_steps"] == [1]
    assert response.json()["version"] == 2


def test_save_progress_cannot_change_locked_result(client: TestClient, auth_headers, active_case):
    client.post(f"{BASE}/{active_case.id}/result", headers=auth_headers, json={"status": "passed"})

    response = client.patch(f"{BASE}/{active_case.id}", headers=auth_headers, json={"status": "failed"})

    assert response.status_code == 409


def test_other_users_case_is_not_found(client: TestClient, other_auth_headers, active_case):
    response = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=other_auth_headers)
    assert response.status_code == 404


def test_list_executions_with_stats(client: TestClient, auth_headers, make_test_case):
    first = make_test_case(title="Checkout")
    second = make_test_case(title="Search")
    make_test_case(title="Logout")

    client.post(f"{BASE}/{first.id}/result", headers=auth_headers, json={"status": "passed"})
    client.post(f"{BASE}/{second.id}/steps/1/toggle", headers=auth_headers)

    response = client.get(BASE, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["stats"] == {
        "total": 3,
        "passed": 1,
        "failed": 0,
        "blocked": 0,
        "skipped": 0,
        "in_progress": 1,
        "not_run": 1,
    }
    assert data["executions"][first.id]["status"] == "passed"

    response = client.get(BASE, headers=auth_headers, params={"test_case_ids": [second.id]})
    assert list(response.json()["executions"]) == [second.id]


def test_save_progress_cannot_set_not_run(client: TestClient, auth_headers, active_case):
    started = client.post(f"{BASE}/{active_case.id}/steps/1/toggle", headers=auth_headers).json()

    response = client.patch(f"{BASE}/{active_case.id}", headers=auth_headers, json={"status": "not_run"})

    assert response.status_code == 409
    data = client.get(f"{BASE}/{active_case.id}", headers=auth_headers).json()
    assert data["status"] == "in_progress"
    assert data["completed_steps"] == [1]
    assert data["started_at"] == started["started_at"]


def test_list_executions_is_paginated(client: TestClient, auth_headers, make_test_case):
    cases = [make_test_case(title=f"Case {n}") for n in range(3)]
    client.post(f"{BASE}/{cases[0].id}/result", headers=auth_headers, json={"status": "passed"})

    response = client.get(BASE, headers=auth_headers, params={"page_size": 2})

    assert response.status_code == 200
    data = response.json()
    assert len(data["executions"]) == 2
    assert data["total"] == 3
    assert data["total_pages"] == 2
    assert data["stats"]["total"] == 3
    assert data["stats"]["passed"] == 1

    second_page = client.get(BASE, headers=auth_headers, params={"page_size": 2, "page": 2}).json()
    assert len(second_page["executions"]) == 1
    assert set(data["executions"]) | set(second_page["executions"]) == {case.id for case in cases}

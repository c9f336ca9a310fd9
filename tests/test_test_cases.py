"""
Test Case Management Tests

CRUD, search, pagination and projects.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from models.test_execution import TestExecution
from services.test_case_service import normalize_steps

BASE = "/api/v1/test-cases"


def new_case(client, headers, **fields):
    payload = {
        "title": "Reset password",
        "description": "User can reset a forgotten password",
        "test_steps": [
            {"action": "Open forgot password", "expected": "Form shown"},
            {"action": "Submit email", "expected": "Email sent"},
        ],
    }
    payload.update(fields)
    response = client.post(BASE, headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_normalize_steps_renumbers_in_order():
    steps = normalize_steps([
        {"step_number": 7, "action": " Open app ", "expected": "Home"},
        {"action": "Tap login"},
    ])

    assert steps == [
        {"step_number": 1, "action": "Open app", "expected": "Home"},
        {"step_number": 2, "action": "Tap login", "expected": ""},
    ]


def test_normalize_steps_requires_action():
    with pytest.raises(ValueError):
        normalize_steps([{"action": "  "}])


def test_create_test_case(client: TestClient, auth_headers):
    data = new_case(client, auth_headers, priority="high")

    assert data["title"] == "Reset password"
    assert data["priority"] == "high"
    assert data["status"] == "draft"
    assert data["test_type"] == "functional"
    assert [step["step_number"] for step in data["test_steps"]] == [1, 2]
    assert data["created_at"].endswith("Z")


def test_create_rejects_blank_title_and_empty_step(client: TestClient, auth_headers):
    response = client.post(BASE, headers=auth_headers, json={"title": "  "})
    assert response.status_code == 400

    response = client.post(
        BASE, headers=auth_headers,
        json={"title": "Valid", "test_steps": [{"action": ""}]}
    )
    assert response.status_code == 400


def test_list_paginates_newest_first(client: TestClient, auth_headers):
    for index in range(12):
        new_case(client, auth_headers, title=f"Case {index}")

    first_page = client.get(BASE, headers=auth_headers).json()
    assert first_page["total"] == 12
    assert first_page["page_size"] == 10
    assert first_page["total_pages"] == 2
    assert len(first_page["items"]) == 10

    second_page = client.get(BASE, headers=auth_headers, params={"page": 2}).json()
    assert len(second_page["items"]) == 2


def test_list_search_and_status_filter(client: TestClient, auth_headers):
    new_case(client, auth_headers, title="Checkout with coupon", status="active")
    new_case(client, auth_headers, title="Checkout as guest")
    new_case(client, auth_headers, title="Profile photo upload", description="avatar")

    found = client.get(BASE, headers=auth_headers, params={"search": "checkout"}).json()
    assert found["total"] == 2

    found = client.get(BASE, headers=auth_headers, params={"search": "AVATAR"}).json()
    assert [item["title"] for item in found["items"]] == ["Profile photo upload"]

    active = client.get(BASE, headers=auth_headers, params={"status": "active"}).json()
    assert [item["title"] for item in active["items"]] == ["Checkout with coupon"]


def test_cases_are_private_to_their_owner(client: TestClient, auth_headers, other_auth_headers):
    data = new_case(client, auth_headers)

    assert client.get(f"{BASE}/{data['id']}", headers=other_auth_headers).status_code == 404
    assert client.get(BASE, headers=other_auth_headers).json()["total"] == 0


def test_update_only_changes_sent_fields(client: TestClient, auth_headers):
    data = new_case(client, auth_headers, priority="low")

    response = client.put(f"{BASE}/{data['id']}", headers=auth_headers, json={"title": "Reset password via SMS"})

    assert response.status_code == 200
    assert response.json()["title"] == "Reset password via SMS"
    assert response.json()["priority"] == "low"
    assert len(response.json()["test_steps"]) == 2


def test_update_rejects_blank_title(client: TestClient, auth_headers):
    data = new_case(client, auth_headers)

    response = client.put(f"{BASE}/{data['id']}", headers=auth_headers, json={"title": ""})

    assert response.status_code == 400


def test_change_status(client: TestClient, auth_headers):
    data = new_case(client, auth_headers)

    response = client.patch(f"{BASE}/{data['id']}/status", headers=auth_headers, json={"status": "active"})

    assert response.status_code == 200
    assert response.json()["status"] == "active"


def test_active_case_must_be_archived_before_delete(client: TestClient, auth_headers, db: Session):
    data = new_case(client, auth_headers, status="active")
    client.post(f"/api/v1/executions/{data['id']}/steps/1/toggle", headers=auth_headers)

    assert client.delete(f"{BASE}/{data['id']}", headers=auth_headers).status_code == 409

    client.patch(f"{BASE}/{data['id']}/status", headers=auth_headers, json={"status": "archived"})
    assert client.delete(f"{BASE}/{data['id']}", headers=auth_headers).status_code == 204

    assert client.get(f"{BASE}/{data['id']}", headers=auth_headers).status_code == 404
    assert db.query(TestExecution).count() == 0


def test_bulk_create(client: TestClient, auth_headers):
    response = client.post(
        f"{BASE}/bulk",
        headers=auth_headers,
        json={"test_cases": [
            {"title": "Generated 1", "test_steps": [{"action": "Do it"}]},
            {"title": "Generated 2", "is_edge_case": True},
        ]}
    )

    assert response.status_code == 201
    assert response.json()["created"] == 2
    assert response.json()["items"][1]["is_edge_case"] is True


def test_bulk_create_is_all_or_nothing(client: TestClient, auth_headers):
    response = client.post(
        f"{BASE}/bulk",
        headers=auth_headers,
        json={"test_cases": [{"title": "Fine"}, {"title": " "}]}
    )

    assert response.status_code == 400
    assert client.get(BASE, headers=auth_headers).json()["total"] == 0


def test_projects_group_test_cases(client: TestClient, auth_headers, other_auth_headers):
    response = client.post("/api/v1/projects", headers=auth_headers, json={"name": "Web", "color": "#3366ff"})
    assert response.status_code == 201
    project = response.json()

    data = new_case(client, auth_headers, project_id=project["id"])
    new_case(client, auth_headers, title="No project")

    assert data["project"]["name"] == "Web"
    filtered = client.get(BASE, headers=auth_headers, params={"project_id": project["id"]}).json()
    assert [item["id"] for item in filtered["items"]] == [data["id"]]

    assert [p["name"] for p in client.get("/api/v1/projects", headers=auth_headers).json()] == ["Web"]
    assert client.get("/api/v1/projects", headers=other_auth_headers).json() == []


def test_unknown_project_is_rejected(client: TestClient, auth_headers):
    response = client.post(BASE, headers=auth_headers, json={"title": "Orphan", "project_id": "nope"})
    assert response.status_code == 400

"""Tests for the Flask REST API."""
import pytest


def register(client, email="alice@example.com", username="alice", password="secret"):
    return client.post("/api/auth/register", json={
        "email": email, "username": username, "password": password,
    })


@pytest.fixture
def logged_in(client):
    response = register(client)
    assert response.status_code == 200
    return response.get_json()


def test_register_sets_http_only_session_cookie(client):
    response = register(client)
    assert response.status_code == 200
    body = response.get_json()
    assert body["username"] == "alice"
    assert body["plan"] == "trial"
    assert "password" not in body and "password_hash" not in body

    cookie = response.headers.get("Set-Cookie")
    assert "HttpOnly" in cookie
    assert "SameSite=Lax" in cookie


def test_register_duplicate_is_400(client, logged_in):
    response = register(client, username="other")
    assert response.status_code == 400
    assert "email" in response.get_json()["msg"]


def test_me_requires_session(client):
    assert client.get("/api/auth/me").status_code == 401


def test_login_logout_cycle(client, logged_in):
    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
    assert bad.status_code == 400
    assert bad.get_json()["msg"] == "Invalid credentials"

    ok = client.post("/api/auth/login", json={"username": "alice", "password": "secret"})
    assert ok.status_code == 200
    assert client.get("/api/auth/me").get_json()["_id"] == logged_in["_id"]


def test_tasks_require_authentication(client):
    assert client.get("/api/tasks").status_code == 401
    assert client.post("/api/tasks", json={"text": "x"}).status_code == 401


def test_task_endpoints(client, logged_in):
    created = client.post("/api/tasks", json={"text": "Write report", "pomodoros": 2})
    assert created.status_code == 201
    task = created.get_json()
    assert task["pomodorosCompleted"] == 0
    assert task["completed"] is False

    task_id = task["_id"]
    client.put(f"/api/tasks/{task_id}/incrementPomodoro")
    task = client.put(f"/api/tasks/{task_id}/incrementPomodoro").get_json()
    assert task["pomodorosCompleted"] == 2
    assert task["completed"] is True

    task = client.put(f"/api/tasks/{task_id}/toggleCompleted").get_json()
    assert task["completed"] is False

    task = client.put(f"/api/tasks/{task_id}", json={"text": "Rewrite report"}).get_json()
    assert task["text"] == "Rewrite report"

    assert client.delete(f"/api/tasks/{task_id}").status_code == 200
    assert client.get("/api/tasks").get_json() == []


def test_task_error_statuses(flask_app, client, logged_in):
    task_id = client.post("/api/tasks", json={"text": "mine"}).get_json()["_id"]

    assert client.put("/api/tasks/bad-id", json={"text": "x"}).status_code == 400
    assert client.put(f"/api/tasks/{'a' * 32}", json={"text": "x"}).status_code == 404
    assert client.post("/api/tasks", json={"text": "   "}).status_code == 400

    other = flask_app.test_client()
    register(other, email="bob@example.com", username="bob")
    assert other.put(f"/api/tasks/{task_id}", json={"text": "x"}).status_code == 403
    assert other.delete(f"/api/tasks/{task_id}").status_code == 403


def test_projects_gated_by_plan(client, server_db, logged_in):
    assert client.post("/api/projects", json={"name": "Work"}).status_code == 201

    server_db.set_plan(logged_in["_id"], "free")
    denied = client.post("/api/projects", json={"name": "Home"})
    assert denied.status_code == 403
    assert "trial or plus" in denied.get_json()["msg"]

    # free users can still read
    listed = client.get("/api/projects")
    assert listed.status_code == 200
    assert [p["name"] for p in listed.get_json()] == ["Work"]


def test_project_endpoints(client, logged_in):
    project = client.post("/api/projects", json={"name": "Work"}).get_json()
    assert client.post("/api/projects", json={"name": "Work"}).status_code == 400

    task = client.post("/api/tasks", json={"text": "t", "projectId": project["_id"]}).get_json()
    assert task["projectId"] == project["_id"]

    renamed = client.put(f"/api/projects/{project['_id']}", json={"name": "Work"})
    assert renamed.status_code == 200

    deleted = client.delete(f"/api/projects/{project['_id']}")
    assert deleted.get_json()["detachedTasks"] == 1
    assert client.get("/api/tasks").get_json()[0]["projectId"] is None
    assert client.get("/api/projects").get_json() == []


def test_cycle_increment(client, logged_in):
    assert client.put("/api/users/cycles/increment").get_json() == {"cycles": 1}
    assert client.put("/api/users/cycles/increment").get_json() == {"cycles": 2}
    assert client.get("/api/auth/me").get_json()["cycles"] == 2


def test_reports_are_static(client, logged_in):
    report = client.get("/api/reports").get_json()
    assert report["summary"]["daysAccessed"] == 23
    assert len(report["rankings"]) == 3

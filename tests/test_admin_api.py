from __future__ import annotations

from pathlib import Path

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from crewloop.admin.app import create_app
from crewloop.backends import FakeBackend
from crewloop.backends.fake import text, tool_use
from crewloop.config import load_settings
from crewloop.runtime import controller
from crewloop.world import EMERGENCY_RESET_TOKEN

pytestmark = pytest.mark.admin


def _env(monkeypatch, tmp_path: Path, token: str | None = None) -> controller.Environment:
    for key in ("CREWLOOP_CHECKPOINT_DIR", "AGENT_CHECKPOINT_DIR", "CREWLOOP_WORKSPACE_ROOT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CREWLOOP_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("CREWLOOP_PROVIDER", "fake")
    if token is None:
        monkeypatch.delenv("CREWLOOP_ADMIN_TOKEN", raising=False)
    else:
        monkeypatch.setenv("CREWLOOP_ADMIN_TOKEN", token)
    return controller.build_environment(load_settings())


def test_admin_token_required(monkeypatch, tmp_path: Path) -> None:
    client = TestClient(create_app(_env(monkeypatch, tmp_path, token="s3cret")))

    assert client.get("/api/world").status_code == 401
    assert client.get("/api/world", headers={"X-Admin-Token": "wrong"}).status_code == 401
    assert client.get("/api/world", headers={"X-Admin-Token": "s3cret"}).status_code == 200


def test_world_controls(monkeypatch, tmp_path: Path) -> None:
    client = TestClient(create_app(_env(monkeypatch, tmp_path)))

    assert client.get("/api/world").json()["world_status"] == "manual"

    paused = client.post("/api/world/pause", json={"reason": "lunch"})
    assert paused.json()["success"]
    assert client.get("/api/world").json()["pause_reason"] == "lunch"

    assert client.post("/api/world/resume", json={"target_status": "paused"}).status_code == 400
    assert client.post("/api/world/resume", json={"target_status": "autonomous"}).status_code == 200
    assert client.post("/api/world/status", json={"status": "semi_auto"}).json()["success"]
    assert client.post("/api/world/status", json={"status": "chaos"}).status_code == 400


def test_team_controls(monkeypatch, tmp_path: Path) -> None:
    client = TestClient(create_app(_env(monkeypatch, tmp_path)))

    teams = client.get("/api/teams").json()["teams"]
    assert len(teams) == 7
    assert teams[0]["runtime"]["status"] == "idle"

    assert client.post("/api/teams/design/pause", json={"reason": "review"}).status_code == 200
    assert client.get("/api/teams/design").json()["paused"]
    assert client.post("/api/teams/design/resume").status_code == 200

    automation = client.post("/api/teams/design/automation", json={"level": "supervised", "allowed_actions": ["execute"]})
    assert automation.json()["allowed_actions"] == ["execute"]
    assert client.post("/api/teams/design/automation", json={"level": "turbo"}).status_code == 400

    triggered = client.post("/api/teams/design/trigger", json={"action_type": "research"})
    assert triggered.json()["action"]["estimated_cost"] == 0.1
    assert client.get("/api/teams/ghost").status_code == 404


def test_run_team_endpoint(monkeypatch, tmp_path: Path) -> None:
    backend = FakeBackend(responses=[tool_use("signal_completion", {"summary": "Shipped"})])
    client = TestClient(create_app(_env(monkeypatch, tmp_path), backend=backend))

    denied = client.post("/api/teams/developer/run", json={"task": "Ship it"})
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "REQUIRES_TRIGGER"

    response = client.post("/api/teams/developer/run", json={"task": "Ship it", "trigger": True})
    assert response.status_code == 200
    body = response.json()
    assert body["completion_summary"] == "Shipped"

    trace = client.get(f"/api/traces/{body['session_id']}").json()
    assert trace["events"][-1]["kind"] == "loop_completed"
    assert client.get("/api/traces/session-unknown").status_code == 404
    assert client.post("/api/teams/ghost/run", json={"task": "x"}).status_code == 404


def test_checkpoint_endpoints(monkeypatch, tmp_path: Path) -> None:
    backend = FakeBackend(responder=lambda request: tool_use("get_tasks"))
    client = TestClient(create_app(_env(monkeypatch, tmp_path), backend=backend))
    run = client.post("/api/teams/legal/run", json={"task": "Audit", "trigger": True, "max_iterations": 1}).json()
    session_id = run["session_id"]

    listed = client.get("/api/checkpoints", params={"team_id": "legal", "resumable": True}).json()
    assert [item["session_id"] for item in listed["checkpoints"]] == [session_id]
    detail = client.get(f"/api/checkpoints/{session_id}").json()
    assert detail["status"] == "interrupted"
    assert client.get("/api/checkpoints/session-nope").status_code == 404

    backend.set_responses([text("Audit complete")])
    resumed = client.post(f"/api/checkpoints/{session_id}/resume", json={"trigger": True, "max_iterations": 3})
    assert resumed.status_code == 200
    assert resumed.json()["completed"]

    again = client.post(f"/api/checkpoints/{session_id}/resume", json={"trigger": True})
    assert again.status_code == 409

    assert client.delete(f"/api/checkpoints/{session_id}").json() == {"deleted": session_id}
    assert client.delete(f"/api/checkpoints/{session_id}").status_code == 404
    cleanup = client.post("/api/checkpoints/cleanup", json={"max_age_hours": 0})
    assert cleanup.json() == {"removed": [], "count": 0}


def test_orchestrate_endpoint(monkeypatch, tmp_path: Path) -> None:
    backend = FakeBackend(responses=[tool_use("respond_to_user", {"message": "Nothing needed."})])
    client = TestClient(create_app(_env(monkeypatch, tmp_path), backend=backend))

    response = client.post("/api/orchestrate", json={"message": "Anything to do?"})

    assert response.status_code == 200
    assert response.json()["user_response"] == "Nothing needed."


def test_credit_and_emergency(monkeypatch, tmp_path: Path) -> None:
    client = TestClient(create_app(_env(monkeypatch, tmp_path)))

    assert client.get("/api/credits").json()["status"] == "ok"
    limits = client.post("/api/credits/limits", json={"daily_limit": 10})
    assert limits.json()["credit"]["daily"]["limit"] == 10
    assert client.post("/api/credits/limits", json={"daily_limit": -1}).status_code == 400
    assert client.post("/api/credits/reset/daily").status_code == 200
    assert client.post("/api/credits/reset/weekly").status_code == 400

    assert client.post("/api/emergency/stop", json={"reason": "test"}).status_code == 200
    assert client.post("/api/orchestrate", json={"message": "hi"}).status_code == 403
    assert client.post("/api/emergency/reset", json={"confirmation": "nope"}).status_code == 400
    assert client.post("/api/emergency/reset", json={"confirmation": EMERGENCY_RESET_TOKEN}).status_code == 200
    assert client.get("/api/world").json()["global_paused"]


def test_schedule_and_action_queue(monkeypatch, tmp_path: Path) -> None:
    client = TestClient(create_app(_env(monkeypatch, tmp_path)))

    schedule = client.put(
        "/api/schedule",
        json={"enabled": True, "timezone": "Europe/Paris", "windows": [{"start": "09:00", "end": "17:00"}]},
    )
    assert schedule.status_code == 200
    assert client.get("/api/schedule").json()["timezone"] == "Europe/Paris"
    window = client.post("/api/schedule/windows", json={"start": "22:00", "end": "02:00"}).json()["window"]
    assert client.delete(f"/api/schedule/windows/{window['id']}").status_code == 200
    assert client.delete(f"/api/schedule/windows/{window['id']}").status_code == 400

    first = client.post("/api/actions", json={"team_id": "sales", "action_type": "communicate"}).json()["action"]
    second = client.post("/api/actions", json={"team_id": "sales", "action_type": "report"}).json()["action"]
    assert client.get("/api/actions").json()["count"] == 2
    assert client.post(f"/api/actions/{first['id']}/approve").status_code == 200
    assert client.post(f"/api/actions/{second['id']}/reject", json={"reason": "later"}).status_code == 200
    assert client.get("/api/actions").json()["count"] == 0

    log = client.get("/api/control-log", params={"limit": 3}).json()["entries"]
    assert [entry["action"] for entry in log][-1] == "reject_action"

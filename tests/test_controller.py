from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from crewloop.backends import FakeBackend
from crewloop.backends.fake import text, tool_use
from crewloop.config import load_settings
from crewloop.core.tracing import read_events
from crewloop.core.types import CheckpointStatus
from crewloop.errors import ActionNotPermittedError, ConfigurationError
from crewloop.runtime import controller
from crewloop.runtime.orchestrator import OrchestratorResult


@pytest.fixture()
def env(monkeypatch, tmp_path: Path) -> controller.Environment:
    for key in (
        "CREWLOOP_CHECKPOINT_DIR",
        "AGENT_CHECKPOINT_DIR",
        "CREWLOOP_WORKSPACE_ROOT",
        "CREWLOOP_ADMIN_TOKEN",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CREWLOOP_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("CREWLOOP_PROVIDER", "fake")
    return controller.build_environment(load_settings())


def test_environment_defaults(env: controller.Environment) -> None:
    assert env.world.world_status == "manual"
    assert set(env.world.team_controls) == set(env.state.team_ids())
    assert env.team_executor().workspace_root == env.settings.workspace_root


def test_build_backend(env: controller.Environment) -> None:
    assert isinstance(controller.build_backend(env.settings), FakeBackend)
    with pytest.raises(ConfigurationError, match="Anthropic API key"):
        controller.build_backend(env.settings, "anthropic")
    with pytest.raises(ConfigurationError, match="Unknown backend"):
        controller.build_backend(env.settings, "gemini")


def test_manual_world_requires_trigger(env: controller.Environment) -> None:
    with pytest.raises(ActionNotPermittedError) as excinfo:
        controller.run_team(env, "design", "Logo", FakeBackend(responses=[text("ok")]))

    assert excinfo.value.code == "REQUIRES_TRIGGER"


def test_triggered_run_writes_trace_and_checkpoint(env: controller.Environment) -> None:
    backend = FakeBackend(responses=[tool_use("signal_completion", {"summary": "Logo ready"})])
    seen = []

    result = controller.run_team(env, "design", "Logo", backend, trigger=True, event_sink=seen.append)

    assert result.completed
    assert result.completion_summary == "Logo ready"
    events = read_events(env.settings.trace_dir / f"{result.session_id}.jsonl")
    assert [event.kind for event in events] == [event.kind for event in seen]
    assert events[-1].kind == "loop_completed"
    assert env.checkpoints.load(result.session_id).status == CheckpointStatus.COMPLETED
    assert "trigger_action" in [entry["action"] for entry in env.world.control_log()]


def test_paused_world_rejects_trigger(env: controller.Environment) -> None:
    env.world.pause_world("holiday")

    with pytest.raises(ActionNotPermittedError) as excinfo:
        controller.run_team(env, "design", "Logo", FakeBackend(), trigger=True)

    assert excinfo.value.code == "WORLD_PAUSED"


def test_autonomous_team_runs_without_trigger(env: controller.Environment) -> None:
    env.world.set_world_status("autonomous")
    env.world.set_team_automation_level("legal", "autonomous")

    result = controller.run_team(env, "legal", "Audit", FakeBackend(responses=[text("Clean")]))

    assert result.completed


def test_unknown_team(env: controller.Environment) -> None:
    with pytest.raises(ValueError, match="Unknown team"):
        controller.run_team(env, "ghost", "x", FakeBackend(), trigger=True)


def test_resume_team(env: controller.Environment) -> None:
    first = controller.run_team(
        env,
        "sales",
        "Call leads",
        FakeBackend(responder=lambda request: tool_use("get_tasks")),
        trigger=True,
        max_iterations=2,
    )
    assert env.checkpoints.load(first.session_id).status == CheckpointStatus.INTERRUPTED

    with pytest.raises(ActionNotPermittedError):
        controller.resume_team(env, first.session_id, FakeBackend())

    resumed = controller.resume_team(
        env, first.session_id, FakeBackend(responses=[text("Leads called")]), trigger=True, max_iterations=4
    )

    assert resumed.completed
    assert resumed.iterations == 3
    kinds = [event.kind for event in read_events(env.settings.trace_dir / f"{first.session_id}.jsonl")]
    assert "resuming_from_checkpoint" in kinds


def test_team_run_writes_workspace_files(env: controller.Environment) -> None:
    backend = FakeBackend(
        responses=[
            tool_use("write_workspace_file", {"path": "notes.md", "content": "hello"}),
            text("Saved"),
        ]
    )

    controller.run_team(env, "communications", "Take notes", backend, trigger=True)

    assert (env.settings.workspace_root / "communications" / "notes.md").read_text(encoding="utf-8") == "hello"


def test_orchestrate_blocked_by_emergency_stop(env: controller.Environment) -> None:
    env.world.trigger_emergency_stop("test")

    with pytest.raises(ActionNotPermittedError) as excinfo:
        controller.orchestrate(env, "hello", FakeBackend())

    assert excinfo.value.code == "EMERGENCY_STOP"


def test_orchestrate(env: controller.Environment) -> None:
    result = controller.orchestrate(env, "hello", FakeBackend(responses=[text("Hi!")]))

    assert result.user_response == "Hi!"
    traces = list(env.settings.trace_dir.glob("*.jsonl"))
    assert len(traces) == 1


def test_orchestrate_delegates_with_worker_backend(env: controller.Environment, monkeypatch) -> None:
    env.settings = replace(
        env.settings,
        provider="anthropic",
        anthropic_api_key="sk-ant-test",
        model="worker-model",
        orchestrator_model="lead-model",
        timeout_s=7.0,
        orchestrator_timeout_s=33.0,
    )
    captured = {}

    def fake_run_orchestrator(message, backend, state, options, **kwargs):
        captured["backend"] = backend
        captured["delegation_backend"] = kwargs["delegation_backend"]
        return OrchestratorResult(success=True, user_response="ok")

    monkeypatch.setattr(controller, "run_orchestrator", fake_run_orchestrator)

    controller.orchestrate(env, "hello")

    assert captured["backend"].timeout_s == env.settings.orchestrator_timeout_s
    assert captured["backend"].model == env.settings.orchestrator_model
    assert captured["delegation_backend"].timeout_s == env.settings.timeout_s
    assert captured["delegation_backend"].model == env.settings.model

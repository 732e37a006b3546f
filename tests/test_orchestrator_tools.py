from __future__ import annotations

import pytest

from crewloop.core.types import LoopResult
from crewloop.state import StateContext
from crewloop.state.context import ORCHESTRATOR_ID
from crewloop.tools import ToolExecutor
from crewloop.tools.orchestrator_tools import build_orchestrator_registry, compose_delegated_task
from crewloop.world import WorldController


@pytest.fixture()
def state() -> StateContext:
    return StateContext()


def _executor(state: StateContext, delegate=None) -> ToolExecutor:
    def default_delegate(team_id, task, ctx):
        return LoopResult(team_id=team_id, team_name=ctx.state.require_team(team_id).name, completed=True)

    registry = build_orchestrator_registry(delegate or default_delegate, state.team_ids())
    return ToolExecutor(registry, world=WorldController(state.team_ids()))


def _run(executor: ToolExecutor, state: StateContext, tool: str, args: dict):
    return executor.execute(tool, args, ORCHESTRATOR_ID, state)


def test_compose_delegated_task() -> None:
    assert compose_delegated_task("Write copy") == "Write copy"
    assert compose_delegated_task("Write copy", "medium") == "Write copy"
    assert compose_delegated_task("Write copy", "high", "Launch is Friday") == (
        "[Priority: HIGH]\n\nWrite copy\n\n## Additional Context from Orchestrator\nLaunch is Friday"
    )


def test_delegate_passes_composed_task(state: StateContext) -> None:
    calls = []

    def delegate(team_id, task, ctx):
        calls.append((team_id, task))
        return LoopResult(
            team_id=team_id,
            team_name="Legal Team",
            success=True,
            completed=True,
            iterations=2,
            completion_summary="Reviewed",
            tasks_created=[{"id": "t1"}],
            activities=[{"agent": "IP Counsel", "message": "checked", "tag": "task", "ts": 1.0}],
        )

    result = _run(_executor(state, delegate), state, "delegate_to_team", {
        "team_id": "legal",
        "task": "Check the trademark",
        "priority": "critical",
    })

    assert calls == [("legal", "[Priority: CRITICAL]\n\nCheck the trademark")]
    assert result.success
    assert result.message == "Delegation to Legal Team completed"
    assert result.data["summary"] == "Reviewed"
    assert result.data["tasks_created"] == 1
    assert result.data["activities"] == [{"agent": "IP Counsel", "message": "checked", "tag": "task"}]


def test_delegate_invalid_team(state: StateContext) -> None:
    result = _run(_executor(state), state, "delegate_to_team", {"team_id": "ghost", "task": "x"})

    assert not result.success
    assert result.message.startswith("Invalid team: ghost. Valid teams: developer")


def test_delegate_failure_becomes_tool_failure(state: StateContext) -> None:
    def delegate(team_id, task, ctx):
        raise RuntimeError("model offline")

    result = _run(_executor(state, delegate), state, "delegate_to_team", {"team_id": "sales", "task": "x"})

    assert not result.success
    assert result.message == "Delegation to Sales Team failed: model offline"


def test_system_overview(state: StateContext) -> None:
    state.add_task("a", "design", created_by="design")
    state.add_decision("b", "design", requested_by="UX Lead")

    result = _run(_executor(state), state, "get_system_overview", {})

    assert len(result.data["teams"]) == 7
    assert result.data["tasks"] == {"total": 1, "pending": 1}
    assert result.data["decisions"] == {"total": 1, "pending": 1}
    assert result.data["world"]["world_status"] == "manual"


def test_team_status(state: StateContext) -> None:
    executor = _executor(state)
    state.add_task("a", "design", created_by="design")

    result = _run(executor, state, "get_team_status", {"team_id": "design"})

    assert result.message == "Status for Design Team"
    assert len(result.data["tasks"]["pending"]) == 1
    assert _run(executor, state, "get_team_status", {"team_id": "ghost"}).message == "Team not found: ghost"


def test_pending_decisions_and_tasks(state: StateContext) -> None:
    executor = _executor(state)
    state.add_decision("b", "design", requested_by="UX Lead")
    task = state.add_task("a", "design", created_by="design")
    state.update_task(task.id, status="blocked")

    assert len(_run(executor, state, "get_pending_decisions", {}).data) == 1
    assert len(_run(executor, state, "get_all_tasks", {"status": "blocked"}).data) == 1
    assert _run(executor, state, "get_all_tasks", {"status": "pending"}).data == []


def test_create_decision_for_owner(state: StateContext) -> None:
    result = _run(_executor(state), state, "create_decision_for_owner", {
        "title": "Approve budget",
        "description": "Campaign spend",
        "options": ["yes", "no"],
        "priority": "high",
        "impact": "Delays launch",
    })

    decision = state.get_decision(result.data["decision_id"])
    assert decision.team_id == ORCHESTRATOR_ID
    assert decision.urgency == "high"
    assert decision.description.endswith("Impact: Delays launch")


def test_broadcast_message(state: StateContext) -> None:
    executor = _executor(state)

    targeted = _run(executor, state, "broadcast_message", {"message": "Freeze", "target_teams": ["legal", "ghost"]})
    assert targeted.data == {"target_teams": ["legal"], "skipped": ["ghost"]}
    assert state.list_communications(team_id="legal")[0].kind == "broadcast"

    everyone = _run(executor, state, "broadcast_message", {"message": "Hello"})
    assert everyone.message == "Message broadcast to 7 team(s)"

    nobody = _run(executor, state, "broadcast_message", {"message": "x", "target_teams": ["ghost"]})
    assert not nobody.success


def test_respond_to_user(state: StateContext) -> None:
    result = _run(_executor(state), state, "respond_to_user", {
        "message": "All set",
        "delegations_completed": 2,
        "suggested_next_steps": ["Review mockups"],
    })

    assert result.data == {
        "message": "All set",
        "delegations_completed": 2,
        "decisions_created": 0,
        "suggested_next_steps": ["Review mockups"],
    }

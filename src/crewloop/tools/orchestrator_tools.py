from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable

from crewloop.core.types import LoopResult
from crewloop.state.context import ORCHESTRATOR_ID, TASK_PRIORITIES, TASK_STATUSES
from crewloop.tools.args import bounded_limit, optional_str, require_str
from crewloop.tools.context import ToolContext
from crewloop.tools.registry import OrchestratorTool, ToolHandler, ToolRegistry
from crewloop.tools.results import ToolResult

# (team_id, full task, ctx) -> finished nested loop result
Delegate = Callable[[str, str, ToolContext], LoopResult]

ORCHESTRATOR_AGENT = "Orchestrator"


def compose_delegated_task(task: str, priority: str | None = None, context: str | None = None) -> str:
    full_task = task
    if context:
        full_task = f"{task}\n\n## Additional Context from Orchestrator\n{context}"
    if priority and priority != "medium":
        full_task = f"[Priority: {priority.upper()}]\n\n{full_task}"
    return full_task


def delegation_summary(result: LoopResult) -> dict[str, Any]:
    return {
        "team_id": result.team_id,
        "team_name": result.team_name,
        "completed": result.completed,
        "success": result.success,
        "iterations": result.iterations,
        "summary": result.completion_summary,
        "tasks_created": len(result.tasks_created),
        "decisions_created": len(result.decisions_created),
        "activities": [
            {"agent": item.get("agent"), "message": item.get("message"), "tag": item.get("tag")}
            for item in result.activities
        ],
        "text_responses": [item.text for item in result.text_responses],
    }


def delegate_handler(delegate: Delegate) -> ToolHandler:
    def handler(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        team_id = require_str(args, "team_id")
        task = require_str(args, "task")
        team = ctx.state.team(team_id)
        if team is None:
            valid = ", ".join(ctx.state.team_ids())
            return ToolResult.fail(f"Invalid team: {team_id}. Valid teams: {valid}")
        priority = optional_str(args, "priority")
        if priority is not None and priority not in TASK_PRIORITIES:
            raise ValueError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")
        full_task = compose_delegated_task(task, priority, optional_str(args, "context"))
        try:
            result = delegate(team_id, full_task, ctx)
        except Exception as exc:  # noqa: BLE001
            return ToolResult.fail(
                f"Delegation to {team.name} failed: {exc}", {"team_id": team_id, "error": str(exc)}
            )
        return ToolResult.ok(f"Delegation to {team.name} completed", delegation_summary(result))

    return handler


def _get_system_overview(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    state = ctx.state
    counts = state.counts()
    teams = []
    for team in state.teams():
        runtime = state.team_runtime(team.id)
        teams.append(
            {
                "id": team.id,
                "name": team.name,
                "status": runtime.status,
                "run_count": runtime.run_count,
                "last_run_ts": runtime.last_run_ts,
            }
        )
    data: dict[str, Any] = {
        "teams": teams,
        "tasks": {"total": counts["tasks"], **counts["tasks_by_status"]},
        "decisions": {
            "total": len(state.list_decisions()),
            "pending": counts["pending_decisions"],
        },
        "recent_activity": [
            {"team": item.team_id, "agent": item.agent, "message": item.message, "ts": item.ts}
            for item in state.list_activities(limit=5)
        ],
    }
    if ctx.world is not None:
        world = ctx.world.status()
        data["world"] = {
            "world_status": world["world_status"],
            "global_paused": world["global_paused"],
            "emergency_stop": world["emergency_stop"]["triggered"],
        }
        data["credit"] = world["credit"]
    return ToolResult.ok("System overview retrieved", data)


def _get_team_status(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    team_id = require_str(args, "team_id")
    team = ctx.state.team(team_id)
    if team is None:
        return ToolResult.fail(f"Team not found: {team_id}")
    tasks = ctx.state.list_tasks(team_id=team_id)
    runtime = ctx.state.team_runtime(team_id)
    data: dict[str, Any] = {
        **team.summary(),
        "runtime": asdict(runtime),
        "tasks": {
            status: [asdict(task) for task in tasks if task.status == status]
            for status in ("in_progress", "pending", "blocked")
        },
        "pending_decisions": [
            asdict(item) for item in ctx.state.list_decisions(team_id=team_id, status="pending")
        ],
        "recent_activity": [asdict(item) for item in ctx.state.list_activities(team_id=team_id, limit=10)],
    }
    if ctx.world is not None:
        data["control"] = ctx.world.team_status(team_id)
    return ToolResult.ok(f"Status for {team.name}", data)


def _get_pending_decisions(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    pending = ctx.state.list_decisions(status="pending")
    return ToolResult.ok(f"{len(pending)} pending decision(s)", [asdict(item) for item in pending])


def _get_all_tasks(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    status = optional_str(args, "status")
    if status is not None and status not in TASK_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(sorted(TASK_STATUSES))}")
    tasks = ctx.state.list_tasks(status=status, limit=bounded_limit(args, 20, 50))
    return ToolResult.ok(f"{len(tasks)} task(s) found", [asdict(task) for task in tasks])


def _create_decision_for_owner(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    title = require_str(args, "title")
    description = require_str(args, "description")
    options = args.get("options") or []
    if not isinstance(options, list) or not all(isinstance(item, str) for item in options):
        raise ValueError("options must be a list of strings")
    priority = optional_str(args, "priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValueError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")
    impact = optional_str(args, "impact")
    if impact:
        description = f"{description}\n\nImpact: {impact}"
    decision = ctx.state.add_decision(
        title,
        ORCHESTRATOR_ID,
        requested_by=ORCHESTRATOR_ID,
        description=description,
        options=options,
        urgency=priority,
    )
    ctx.state.add_activity(
        ORCHESTRATOR_AGENT, ORCHESTRATOR_ID, f"Requested owner decision: {decision.title}", tag="decision"
    )
    return ToolResult.ok(
        f'Decision created: "{decision.title}" (awaiting owner)',
        {"decision_id": decision.id, "title": decision.title},
    )


def _broadcast_message(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    message = require_str(args, "message")
    targets = args.get("target_teams")
    if targets is None:
        targets = ctx.state.team_ids()
    if not isinstance(targets, list) or not all(isinstance(item, str) for item in targets):
        raise ValueError("target_teams must be a list of team ids")
    delivered = [team_id for team_id in targets if ctx.state.team(team_id) is not None]
    skipped = [team_id for team_id in targets if team_id not in delivered]
    for team_id in delivered:
        ctx.state.add_communication(
            ORCHESTRATOR_ID, team_id, message, from_agent=ORCHESTRATOR_AGENT, kind="broadcast"
        )
    if not delivered:
        return ToolResult.fail("No valid target teams", {"skipped": skipped})
    return ToolResult.ok(
        f"Message broadcast to {len(delivered)} team(s)",
        {"target_teams": delivered, "skipped": skipped},
    )


def _respond_to_user(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    message = require_str(args, "message")
    next_steps = args.get("suggested_next_steps") or []
    if not isinstance(next_steps, list) or not all(isinstance(item, str) for item in next_steps):
        raise ValueError("suggested_next_steps must be a list of strings")
    return ToolResult.ok(
        "Response delivered",
        {
            "message": message,
            "delegations_completed": int(args.get("delegations_completed") or 0),
            "decisions_created": int(args.get("decisions_created") or 0),
            "suggested_next_steps": next_steps,
        },
    )


def build_orchestrator_registry(
    delegate: Delegate, team_ids: list[str] | None = None
) -> ToolRegistry[OrchestratorTool]:
    team_property: dict[str, Any] = {"type": "string", "description": "Target team id"}
    if team_ids:
        team_property["enum"] = list(team_ids)
    registry: ToolRegistry[OrchestratorTool] = ToolRegistry(OrchestratorTool)
    registry.register(
        OrchestratorTool.DELEGATE_TO_TEAM,
        "Run a team's agent loop on a task and wait for its result. "
        "Be specific about the deliverable.",
        delegate_handler(delegate),
        {
            "type": "object",
            "properties": {
                "team_id": team_property,
                "task": {"type": "string", "description": "What the team should do"},
                "priority": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "context": {
                    "type": "string",
                    "description": "Extra context, such as results of earlier delegations",
                },
            },
            "required": ["team_id", "task"],
        },
    )
    registry.register(
        OrchestratorTool.GET_SYSTEM_OVERVIEW,
        "High-level overview of teams, task counts, decisions, recent activity and world state.",
        _get_system_overview,
    )
    registry.register(
        OrchestratorTool.GET_TEAM_STATUS,
        "Detailed status of one team: open tasks, pending decisions and recent activity.",
        _get_team_status,
        {"type": "object", "properties": {"team_id": team_property}, "required": ["team_id"]},
    )
    registry.register(
        OrchestratorTool.GET_PENDING_DECISIONS,
        "All decisions waiting for the owner.",
        _get_pending_decisions,
    )
    registry.register(
        OrchestratorTool.GET_ALL_TASKS,
        "Tasks across all teams, optionally filtered by status.",
        _get_all_tasks,
        {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": sorted(TASK_STATUSES)},
                "limit": {"type": "integer"},
            },
        },
    )
    registry.register(
        OrchestratorTool.CREATE_DECISION_FOR_OWNER,
        "Ask the owner to decide something that needs human judgment or budget approval.",
        _create_decision_for_owner,
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "options": {"type": "array", "items": {"type": "string"}},
                "priority": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "impact": {"type": "string"},
            },
            "required": ["title", "description"],
        },
    )
    registry.register(
        OrchestratorTool.BROADCAST_MESSAGE,
        "Send a message to every team, or to the listed teams.",
        _broadcast_message,
        {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "target_teams": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["message"],
        },
    )
    registry.register(
        OrchestratorTool.RESPOND_TO_USER,
        "Reply to the user. This ends the current orchestration turn.",
        _respond_to_user,
        {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "delegations_completed": {"type": "integer"},
                "decisions_created": {"type": "integer"},
                "suggested_next_steps": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["message"],
        },
    )
    return registry

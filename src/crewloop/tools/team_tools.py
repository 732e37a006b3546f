from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

from crewloop.state.context import DECISION_RESOLUTIONS, TASK_PRIORITIES, TASK_STATUSES
from crewloop.tools.args import bounded_limit, optional_str, require_str
from crewloop.tools.context import ToolContext
from crewloop.tools.registry import TeamTool, ToolRegistry
from crewloop.tools.results import ToolResult
from crewloop.tools.workspace_tools import register_workspace_tools

_INCLUDE_SECTIONS = ("tasks", "decisions", "activity", "teams", "world")


def _agent_name(args: dict[str, Any], ctx: ToolContext) -> str:
    team = ctx.state.require_team(ctx.team_id)
    requested = args.get("agent")
    if isinstance(requested, str) and requested in team.agent_names:
        return requested
    return team.agents[0].name if team.agents else team.name


# read-only views


def _get_system_state(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    include = args.get("include") or list(_INCLUDE_SECTIONS)
    if not isinstance(include, list) or not all(isinstance(item, str) for item in include):
        raise ValueError("include must be a list of section names")
    state = ctx.state
    data: dict[str, Any] = {"summary": state.counts()}
    if "tasks" in include:
        data["tasks"] = [asdict(task) for task in state.list_tasks(limit=20)]
    if "decisions" in include:
        data["decisions"] = [asdict(item) for item in state.list_decisions(status="pending", limit=10)]
    if "activity" in include:
        data["activity"] = [asdict(item) for item in state.list_activities(limit=15)]
    if "teams" in include:
        data["teams"] = {
            team.id: {"name": team.name, "status": state.team_runtime(team.id).status}
            for team in state.teams()
        }
    if "world" in include and ctx.world is not None:
        world = ctx.world.status()
        data["world"] = {
            "world_status": world["world_status"],
            "global_paused": world["global_paused"],
            "credit": world["credit"]["status"],
        }
    return ToolResult.ok("System state retrieved", data)


def _get_tasks(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    team_id = optional_str(args, "team_id")
    status = optional_str(args, "status")
    if status is not None and status not in TASK_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(sorted(TASK_STATUSES))}")
    tasks = ctx.state.list_tasks(team_id=team_id, status=status, limit=bounded_limit(args, 20, 50))
    return ToolResult.ok(f"Found {len(tasks)} task(s)", [asdict(task) for task in tasks])


def _get_decisions(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    decisions = ctx.state.list_decisions(
        team_id=optional_str(args, "team_id"),
        status=optional_str(args, "status"),
        limit=bounded_limit(args, 10, 50),
    )
    return ToolResult.ok(
        f"Found {len(decisions)} decision(s)", [asdict(item) for item in decisions]
    )


def _get_team_info(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    team_id = optional_str(args, "team_id") or ctx.team_id
    team = ctx.state.team(team_id)
    if team is None:
        return ToolResult.fail(f"Unknown team: {team_id}")
    data = team.summary()
    data["runtime"] = asdict(ctx.state.team_runtime(team_id))
    data["open_tasks"] = len(
        [task for task in ctx.state.list_tasks(team_id=team_id) if task.status in {"pending", "in_progress"}]
    )
    if ctx.world is not None:
        data["control"] = ctx.world.team_status(team_id)
    return ToolResult.ok(f"Team info for {team.name}", data)


def _get_recent_activity(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    activities = ctx.state.list_activities(
        team_id=optional_str(args, "team_id"), limit=bounded_limit(args, 15, 50)
    )
    return ToolResult.ok(
        f"Found {len(activities)} activit{'y' if len(activities) == 1 else 'ies'}",
        [asdict(item) for item in activities],
    )


# mutations


def _create_task(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    title = require_str(args, "title")
    team_id = optional_str(args, "team_id") or ctx.team_id
    if ctx.state.team(team_id) is None:
        return ToolResult.fail(f"Unknown team: {team_id}")
    priority = optional_str(args, "priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValueError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")
    agent = _agent_name(args, ctx)
    task = ctx.state.add_task(
        title,
        team_id,
        created_by=ctx.team_id,
        description=optional_str(args, "description") or "",
        priority=priority,
        assigned_to=optional_str(args, "assigned_to"),
    )
    ctx.state.add_activity(agent, ctx.team_id, f"Created task: {task.title}", tag="task")
    return ToolResult.ok(f"Task created: {task.title}", asdict(task))


def _update_task_status(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    task_id = require_str(args, "task_id")
    status = optional_str(args, "status")
    progress = args.get("progress")
    if progress is not None and (isinstance(progress, bool) or not isinstance(progress, (int, float))):
        raise ValueError("progress must be a number between 0 and 100")
    if status is None and progress is None:
        raise ValueError("status or progress is required")
    task = ctx.state.update_task(
        task_id,
        status=status,
        progress=int(progress) if progress is not None else None,
        note=optional_str(args, "note"),
    )
    ctx.state.add_activity(
        _agent_name(args, ctx),
        ctx.team_id,
        f"Updated task '{task.title}' to {task.status} ({task.progress}%)",
        tag="task",
    )
    return ToolResult.ok(f"Task updated: {task.title}", asdict(task))


def _delete_task(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    task_id = require_str(args, "task_id")
    task = ctx.state.get_task(task_id)
    if task is None:
        return ToolResult.fail(f"Task not found: {task_id}")
    if ctx.team_id not in (task.team_id, task.created_by):
        return ToolResult.fail("Only the owning or creating team can delete a task")
    if task.status == "in_progress":
        return ToolResult.fail("Cannot delete a task that is in progress")
    ctx.state.remove_task(task_id)
    ctx.state.add_activity(_agent_name(args, ctx), ctx.team_id, f"Deleted task: {task.title}", tag="task")
    return ToolResult.ok(f"Task deleted: {task.title}", {"id": task_id})


def _create_decision_request(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    title = require_str(args, "title")
    options = args.get("options") or []
    if not isinstance(options, list) or not all(isinstance(item, str) for item in options):
        raise ValueError("options must be a list of strings")
    urgency = optional_str(args, "urgency") or "medium"
    if urgency not in TASK_PRIORITIES:
        raise ValueError(f"urgency must be one of: {', '.join(TASK_PRIORITIES)}")
    agent = _agent_name(args, ctx)
    decision = ctx.state.add_decision(
        title,
        ctx.team_id,
        requested_by=agent,
        description=optional_str(args, "description") or "",
        options=options,
        recommendation=optional_str(args, "recommendation"),
        urgency=urgency,
    )
    ctx.state.add_activity(agent, ctx.team_id, f"Requested decision: {decision.title}", tag="decision")
    return ToolResult.ok(f"Decision requested: {decision.title}", asdict(decision))


def _resolve_decision(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    decision_id = require_str(args, "decision_id")
    resolution = require_str(args, "resolution")
    if resolution not in DECISION_RESOLUTIONS:
        raise ValueError(f"resolution must be one of: {', '.join(sorted(DECISION_RESOLUTIONS))}")
    decision = ctx.state.get_decision(decision_id)
    if decision is None:
        return ToolResult.fail(f"Decision not found: {decision_id}")
    if decision.team_id != ctx.team_id:
        return ToolResult.fail("Teams can only resolve their own decisions")
    agent = _agent_name(args, ctx)
    decision = ctx.state.resolve_decision(
        decision_id, resolution, resolved_by=agent, note=optional_str(args, "note")
    )
    ctx.state.add_activity(agent, ctx.team_id, f"Resolved decision '{decision.title}': {resolution}", tag="decision")
    return ToolResult.ok(f"Decision {resolution}: {decision.title}", asdict(decision))


def _send_message(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    to_team = require_str(args, "to_team")
    message = require_str(args, "message")
    if ctx.state.team(to_team) is None:
        return ToolResult.fail(f"Unknown team: {to_team}")
    agent = _agent_name(args, ctx)
    communication = ctx.state.add_communication(ctx.team_id, to_team, message, from_agent=agent)
    ctx.state.add_activity(agent, ctx.team_id, f"Message to {to_team}: {message[:80]}", tag="message")
    return ToolResult.ok(f"Message sent to {to_team}", asdict(communication))


def _report_progress(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    message = require_str(args, "message")
    task_id = optional_str(args, "task_id")
    progress = args.get("progress")
    task_data = None
    if task_id is not None and progress is not None:
        if isinstance(progress, bool) or not isinstance(progress, (int, float)):
            raise ValueError("progress must be a number between 0 and 100")
        task_data = asdict(ctx.state.update_task(task_id, progress=int(progress)))
    activity = ctx.state.add_activity(_agent_name(args, ctx), ctx.team_id, message, tag="progress")
    return ToolResult.ok("Progress reported", {"activity": asdict(activity), "task": task_data})


def _request_team_assistance(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    target = require_str(args, "team_id")
    request = require_str(args, "request")
    if target == ctx.team_id:
        return ToolResult.fail("A team cannot request assistance from itself")
    if ctx.state.team(target) is None:
        return ToolResult.fail(f"Unknown team: {target}")
    priority = optional_str(args, "priority") or "high"
    if priority not in TASK_PRIORITIES:
        raise ValueError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")
    agent = _agent_name(args, ctx)
    task = ctx.state.add_task(
        f"Assistance for {ctx.team_id}: {request[:80]}",
        target,
        created_by=ctx.team_id,
        description=request,
        priority=priority,
    )
    ctx.state.add_communication(
        ctx.team_id, target, request, from_agent=agent, kind="assistance_request"
    )
    ctx.state.add_activity(agent, ctx.team_id, f"Requested assistance from {target}", tag="message")
    return ToolResult.ok(f"Assistance requested from {target}", asdict(task))


def _signal_completion(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    summary = optional_str(args, "summary") or "Completed"
    ctx.state.add_activity(_agent_name(args, ctx), ctx.team_id, f"Assignment complete: {summary}", tag="complete")
    return ToolResult.ok("Completion signaled", {"summary": summary})


_AGENT_PROP = {"type": "string", "description": "Name of the agent acting"}


def build_team_registry(workspace_root: Path | None = None) -> ToolRegistry[TeamTool]:
    registry: ToolRegistry[TeamTool] = ToolRegistry(TeamTool)
    registry.register(
        TeamTool.GET_SYSTEM_STATE,
        "Overview of tasks, pending decisions, recent activity, teams and world status.",
        _get_system_state,
        {
            "type": "object",
            "properties": {
                "include": {"type": "array", "items": {"type": "string", "enum": list(_INCLUDE_SECTIONS)}},
            },
        },
    )
    registry.register(
        TeamTool.GET_TASKS,
        "List tasks, optionally filtered by team and status.",
        _get_tasks,
        {
            "type": "object",
            "properties": {
                "team_id": {"type": "string"},
                "status": {"type": "string", "enum": sorted(TASK_STATUSES)},
                "limit": {"type": "integer", "maximum": 50},
            },
        },
    )
    registry.register(
        TeamTool.GET_DECISIONS,
        "List decision requests, optionally filtered by team and status.",
        _get_decisions,
        {
            "type": "object",
            "properties": {
                "team_id": {"type": "string"},
                "status": {"type": "string"},
                "limit": {"type": "integer"},
            },
        },
    )
    registry.register(
        TeamTool.GET_TEAM_INFO,
        "Describe a team: roster, run status and control settings. Defaults to your own team.",
        _get_team_info,
        {"type": "object", "properties": {"team_id": {"type": "string"}}},
    )
    registry.register(
        TeamTool.GET_RECENT_ACTIVITY,
        "Recent activity feed, newest first.",
        _get_recent_activity,
        {"type": "object", "properties": {"team_id": {"type": "string"}, "limit": {"type": "integer"}}},
    )
    registry.register(
        TeamTool.CREATE_TASK,
        "Create a task for your team or another team.",
        _create_task,
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "team_id": {"type": "string"},
                "priority": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "assigned_to": {"type": "string"},
                "agent": _AGENT_PROP,
            },
            "required": ["title"],
        },
    )
    registry.register(
        TeamTool.UPDATE_TASK_STATUS,
        "Update a task's status and/or progress (0-100).",
        _update_task_status,
        {
            "type": "object",
            "properties": {
                "task_id": {"type": "string"},
                "status": {"type": "string", "enum": sorted(TASK_STATUSES)},
                "progress": {"type": "number"},
                "note": {"type": "string"},
                "agent": _AGENT_PROP,
            },
            "required": ["task_id"],
        },
    )
    registry.register(
        TeamTool.DELETE_TASK,
        "Delete a task your team owns or created. Tasks in progress cannot be deleted.",
        _delete_task,
        {"type": "object", "properties": {"task_id": {"type": "string"}}, "required": ["task_id"]},
    )
    registry.register(
        TeamTool.CREATE_DECISION_REQUEST,
        "Ask the owner to make a decision.",
        _create_decision_request,
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "options": {"type": "array", "items": {"type": "string"}},
                "recommendation": {"type": "string"},
                "urgency": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "agent": _AGENT_PROP,
            },
            "required": ["title"],
        },
    )
    registry.register(
        TeamTool.RESOLVE_DECISION,
        "Resolve one of your team's pending decisions. Decisions resolve only once.",
        _resolve_decision,
        {
            "type": "object",
            "properties": {
                "decision_id": {"type": "string"},
                "resolution": {"type": "string", "enum": sorted(DECISION_RESOLUTIONS)},
                "note": {"type": "string"},
            },
            "required": ["decision_id", "resolution"],
        },
    )
    registry.register(
        TeamTool.SEND_MESSAGE,
        "Send a message to another team.",
        _send_message,
        {
            "type": "object",
            "properties": {
                "to_team": {"type": "string"},
                "message": {"type": "string"},
                "agent": _AGENT_PROP,
            },
            "required": ["to_team", "message"],
        },
    )
    registry.register(
        TeamTool.REPORT_PROGRESS,
        "Post a progress update to the activity feed, optionally updating a task's progress.",
        _report_progress,
        {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "task_id": {"type": "string"},
                "progress": {"type": "number"},
                "agent": _AGENT_PROP,
            },
            "required": ["message"],
        },
    )
    registry.register(
        TeamTool.REQUEST_TEAM_ASSISTANCE,
        "Ask another team for help; creates a high-priority task in their queue.",
        _request_team_assistance,
        {
            "type": "object",
            "properties": {
                "team_id": {"type": "string"},
                "request": {"type": "string"},
                "priority": {"type": "string", "enum": list(TASK_PRIORITIES)},
                "agent": _AGENT_PROP,
            },
            "required": ["team_id", "request"],
        },
    )
    register_workspace_tools(registry, workspace_root)
    registry.register(
        TeamTool.SIGNAL_COMPLETION,
        "Call when the assignment is complete. Provide a short summary of what was done.",
        _signal_completion,
        {"type": "object", "properties": {"summary": {"type": "string"}}, "required": ["summary"]},
    )
    return registry

"""System prompt assembly for team loops.

Sections are rendered in full first. When the total exceeds the character
budget, the largest compactable sections are re-rendered in compact mode one
at a time until the prompt fits (or nothing compactable is left).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Callable

from crewloop.state.context import StateContext
from crewloop.state.teams import TeamDescriptor
from crewloop.world.controller import WorldController

MAX_TASKS_SHOWN = 10
MAX_DECISIONS_SHOWN = 5
MAX_ACTIVITIES_SHOWN = 15
MAX_MESSAGES_SHOWN = 5
MAX_TOTAL_CONTEXT_CHARS = 8000

GUIDELINES = """## Guidelines
- Work through tools; every state change must go through a tool call.
- Check existing tasks before creating new ones to avoid duplicates.
- Ask the owner with create_decision_request when a choice is above your authority.
- Coordinate with other teams via send_message or request_team_assistance.
- When the assignment is done, call signal_completion with a short summary."""


@dataclass(slots=True)
class Section:
    name: str
    text: str
    compact: Callable[[], str] | None = None
    compacted: bool = False


@dataclass(slots=True)
class ContextOptions:
    iteration: int = 1
    max_iterations: int = 6
    budget_chars: int = MAX_TOTAL_CONTEXT_CHARS


def _identity(team: TeamDescriptor) -> str:
    lines = [
        f"# You are the lead of the {team.name} [{team.badge}]",
        team.focus,
        "",
        "Your agents:",
    ]
    lines.extend(f"- {agent.name}: {agent.role}" for agent in team.agents)
    return "\n".join(lines)


def _session(options: ContextOptions) -> str:
    return (
        f"## Session\nIteration {options.iteration} of {options.max_iterations}. "
        "Continue from your previous steps; do not repeat work already done."
    )


def _system_state(state: StateContext, world: WorldController | None) -> str:
    counts = state.counts()
    by_status = ", ".join(
        f"{status}: {count}" for status, count in sorted(counts["tasks_by_status"].items())
    )
    lines = [
        "## System state",
        f"Tasks: {counts['tasks']} ({by_status or 'none'})",
        f"Pending decisions: {counts['pending_decisions']}",
    ]
    if world is not None:
        status = world.status()
        lines.append(f"World status: {status['world_status']}")
    return "\n".join(lines)


def _work_full(team_id: str, state: StateContext) -> str:
    tasks = [
        task
        for task in state.list_tasks(team_id=team_id)
        if task.status not in {"completed", "cancelled", "skipped"}
    ][:MAX_TASKS_SHOWN]
    decisions = state.list_decisions(team_id=team_id, status="pending", limit=MAX_DECISIONS_SHOWN)
    lines = ["## Current work"]
    if tasks:
        for task in tasks:
            line = f"- [{task.id}] {task.title} ({task.status}, {task.priority}, {task.progress}%)"
            if task.description:
                line += f"\n  {task.description[:200]}"
            lines.append(line)
    else:
        lines.append("No open tasks.")
    if decisions:
        lines.append("Pending decisions:")
        lines.extend(f"- [{item.id}] {item.title} ({item.urgency})" for item in decisions)
    messages = state.list_communications(team_id=team_id, limit=MAX_MESSAGES_SHOWN)
    inbound = [item for item in messages if item.to_team == team_id]
    if inbound:
        lines.append("Messages for your team:")
        lines.extend(f"- from {item.from_team} ({item.from_agent}): {item.message[:200]}" for item in inbound)
    return "\n".join(lines)


def _work_compact(team_id: str, state: StateContext) -> str:
    tasks = state.list_tasks(team_id=team_id)
    by_status = Counter(task.status for task in tasks)
    open_tasks = [task for task in tasks if task.status in {"pending", "in_progress", "blocked"}]
    lines = [
        "## Current work (summary)",
        "Tasks by status: " + (", ".join(f"{k}: {v}" for k, v in sorted(by_status.items())) or "none"),
    ]
    lines.extend(f"- [{task.id}] {task.title[:60]}" for task in open_tasks[:3])
    pending = state.list_decisions(team_id=team_id, status="pending")
    if pending:
        lines.append(f"Pending decisions: {len(pending)}")
    return "\n".join(lines)


def _other_teams(team_id: str, state: StateContext) -> str:
    lines = ["## Other teams"]
    for team in state.teams():
        if team.id == team_id:
            continue
        runtime = state.team_runtime(team.id)
        open_count = len(
            [task for task in state.list_tasks(team_id=team.id) if task.status in {"pending", "in_progress"}]
        )
        lines.append(f"- {team.id}: {team.name} ({runtime.status}, {open_count} open tasks)")
    return "\n".join(lines)


def _activity_full(state: StateContext) -> str:
    activities = state.list_activities(limit=MAX_ACTIVITIES_SHOWN)
    lines = ["## Recent activity"]
    if not activities:
        lines.append("No recent activity.")
    lines.extend(f"- [{item.team_id}] {item.agent}: {item.message[:160]}" for item in activities)
    return "\n".join(lines)


def _activity_compact(state: StateContext) -> str:
    activities = state.list_activities(limit=MAX_ACTIVITIES_SHOWN)
    per_team = Counter(item.team_id for item in activities)
    summary = ", ".join(f"{team}: {count}" for team, count in per_team.most_common()) or "none"
    return f"## Recent activity (summary)\nUpdates by team: {summary}"


def _budget(world: WorldController) -> str:
    credit = world.check_credit_limits()
    return (
        "## Budget\n"
        f"Credit status: {credit.status}. Daily {credit.daily.usage_percent}% used, "
        f"monthly {credit.monthly.usage_percent}% used. Be economical with tool calls."
    )


def render_sections(
    team_id: str,
    team: TeamDescriptor,
    state: StateContext,
    options: ContextOptions,
    world: WorldController | None = None,
) -> list[Section]:
    sections = [Section("identity", _identity(team))]
    if options.iteration > 1:
        sections.append(Section("session", _session(options)))
    sections.append(Section("system_state", _system_state(state, world)))
    sections.append(
        Section("current_work", _work_full(team_id, state), lambda: _work_compact(team_id, state))
    )
    sections.append(Section("other_teams", _other_teams(team_id, state)))
    sections.append(
        Section("recent_activity", _activity_full(state), lambda: _activity_compact(state))
    )
    if world is not None:
        sections.append(Section("budget", _budget(world)))
    sections.append(Section("guidelines", GUIDELINES))
    return sections


def fit_to_budget(sections: list[Section], budget_chars: int) -> list[Section]:
    def total() -> int:
        return sum(len(section.text) for section in sections) + 2 * (len(sections) - 1)

    candidates = sorted(
        (section for section in sections if section.compact is not None),
        key=lambda section: len(section.text),
        reverse=True,
    )
    for section in candidates:
        if total() <= budget_chars:
            break
        section.text = section.compact()
        section.compacted = True
    return sections


def build_context(
    team_id: str,
    team: TeamDescriptor,
    state: StateContext,
    options: ContextOptions | None = None,
    *,
    world: WorldController | None = None,
) -> str:
    opts = options or ContextOptions()
    sections = fit_to_budget(render_sections(team_id, team, state, opts, world), opts.budget_chars)
    return "\n\n".join(section.text for section in sections)

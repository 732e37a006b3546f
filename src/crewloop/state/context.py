from __future__ import annotations

import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, List, Optional, TypeVar

from crewloop.state.teams import TeamDescriptor, default_team_registry

TASK_STATUSES = frozenset(
    {"pending", "in_progress", "completed", "cancelled", "blocked", "failed", "skipped"}
)
TASK_PRIORITIES = ("low", "medium", "high", "critical")
DECISION_STATUSES = frozenset({"pending", "approved", "rejected", "deferred"})
DECISION_RESOLUTIONS = frozenset({"approved", "rejected", "deferred"})
ORCHESTRATOR_ID = "orchestrator"


def new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True, slots=True)
class StateLimits:
    tasks: int = 100
    decisions: int = 50
    activities: int = 200
    communications: int = 100


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    team_id: str
    created_by: str
    status: str = "pending"
    priority: str = "medium"
    progress: int = 0
    assigned_to: str | None = None
    created_ts: float = 0.0
    updated_ts: float = 0.0
    notes: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Decision:
    id: str
    title: str
    description: str
    team_id: str
    requested_by: str
    options: List[str] = field(default_factory=list)
    recommendation: str | None = None
    urgency: str = "medium"
    status: str = "pending"
    created_ts: float = 0.0
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_ts: float | None = None


@dataclass(slots=True)
class Activity:
    id: str
    agent: str
    team_id: str
    message: str
    tag: str
    ts: float
    source: str = "agent"


@dataclass(slots=True)
class Communication:
    id: str
    from_team: str
    to_team: str
    message: str
    from_agent: str
    ts: float
    kind: str = "message"


@dataclass(slots=True)
class TeamRuntime:
    status: str = "idle"
    run_count: int = 0
    last_run_ts: float | None = None
    last_summary: str = ""


T = TypeVar("T")


def _push_bounded(items: list[T], item: T, limit: int) -> None:
    items.insert(0, item)
    del items[limit:]


class StateContext:
    """Shared store of tasks, decisions, activities and communications.

    Collections are newest-first and bounded; every access goes through one
    re-entrant lock so concurrent loops can share a single instance.
    """

    def __init__(
        self,
        teams: dict[str, TeamDescriptor] | None = None,
        *,
        limits: StateLimits | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._teams = dict(teams) if teams is not None else default_team_registry()
        self._limits = limits or StateLimits()
        self._clock = clock
        self._lock = threading.RLock()
        self._tasks: list[Task] = []
        self._decisions: list[Decision] = []
        self._activities: list[Activity] = []
        self._communications: list[Communication] = []
        self._runtime: dict[str, TeamRuntime] = {team_id: TeamRuntime() for team_id in self._teams}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def limits(self) -> StateLimits:
        return self._limits

    # teams

    def team_ids(self) -> list[str]:
        return list(self._teams)

    def teams(self) -> list[TeamDescriptor]:
        return list(self._teams.values())

    def team(self, team_id: str) -> TeamDescriptor | None:
        return self._teams.get(team_id)

    def require_team(self, team_id: str) -> TeamDescriptor:
        team = self._teams.get(team_id)
        if team is None:
            valid = ", ".join(self._teams)
            raise ValueError(f"Unknown team: {team_id}. Valid teams: {valid}")
        return team

    def team_runtime(self, team_id: str) -> TeamRuntime:
        with self._lock:
            self.require_team(team_id)
            runtime = self._runtime[team_id]
            return TeamRuntime(**asdict(runtime))

    def mark_team_running(self, team_id: str) -> None:
        with self._lock:
            self.require_team(team_id)
            runtime = self._runtime[team_id]
            runtime.status = "running"
            runtime.run_count += 1
            runtime.last_run_ts = self._clock()

    def mark_team_finished(self, team_id: str, summary: str, *, failed: bool = False) -> None:
        with self._lock:
            self.require_team(team_id)
            runtime = self._runtime[team_id]
            runtime.status = "error" if failed else "idle"
            runtime.last_summary = summary

    # tasks

    def add_task(
        self,
        title: str,
        team_id: str,
        *,
        created_by: str,
        description: str = "",
        priority: str = "medium",
        assigned_to: str | None = None,
    ) -> Task:
        if not title.strip():
            raise ValueError("title must be a non-empty string")
        if priority not in TASK_PRIORITIES:
            raise ValueError(f"priority must be one of: {', '.join(TASK_PRIORITIES)}")
        with self._lock:
            self.require_team(team_id)
            now = self._clock()
            task = Task(
                id=new_id("task"),
                title=title.strip(),
                description=description,
                team_id=team_id,
                created_by=created_by,
                priority=priority,
                assigned_to=assigned_to,
                created_ts=now,
                updated_ts=now,
            )
            _push_bounded(self._tasks, task, self._limits.tasks)
            return task

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            return next((task for task in self._tasks if task.id == task_id), None)

    def update_task(
        self,
        task_id: str,
        *,
        status: str | None = None,
        progress: int | None = None,
        note: str | None = None,
    ) -> Task:
        if status is not None and status not in TASK_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(sorted(TASK_STATUSES))}")
        with self._lock:
            task = self.get_task(task_id)
            if task is None:
                raise ValueError(f"Task not found: {task_id}")
            if progress is not None:
                task.progress = max(0, min(100, int(progress)))
            if status is not None:
                task.status = status
                if status == "completed":
                    task.progress = 100
            if note:
                task.notes.append(note)
            task.updated_ts = self._clock()
            return task

    def remove_task(self, task_id: str) -> Task:
        with self._lock:
            task = self.get_task(task_id)
            if task is None:
                raise ValueError(f"Task not found: {task_id}")
            self._tasks.remove(task)
            return task

    def list_tasks(
        self,
        *,
        team_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        with self._lock:
            tasks = [
                task
                for task in self._tasks
                if (team_id is None or task.team_id == team_id)
                and (status is None or task.status == status)
            ]
        return tasks[:limit] if limit is not None else tasks

    # decisions

    def add_decision(
        self,
        title: str,
        team_id: str,
        *,
        requested_by: str,
        description: str = "",
        options: list[str] | None = None,
        recommendation: str | None = None,
        urgency: str = "medium",
    ) -> Decision:
        if not title.strip():
            raise ValueError("title must be a non-empty string")
        with self._lock:
            if team_id != ORCHESTRATOR_ID:
                self.require_team(team_id)
            decision = Decision(
                id=new_id("decision"),
                title=title.strip(),
                description=description,
                team_id=team_id,
                requested_by=requested_by,
                options=list(options or []),
                recommendation=recommendation,
                urgency=urgency,
                created_ts=self._clock(),
            )
            _push_bounded(self._decisions, decision, self._limits.decisions)
            return decision

    def get_decision(self, decision_id: str) -> Decision | None:
        with self._lock:
            return next((item for item in self._decisions if item.id == decision_id), None)

    def resolve_decision(
        self,
        decision_id: str,
        resolution: str,
        *,
        resolved_by: str,
        note: str | None = None,
    ) -> Decision:
        if resolution not in DECISION_RESOLUTIONS:
            raise ValueError(
                f"resolution must be one of: {', '.join(sorted(DECISION_RESOLUTIONS))}"
            )
        with self._lock:
            decision = self.get_decision(decision_id)
            if decision is None:
                raise ValueError(f"Decision not found: {decision_id}")
            if decision.status != "pending":
                raise ValueError(f"Decision already resolved as {decision.status}")
            decision.status = resolution
            decision.resolution = note
            decision.resolved_by = resolved_by
            decision.resolved_ts = self._clock()
            return decision

    def list_decisions(
        self,
        *,
        team_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[Decision]:
        with self._lock:
            decisions = [
                item
                for item in self._decisions
                if (team_id is None or item.team_id == team_id)
                and (status is None or item.status == status)
            ]
        return decisions[:limit] if limit is not None else decisions

    # activity feed and messaging

    def add_activity(
        self,
        agent: str,
        team_id: str,
        message: str,
        *,
        tag: str = "update",
        source: str = "agent",
    ) -> Activity:
        with self._lock:
            activity = Activity(
                id=new_id("activity"),
                agent=agent,
                team_id=team_id,
                message=message,
                tag=tag,
                ts=self._clock(),
                source=source,
            )
            _push_bounded(self._activities, activity, self._limits.activities)
            return activity

    def list_activities(
        self, *, team_id: str | None = None, limit: int | None = None
    ) -> list[Activity]:
        with self._lock:
            items = [
                item for item in self._activities if team_id is None or item.team_id == team_id
            ]
        return items[:limit] if limit is not None else items

    def activity_count(self) -> int:
        with self._lock:
            return len(self._activities)

    def add_communication(
        self,
        from_team: str,
        to_team: str,
        message: str,
        *,
        from_agent: str,
        kind: str = "message",
    ) -> Communication:
        with self._lock:
            self.require_team(to_team)
            communication = Communication(
                id=new_id("msg"),
                from_team=from_team,
                to_team=to_team,
                message=message,
                from_agent=from_agent,
                ts=self._clock(),
                kind=kind,
            )
            _push_bounded(self._communications, communication, self._limits.communications)
            return communication

    def list_communications(
        self, *, team_id: str | None = None, limit: int | None = None
    ) -> list[Communication]:
        with self._lock:
            items = [
                item
                for item in self._communications
                if team_id is None or team_id in (item.from_team, item.to_team)
            ]
        return items[:limit] if limit is not None else items

    # summaries

    def counts(self) -> dict[str, Any]:
        with self._lock:
            by_status: dict[str, int] = {}
            for task in self._tasks:
                by_status[task.status] = by_status.get(task.status, 0) + 1
            return {
                "tasks": len(self._tasks),
                "tasks_by_status": by_status,
                "pending_decisions": sum(1 for item in self._decisions if item.status == "pending"),
                "activities": len(self._activities),
                "communications": len(self._communications),
            }

    def snapshot(
        self,
        *,
        world_status: Optional[dict[str, Any]] = None,
        credit_status: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        with self._lock:
            teams = {
                team.id: {
                    "name": team.name,
                    "agents": team.agent_names,
                    "status": self._runtime[team.id].status,
                }
                for team in self._teams.values()
            }
        return {
            "teams": teams,
            "world_state": world_status or {},
            "credit_status": credit_status or {},
        }

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from crewloop.backends import get_backend
from crewloop.backends.registry import Backend
from crewloop.config import RuntimeSettings, load_settings
from crewloop.core.tracing import EventSink, TraceWriter, fan_out
from crewloop.core.types import LoopResult
from crewloop.errors import ActionNotPermittedError
from crewloop.runtime.agent_loop import AgentLoop, LoopOptions
from crewloop.runtime.checkpoints import CheckpointManager, new_session_id, open_store
from crewloop.runtime.orchestrator import OrchestratorOptions, OrchestratorResult, run_orchestrator
from crewloop.runtime.usage import NullUsageRecorder, UsageRecorder
from crewloop.state.context import ORCHESTRATOR_ID, StateContext
from crewloop.tools.executor import ToolExecutor
from crewloop.tools.team_tools import build_team_registry
from crewloop.world.controller import WorldController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Environment:
    """Process-owned handles shared by every loop: state, world, checkpoints."""

    settings: RuntimeSettings
    state: StateContext
    world: WorldController
    checkpoints: CheckpointManager
    usage_recorder: UsageRecorder = field(default_factory=NullUsageRecorder)

    def team_executor(self) -> ToolExecutor:
        root = self.settings.workspace_root
        return ToolExecutor(build_team_registry(root), world=self.world, workspace_root=root)

    def trace_writer(self, session_id: str) -> TraceWriter:
        return TraceWriter(session_id, base_dir=self.settings.trace_dir)


def build_environment(
    settings: RuntimeSettings | None = None,
    *,
    state: StateContext | None = None,
    usage_recorder: UsageRecorder | None = None,
) -> Environment:
    settings = settings or load_settings()
    state = state or StateContext()
    store = open_store(settings.checkpoint_backend, settings.checkpoint_dir)
    return Environment(
        settings=settings,
        state=state,
        world=WorldController.from_settings(state.team_ids(), settings),
        checkpoints=CheckpointManager(
            store,
            retention_hours=settings.checkpoint_retention_hours,
            max_per_team=settings.max_checkpoints_per_team,
        ),
        usage_recorder=usage_recorder or NullUsageRecorder(),
    )


def build_backend(
    settings: RuntimeSettings,
    provider: str | None = None,
    *,
    orchestrator: bool = False,
) -> Backend:
    name = (provider or settings.provider).lower()
    return get_backend(
        name,
        api_key=settings.api_key_for(name),
        model=settings.orchestrator_model if orchestrator else settings.model,
        timeout_s=settings.orchestrator_timeout_s if orchestrator else settings.timeout_s,
    )


def authorize_team_run(world: WorldController, team_id: str, task: str, *, trigger: bool = False) -> None:
    """Raise unless the world allows `team_id` to execute, directly or by owner trigger."""
    permission = world.can_execute_action(team_id, "execute")
    if permission.allowed:
        return
    if trigger and permission.requires_approval:
        triggered = world.trigger_team_action(team_id, "execute", {"task": task[:100]})
        if triggered.success:
            return
        code = triggered.data.get("code") if triggered.data else None
        raise ActionNotPermittedError(triggered.message, code=code)
    raise ActionNotPermittedError(permission.reason, code=permission.code)


def _team_loop(env: Environment, backend: Backend | None, provider: str | None) -> AgentLoop:
    name = (provider or env.settings.provider).lower()
    return AgentLoop(
        backend or build_backend(env.settings, name),
        env.state,
        executor=env.team_executor(),
        checkpoints=env.checkpoints,
        world=env.world,
        usage_recorder=env.usage_recorder,
        provider=name,
    )


def run_team(
    env: Environment,
    team_id: str,
    task: str,
    backend: Backend | None = None,
    *,
    provider: str | None = None,
    trigger: bool = False,
    max_iterations: int | None = None,
    event_sink: EventSink | None = None,
) -> LoopResult:
    env.state.require_team(team_id)
    authorize_team_run(env.world, team_id, task, trigger=trigger)
    loop = _team_loop(env, backend, provider)
    session_id = new_session_id()
    options = LoopOptions(
        max_iterations=max_iterations or env.settings.max_iterations,
        model=env.settings.model,
        max_tokens=env.settings.max_tokens,
        event_sink=fan_out(env.trace_writer(session_id), event_sink),
        session_id=session_id,
    )
    logger.info("running team %s (session %s)", team_id, session_id)
    return loop.run(team_id, task, options)


def resume_team(
    env: Environment,
    session_id: str,
    backend: Backend | None = None,
    *,
    provider: str | None = None,
    trigger: bool = False,
    max_iterations: int | None = None,
    event_sink: EventSink | None = None,
) -> LoopResult:
    checkpoint = env.checkpoints.require_resumable(session_id)
    authorize_team_run(env.world, checkpoint.team_id, checkpoint.task, trigger=trigger)
    loop = _team_loop(env, backend, provider)
    options = LoopOptions(
        max_iterations=max_iterations or env.settings.max_iterations,
        model=env.settings.model,
        max_tokens=env.settings.max_tokens,
        event_sink=fan_out(env.trace_writer(session_id), event_sink),
    )
    logger.info("resuming session %s for team %s", session_id, checkpoint.team_id)
    return loop.resume(session_id, options)


def orchestrate(
    env: Environment,
    message: str,
    backend: Backend | None = None,
    *,
    provider: str | None = None,
    event_sink: EventSink | None = None,
) -> OrchestratorResult:
    denial = env.world.check_halt(ORCHESTRATOR_ID)
    if denial is not None:
        raise ActionNotPermittedError(denial.reason, code=denial.code)
    name = (provider or env.settings.provider).lower()
    # worker loops keep the worker model and timeout
    delegation_backend = backend or build_backend(env.settings, name)
    backend = backend or build_backend(env.settings, name, orchestrator=True)
    trace_id = new_session_id()
    options = OrchestratorOptions(
        model=env.settings.orchestrator_model,
        max_iterations=env.settings.orchestrator_max_iterations,
        max_tokens=env.settings.orchestrator_max_tokens,
        delegation_model=env.settings.model,
        delegation_max_tokens=env.settings.max_tokens,
        event_sink=fan_out(env.trace_writer(trace_id), event_sink),
    )
    logger.info("orchestrating request (trace %s)", trace_id)
    return run_orchestrator(
        message,
        backend,
        env.state,
        options,
        world=env.world,
        usage_recorder=env.usage_recorder,
        provider=name,
        team_executor=env.team_executor(),
        delegation_backend=delegation_backend,
    )

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from crewloop.backends.registry import Backend
from crewloop.core.tracing import EventSink, emit
from crewloop.core.types import (
    Checkpoint,
    CheckpointStatus,
    LoopResult,
    Message,
    ModelRequest,
    TextResponse,
    ToolCallRecord,
    ToolResultBlock,
)
from crewloop.errors import ConfigurationError, TransportError
from crewloop.runtime.checkpoints import CheckpointManager
from crewloop.runtime.context_builder import ContextOptions, build_context
from crewloop.runtime.usage import UsageRecord, UsageRecorder, record_safely
from crewloop.state.context import Activity, StateContext
from crewloop.state.teams import AgentProfile, TeamDescriptor
from crewloop.tools.executor import ToolExecutor
from crewloop.tools.registry import TeamTool
from crewloop.tools.team_tools import build_team_registry
from crewloop.world.controller import WorldController

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 6
DEFAULT_MODEL = "claude-3-5-haiku-latest"
DEFAULT_MAX_TOKENS = 1024
NO_SUMMARY = "Agent completed without explicit summary."
NO_REMAINING = "No remaining iterations after resume"
CONTINUE_PROMPT = "Continue the assignment from where you left off."

TEAM_OUTCOMES = {
    TeamTool.CREATE_TASK.value: ("tasks_created", "task_created"),
    TeamTool.CREATE_DECISION_REQUEST.value: ("decisions_created", "decision_created"),
    TeamTool.SEND_MESSAGE.value: ("messages_sent", "message_sent"),
}


@dataclass(slots=True)
class LoopOptions:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    checkpoint_enabled: bool = True
    event_sink: EventSink | None = None
    context_budget_chars: int = 8000
    session_id: str | None = None


@dataclass(slots=True)
class LoopSpec:
    """What differs between a team loop and the orchestrator loop."""

    team_id: str
    team_name: str
    executor: ToolExecutor
    system_prompt: Callable[[int], str]
    completion_tool: str
    summary_field: str = "summary"
    outcomes: dict[str, tuple[str, str]] = field(default_factory=dict)
    no_summary: str = NO_SUMMARY


@dataclass(slots=True)
class LoopRun:
    messages: list[Message]
    result: LoopResult
    first_iteration: int
    last_iteration: int
    checkpoint: Checkpoint | None = None
    activity_marker: str | None = None


def _newest_activity_id(state: StateContext) -> str | None:
    newest = state.list_activities(limit=1)
    return newest[0].id if newest else None


def _activities_since(state: StateContext, marker: str | None) -> list[Activity]:
    # the feed is newest-first and bounded, so stop at the marker or the end
    fresh: list[Activity] = []
    for item in state.list_activities():
        if item.id == marker:
            break
        fresh.append(item)
    return fresh


def assignment_prompt(team: TeamDescriptor, task: str) -> str:
    agents = ", ".join(team.agent_names) or team.name
    return (
        "## Your Assignment\n\n"
        f"{task}\n\n"
        f"You are leading: {agents}\n\n"
        "Instructions:\n"
        "1. Review the current state with the read tools before acting.\n"
        "2. Break the work into concrete tasks for your agents.\n"
        "3. Raise decisions the owner must make and message other teams where needed.\n"
        "4. When the assignment is done, call signal_completion with a summary."
    )


class AgentLoop:
    """Observe-act loop: model turn, sequential tool execution, checkpoint, repeat."""

    def __init__(
        self,
        backend: Backend,
        state: StateContext,
        *,
        executor: ToolExecutor | None = None,
        checkpoints: CheckpointManager | None = None,
        world: WorldController | None = None,
        usage_recorder: UsageRecorder | None = None,
        provider: str = "anthropic",
    ) -> None:
        self.backend = backend
        self.state = state
        self.executor = executor or ToolExecutor(build_team_registry(), world=world)
        self.checkpoints = checkpoints
        self.world = world
        self.usage_recorder = usage_recorder
        self.provider = provider

    # entry points

    def run(self, team_id: str, task: str, options: LoopOptions | None = None) -> LoopResult:
        opts = options or LoopOptions()
        if opts.max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")
        team = self.state.require_team(team_id)
        result = LoopResult(team_id=team.id, team_name=team.name)
        messages = [Message.user_text(assignment_prompt(team, task))]
        checkpoint = None
        if opts.checkpoint_enabled and self.checkpoints is not None:
            checkpoint = self.checkpoints.create(
                team.id,
                task,
                team_name=team.name,
                team_agents=team.agent_names,
                state_snapshot=self._snapshot(),
                messages=messages,
                session_id=opts.session_id,
            )
            result.session_id = checkpoint.session_id
            emit(opts.event_sink, "checkpoint_created", session_id=checkpoint.session_id)
        emit(opts.event_sink, "loop_started", team_id=team.id, task=task[:100])
        run = LoopRun(
            messages=messages,
            result=result,
            first_iteration=1,
            last_iteration=opts.max_iterations,
            checkpoint=checkpoint,
            activity_marker=_newest_activity_id(self.state),
        )
        return self.drive(self.team_spec(team, opts), run, opts)

    def resume(self, session_id: str, options: LoopOptions | None = None) -> LoopResult:
        opts = options or LoopOptions()
        if self.checkpoints is None:
            raise ConfigurationError("resume requires a checkpoint store")
        checkpoint = self.checkpoints.require_resumable(session_id)
        remaining = opts.max_iterations - checkpoint.iteration
        emit(
            opts.event_sink,
            "resuming_from_checkpoint",
            session_id=session_id,
            iteration=checkpoint.iteration,
            remaining_iterations=remaining,
        )
        team = self.state.team(checkpoint.team_id) or TeamDescriptor(
            id=checkpoint.team_id,
            name=checkpoint.team_name or checkpoint.team_id,
            badge=checkpoint.team_id[:3].upper(),
            focus="",
            agents=tuple(AgentProfile(name=name, role="") for name in checkpoint.team_agents),
        )
        result = LoopResult(
            team_id=team.id,
            team_name=team.name,
            iterations=checkpoint.iteration,
            text_responses=list(checkpoint.text_responses),
            session_id=checkpoint.session_id,
        )
        if remaining <= 0:
            result.completion_summary = NO_REMAINING
            return result
        self.checkpoints.mark_running(checkpoint)
        messages = list(checkpoint.messages)
        if not messages or messages[-1].role == "assistant":
            messages.append(Message.user_text(CONTINUE_PROMPT))
        result.tool_calls = list(checkpoint.tool_calls)
        emit(opts.event_sink, "loop_started", team_id=team.id, task=checkpoint.task[:100], resumed=True)
        run = LoopRun(
            messages=messages,
            result=result,
            first_iteration=checkpoint.iteration + 1,
            last_iteration=opts.max_iterations,
            checkpoint=checkpoint,
            activity_marker=_newest_activity_id(self.state),
        )
        return self.drive(self.team_spec(team, opts), run, opts)

    def team_spec(self, team: TeamDescriptor, options: LoopOptions) -> LoopSpec:
        def system_prompt(iteration: int) -> str:
            return build_context(
                team.id,
                team,
                self.state,
                ContextOptions(
                    iteration=iteration,
                    max_iterations=options.max_iterations,
                    budget_chars=options.context_budget_chars,
                ),
                world=self.world,
            )

        return LoopSpec(
            team_id=team.id,
            team_name=team.name,
            executor=self.executor,
            system_prompt=system_prompt,
            completion_tool=TeamTool.SIGNAL_COMPLETION.value,
            outcomes=TEAM_OUTCOMES,
        )

    # engine

    def drive(self, spec: LoopSpec, run: LoopRun, options: LoopOptions) -> LoopResult:
        sink = options.event_sink
        result = run.result
        tools = spec.executor.definitions()
        if spec.team_id in self.state.team_ids():
            self.state.mark_team_running(spec.team_id)
        halted_reason: str | None = None
        failed = False
        iteration = run.first_iteration - 1

        while iteration < run.last_iteration:
            if self.world is not None and iteration >= run.first_iteration:
                denial = self.world.check_halt(spec.team_id)
                if denial is not None:
                    halted_reason = denial.reason
                    emit(sink, "loop_halted", team_id=spec.team_id, code=denial.code, reason=denial.reason)
                    break
            iteration += 1
            result.iterations = iteration
            emit(sink, "iteration_started", iteration=iteration, max_iterations=run.last_iteration)
            system = spec.system_prompt(iteration)
            emit(sink, "thinking", iteration=iteration)
            request = ModelRequest(
                model=options.model,
                system=system,
                messages=list(run.messages),
                tools=tools,
                max_tokens=options.max_tokens,
            )
            try:
                response = self.backend.complete(request)
            except TransportError as exc:
                failed = True
                result.error = str(exc)
                result.completion_summary = f"API error on iteration {iteration}: {exc}"
                emit(sink, "error", iteration=iteration, error=str(exc))
                logger.warning("team %s model call failed: %s", spec.team_id, exc)
                break
            except Exception as exc:
                result.error = str(exc)
                result.completion_summary = f"Unexpected error on iteration {iteration}: {exc}"
                self._finish(spec, run, CheckpointStatus.FAILED, sink)
                raise

            self._record_usage(spec, run, options, response.usage.input_tokens, response.usage.output_tokens)
            run.messages.append(Message(role="assistant", content=list(response.content)))
            texts = [block.text for block in response.text_blocks() if block.text.strip()]
            for text in texts:
                result.text_responses.append(TextResponse(text=text, iteration=iteration))

            tool_uses = response.tool_uses()
            if not tool_uses:
                result.completed = True
                result.completion_summary = "\n".join(texts) or spec.no_summary
                self._checkpoint_iteration(run, iteration)
                break

            signaled = False
            result_blocks: list[ToolResultBlock] = []
            for use in tool_uses:
                emit(sink, "tool_call", iteration=iteration, tool=use.name, input=use.input)
                tool_result = spec.executor.execute(
                    use.name, use.input, spec.team_id, self.state, iteration=iteration
                )
                emit(
                    sink,
                    "tool_result",
                    iteration=iteration,
                    tool=use.name,
                    success=tool_result.success,
                    message=tool_result.message,
                )
                result.tool_calls.append(
                    ToolCallRecord(
                        tool=use.name,
                        input=dict(use.input),
                        output=tool_result.to_dict(),
                        iteration=iteration,
                    )
                )
                outcome = spec.outcomes.get(use.name)
                if outcome is not None and tool_result.success:
                    bucket, event_kind = outcome
                    getattr(result, bucket).append(tool_result.data)
                    emit(sink, event_kind, iteration=iteration, data=tool_result.data)
                if use.name == spec.completion_tool and tool_result.success:
                    signaled = True
                    result.completed = True
                    data = tool_result.data if isinstance(tool_result.data, dict) else {}
                    result.completion_summary = str(data.get(spec.summary_field) or "Completed")
                    emit(sink, "completion_signaled", iteration=iteration, summary=result.completion_summary)
                result_blocks.append(tool_result.to_result_block(use.id))

            run.messages.append(Message(role="user", content=list(result_blocks)))
            self._checkpoint_iteration(run, iteration)
            emit(sink, "iteration_completed", iteration=iteration, tool_calls=len(tool_uses))
            if signaled:
                break

        result.activities = [
            asdict(item)
            for item in _activities_since(self.state, run.activity_marker)
            if item.team_id == spec.team_id
        ]

        if failed:
            status = CheckpointStatus.FAILED
        elif result.completed:
            status = CheckpointStatus.COMPLETED
        elif halted_reason is not None:
            status = CheckpointStatus.INTERRUPTED
            result.completion_summary = f"Halted after {result.iterations} iteration(s): {halted_reason}"
        else:
            status = CheckpointStatus.INTERRUPTED
            result.completion_summary = (
                f"Reached maximum iterations ({run.last_iteration}). Work may be incomplete."
            )
            emit(sink, "max_iterations_reached", iterations=result.iterations)
        result.success = result.completed or len(result.tool_calls) > 0
        self._finish(spec, run, status, sink)
        emit(
            sink,
            "loop_completed",
            team_id=spec.team_id,
            iterations=result.iterations,
            completed=result.completed,
            success=result.success,
        )
        return result

    def _finish(self, spec: LoopSpec, run: LoopRun, status: CheckpointStatus, sink: EventSink | None) -> None:
        if run.checkpoint is not None and self.checkpoints is not None:
            self.checkpoints.finalize(run.checkpoint, status, run.result.to_dict())
            emit(sink, "checkpoint_finalized", session_id=run.checkpoint.session_id, status=status.value)
        if spec.team_id in self.state.team_ids():
            self.state.mark_team_finished(
                spec.team_id, run.result.completion_summary, failed=status == CheckpointStatus.FAILED
            )

    def _checkpoint_iteration(self, run: LoopRun, iteration: int) -> None:
        if run.checkpoint is None or self.checkpoints is None:
            return
        self.checkpoints.update_after_iteration(
            run.checkpoint,
            iteration,
            run.messages,
            run.result.tool_calls,
            run.result.text_responses,
        )

    def _record_usage(
        self,
        spec: LoopSpec,
        run: LoopRun,
        options: LoopOptions,
        input_tokens: int,
        output_tokens: int,
    ) -> None:
        usage = run.result.usage
        usage.input_tokens += input_tokens
        usage.output_tokens += output_tokens
        usage.api_calls += 1
        cost = record_safely(
            self.usage_recorder,
            UsageRecord(
                provider=self.provider,
                model=options.model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                team_id=spec.team_id,
                session_id=run.result.session_id,
            ),
        )
        usage.total_cost += cost
        if cost > 0 and self.world is not None:
            self.world.record_spend(cost, source=f"agent_loop:{spec.team_id}")

    def _snapshot(self) -> dict[str, Any]:
        if self.world is None:
            return self.state.snapshot()
        status = self.world.status()
        return self.state.snapshot(
            world_status={
                "world_status": status["world_status"],
                "global_paused": status["global_paused"],
                "emergency_stop": status["emergency_stop"]["triggered"],
            },
            credit_status=status["credit"],
        )


def run_agent_loop(
    team_id: str,
    task: str,
    backend: Backend,
    state: StateContext,
    options: LoopOptions | None = None,
    **loop_kwargs: Any,
) -> LoopResult:
    return AgentLoop(backend, state, **loop_kwargs).run(team_id, task, options)


def resume_agent_loop(
    session_id: str,
    backend: Backend,
    state: StateContext,
    checkpoints: CheckpointManager,
    options: LoopOptions | None = None,
    **loop_kwargs: Any,
) -> LoopResult:
    return AgentLoop(backend, state, checkpoints=checkpoints, **loop_kwargs).resume(session_id, options)

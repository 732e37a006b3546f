"""Top-level orchestrator loop.

The orchestrator is an agent loop with its own tool catalogue. Its main tool,
delegate_to_team, runs a complete nested team loop synchronously and hands a
compact summary of the outcome back to the model. Nested loops get the team
catalogue, which has no delegation tool, and a depth counter rejects any
delegation attempted while another is already in flight.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, List

from crewloop.backends.registry import Backend
from crewloop.core.tracing import EventSink, emit, tagged_sink
from crewloop.core.types import LoopResult, Message, TextResponse, ToolCallRecord, UsageTotals
from crewloop.errors import ActionNotPermittedError
from crewloop.runtime.agent_loop import AgentLoop, LoopOptions, LoopRun, LoopSpec
from crewloop.runtime.usage import UsageRecorder
from crewloop.state.context import ORCHESTRATOR_ID, StateContext
from crewloop.tools.context import ToolContext
from crewloop.tools.executor import ToolExecutor
from crewloop.tools.orchestrator_tools import build_orchestrator_registry
from crewloop.tools.registry import OrchestratorTool
from crewloop.world.controller import WorldController

logger = logging.getLogger(__name__)

ORCHESTRATOR_MODEL = "claude-sonnet-4-20250514"
ORCHESTRATOR_MAX_ITERATIONS = 10
ORCHESTRATOR_MAX_TOKENS = 4096
DELEGATION_MAX_ITERATIONS = 6
MAX_DELEGATION_DEPTH = 1

DELEGATED_FALLBACK = (
    "I delegated work to {count} team(s). The work may still be in progress. Check back for updates."
)
LIMIT_FALLBACK = "I reached my iteration limit. Please try breaking your request into smaller parts."
ERROR_RESPONSE = "I encountered an error: {error}. Please try again."

ORCHESTRATOR_OUTCOMES = {
    OrchestratorTool.CREATE_DECISION_FOR_OWNER.value: ("decisions_created", "decision_created"),
    OrchestratorTool.BROADCAST_MESSAGE.value: ("messages_sent", "message_sent"),
}


@dataclass(slots=True)
class OrchestratorOptions:
    model: str = ORCHESTRATOR_MODEL
    max_iterations: int = ORCHESTRATOR_MAX_ITERATIONS
    max_tokens: int = ORCHESTRATOR_MAX_TOKENS
    delegation_model: str = "claude-3-5-haiku-latest"
    delegation_max_iterations: int = DELEGATION_MAX_ITERATIONS
    delegation_max_tokens: int = 1024
    event_sink: EventSink | None = None
    history: List[Message] = field(default_factory=list)


@dataclass(slots=True)
class OrchestratorResult:
    success: bool = False
    user_response: str = ""
    completed: bool = False
    iterations: int = 0
    delegations: List[dict[str, Any]] = field(default_factory=list)
    decisions_created: List[dict[str, Any]] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    text_responses: List[TextResponse] = field(default_factory=list)
    usage: UsageTotals = field(default_factory=UsageTotals)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def orchestrator_prompt(state: StateContext, world: WorldController | None = None) -> str:
    lines = [
        "## Identity",
        "You are the main orchestrator. You sit between the owner and the specialised teams: "
        "understand the request, break it into work, delegate to the right teams and report back.",
        "",
        "## Available teams",
    ]
    for team in state.teams():
        agents = ", ".join(team.agent_names)
        lines.append(f"- **{team.name}** ({team.id}): {team.focus} Agents: {agents}")
    lines += [
        "",
        "## How to work",
        "1. Analyse the request and decide which team fits.",
        "2. Use delegate_to_team to run that team on a specific task; it returns when the team is done.",
        "3. For multi-team work, delegate one team at a time and pass earlier results as context.",
        "4. Raise choices that need the owner with create_decision_for_owner.",
        "5. Finish with respond_to_user: what was done, blockers, and next steps.",
        "",
        "## Constraints",
        "- You cannot change files or state directly; teams do the work.",
        "- Do not delegate more than the request needs.",
        "- If the user only wants to talk, answer without delegating.",
    ]
    if world is not None:
        status = world.status()
        lines += [
            "",
            "## World",
            f"World status: {status['world_status']}. Credit: {status['credit']['status']}.",
        ]
    return "\n".join(lines)


class DelegationRunner:
    """Runs one nested team loop per delegate_to_team call."""

    def __init__(
        self,
        backend: Backend,
        state: StateContext,
        options: OrchestratorOptions,
        *,
        executor: ToolExecutor | None = None,
        world: WorldController | None = None,
        usage_recorder: UsageRecorder | None = None,
        provider: str = "anthropic",
        max_depth: int = MAX_DELEGATION_DEPTH,
    ) -> None:
        self.loop = AgentLoop(
            backend,
            state,
            executor=executor,
            world=world,
            usage_recorder=usage_recorder,
            provider=provider,
        )
        self.options = options
        self.world = world
        self.max_depth = max_depth
        self.depth = 0
        self.results: list[LoopResult] = []

    def __call__(self, team_id: str, task: str, ctx: ToolContext) -> LoopResult:
        sink = self.options.event_sink
        if self.depth >= self.max_depth:
            raise ActionNotPermittedError(
                f"Delegation depth limit reached ({self.max_depth})", code="DELEGATION_DEPTH"
            )
        if self.world is not None:
            denial = self.world.check_halt(team_id)
            if denial is not None:
                raise ActionNotPermittedError(denial.reason, code=denial.code)
        emit(sink, "delegation_started", team_id=team_id, task=task[:100])
        self.depth += 1
        try:
            result = self.loop.run(
                team_id,
                task,
                LoopOptions(
                    max_iterations=self.options.delegation_max_iterations,
                    model=self.options.delegation_model,
                    max_tokens=self.options.delegation_max_tokens,
                    checkpoint_enabled=False,
                    event_sink=tagged_sink(sink, delegated_team=team_id),
                ),
            )
        except Exception as exc:
            emit(sink, "delegation_failed", team_id=team_id, error=str(exc))
            logger.warning("delegation to %s failed: %s", team_id, exc)
            raise
        finally:
            self.depth -= 1
        self.results.append(result)
        emit(sink, "delegation_completed", team_id=team_id, success=result.success)
        return result


def run_orchestrator(
    message: str,
    backend: Backend,
    state: StateContext,
    options: OrchestratorOptions | None = None,
    *,
    world: WorldController | None = None,
    usage_recorder: UsageRecorder | None = None,
    provider: str = "anthropic",
    team_executor: ToolExecutor | None = None,
    delegation_backend: Backend | None = None,
) -> OrchestratorResult:
    """Run one orchestrator request; nested team loops use `delegation_backend` when given."""
    opts = options or OrchestratorOptions()
    sink = opts.event_sink
    runner = DelegationRunner(
        delegation_backend or backend,
        state,
        opts,
        executor=team_executor,
        world=world,
        usage_recorder=usage_recorder,
        provider=provider,
    )
    executor = ToolExecutor(build_orchestrator_registry(runner, state.team_ids()), world=world)
    loop = AgentLoop(
        backend,
        state,
        executor=executor,
        world=world,
        usage_recorder=usage_recorder,
        provider=provider,
    )
    spec = LoopSpec(
        team_id=ORCHESTRATOR_ID,
        team_name="Orchestrator",
        executor=executor,
        system_prompt=lambda _iteration: orchestrator_prompt(state, world),
        completion_tool=OrchestratorTool.RESPOND_TO_USER.value,
        summary_field="message",
        outcomes=ORCHESTRATOR_OUTCOMES,
        no_summary="Task completed.",
    )
    run = LoopRun(
        messages=[*opts.history, Message.user_text(message)],
        result=LoopResult(team_id=ORCHESTRATOR_ID, team_name="Orchestrator"),
        first_iteration=1,
        last_iteration=opts.max_iterations,
    )
    emit(sink, "orchestrator_started", message=message[:100])
    loop_result = loop.drive(
        spec,
        run,
        LoopOptions(
            max_iterations=opts.max_iterations,
            model=opts.model,
            max_tokens=opts.max_tokens,
            checkpoint_enabled=False,
            event_sink=sink,
        ),
    )

    result = OrchestratorResult(
        completed=loop_result.completed,
        iterations=loop_result.iterations,
        decisions_created=loop_result.decisions_created,
        tool_calls=loop_result.tool_calls,
        text_responses=loop_result.text_responses,
        usage=loop_result.usage,
        error=loop_result.error,
    )
    result.delegations = [
        call.output["data"]
        for call in loop_result.tool_calls
        if call.tool == OrchestratorTool.DELEGATE_TO_TEAM.value and call.output.get("success")
    ]
    for nested in runner.results:
        result.usage.input_tokens += nested.usage.input_tokens
        result.usage.output_tokens += nested.usage.output_tokens
        result.usage.total_cost += nested.usage.total_cost
        result.usage.api_calls += nested.usage.api_calls

    if loop_result.error is not None:
        result.user_response = ERROR_RESPONSE.format(error=loop_result.error)
    elif loop_result.completed:
        result.user_response = loop_result.completion_summary
    elif result.delegations:
        result.user_response = DELEGATED_FALLBACK.format(count=len(result.delegations))
    else:
        result.user_response = LIMIT_FALLBACK
    result.success = True
    emit(sink, "orchestrator_completed", success=result.success, iterations=result.iterations)
    return result

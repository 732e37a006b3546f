from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from crewloop.core.types import ToolDefinition
from crewloop.tools.context import ToolContext
from crewloop.tools.results import ToolResult

ToolHandler = Callable[[dict[str, Any], ToolContext], ToolResult]


class TeamTool(str, Enum):
    GET_SYSTEM_STATE = "get_system_state"
    GET_TASKS = "get_tasks"
    GET_DECISIONS = "get_decisions"
    GET_TEAM_INFO = "get_team_info"
    GET_RECENT_ACTIVITY = "get_recent_activity"
    CREATE_TASK = "create_task"
    UPDATE_TASK_STATUS = "update_task_status"
    DELETE_TASK = "delete_task"
    CREATE_DECISION_REQUEST = "create_decision_request"
    RESOLVE_DECISION = "resolve_decision"
    SEND_MESSAGE = "send_message"
    REPORT_PROGRESS = "report_progress"
    REQUEST_TEAM_ASSISTANCE = "request_team_assistance"
    READ_WORKSPACE_FILE = "read_workspace_file"
    WRITE_WORKSPACE_FILE = "write_workspace_file"
    LIST_WORKSPACE_FILES = "list_workspace_files"
    SEARCH_WORKSPACE_FILES = "search_workspace_files"
    SIGNAL_COMPLETION = "signal_completion"


class OrchestratorTool(str, Enum):
    DELEGATE_TO_TEAM = "delegate_to_team"
    GET_SYSTEM_OVERVIEW = "get_system_overview"
    GET_TEAM_STATUS = "get_team_status"
    GET_PENDING_DECISIONS = "get_pending_decisions"
    GET_ALL_TASKS = "get_all_tasks"
    CREATE_DECISION_FOR_OWNER = "create_decision_for_owner"
    BROADCAST_MESSAGE = "broadcast_message"
    RESPOND_TO_USER = "respond_to_user"


E = TypeVar("E", bound=Enum)


@dataclass(slots=True)
class ToolSpec(Generic[E]):
    name: E
    description: str
    handler: ToolHandler
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=str(self.name.value),
            description=self.description,
            input_schema=self.input_schema,
        )


class ToolRegistry(Generic[E]):
    """Closed registry: only members of `names` can be registered or resolved."""

    def __init__(self, names: type[E]) -> None:
        self._names = names
        self._tools: dict[E, ToolSpec[E]] = {}

    @property
    def names(self) -> type[E]:
        return self._names

    def register(
        self,
        name: E,
        description: str,
        handler: ToolHandler,
        input_schema: dict[str, Any] | None = None,
    ) -> None:
        if not isinstance(name, self._names):
            raise ValueError(f"{name!r} is not a {self._names.__name__}")
        spec = ToolSpec(name=name, description=description, handler=handler)
        if input_schema is not None:
            spec.input_schema = input_schema
        self._tools[name] = spec

    def resolve(self, tool_name: str) -> E | None:
        try:
            return self._names(tool_name)
        except ValueError:
            return None

    def get(self, tool_name: str) -> ToolSpec[E] | None:
        name = self.resolve(tool_name)
        if name is None:
            return None
        return self._tools.get(name)

    def list_tools(self) -> list[ToolSpec[E]]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        return [spec.definition() for spec in self._tools.values()]

    def missing(self) -> list[E]:
        return [name for name in self._names if name not in self._tools]

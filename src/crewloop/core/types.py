from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, List, Union


@dataclass(slots=True)
class TextBlock:
    text: str
    type: ClassVar[str] = "text"


@dataclass(slots=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_use"


@dataclass(slots=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    type: ClassVar[str] = "tool_result"


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(slots=True)
class Message:
    role: str
    content: List[ContentBlock] = field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextBlock(text=text)])

    @classmethod
    def assistant_text(cls, text: str) -> "Message":
        return cls(role="assistant", content=[TextBlock(text=text)])

    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


@dataclass(slots=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class ModelRequest:
    model: str
    system: str
    messages: List[Message]
    tools: List[ToolDefinition] = field(default_factory=list)
    max_tokens: int = 1024


@dataclass(slots=True)
class ModelResponse:
    content: List[ContentBlock] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: str | None = None

    @classmethod
    def text(cls, text: str) -> "ModelResponse":
        return cls(content=[TextBlock(text=text)])

    def text_blocks(self) -> list[TextBlock]:
        return [block for block in self.content if isinstance(block, TextBlock)]

    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


@dataclass(slots=True)
class ToolCallRecord:
    tool: str
    input: dict[str, Any]
    output: dict[str, Any]
    iteration: int


@dataclass(slots=True)
class TextResponse:
    text: str
    iteration: int


@dataclass(slots=True)
class UsageTotals:
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0
    api_calls: int = 0


@dataclass(slots=True)
class LoopResult:
    team_id: str
    team_name: str
    success: bool = False
    completed: bool = False
    iterations: int = 0
    completion_summary: str = ""
    activities: List[dict[str, Any]] = field(default_factory=list)
    tasks_created: List[dict[str, Any]] = field(default_factory=list)
    decisions_created: List[dict[str, Any]] = field(default_factory=list)
    messages_sent: List[dict[str, Any]] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    text_responses: List[TextResponse] = field(default_factory=list)
    usage: UsageTotals = field(default_factory=UsageTotals)
    session_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def block_to_dict(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {"type": "tool_result", "tool_use_id": block.tool_use_id, "content": block.content}


def block_from_dict(payload: Any) -> ContentBlock:
    if not isinstance(payload, dict):
        raise ValueError("content block must be an object")
    kind = payload.get("type")
    if kind == "text":
        text = payload.get("text")
        if not isinstance(text, str):
            raise ValueError("text block must include a text string")
        return TextBlock(text=text)
    if kind == "tool_use":
        block_id = payload.get("id")
        name = payload.get("name")
        tool_input = payload.get("input", {})
        if not isinstance(block_id, str) or not isinstance(name, str):
            raise ValueError("tool_use block must include id/name strings")
        if not isinstance(tool_input, dict):
            raise ValueError("tool_use input must be an object")
        return ToolUseBlock(id=block_id, name=name, input=tool_input)
    if kind == "tool_result":
        tool_use_id = payload.get("tool_use_id")
        content = payload.get("content")
        if not isinstance(tool_use_id, str) or not isinstance(content, str):
            raise ValueError("tool_result block must include tool_use_id/content strings")
        return ToolResultBlock(tool_use_id=tool_use_id, content=content)
    raise ValueError(f"unknown content block type: {kind!r}")


def message_to_dict(message: Message) -> dict[str, Any]:
    return {"role": message.role, "content": [block_to_dict(block) for block in message.content]}


def message_from_dict(payload: Any) -> Message:
    if not isinstance(payload, dict):
        raise ValueError("message entries must be objects")
    role = payload.get("role")
    if role not in {"user", "assistant"}:
        raise ValueError("message role must be 'user' or 'assistant'")
    content = payload.get("content")
    if isinstance(content, str):
        return Message(role=role, content=[TextBlock(text=content)])
    if not isinstance(content, list):
        raise ValueError("message content must be a string or a list of blocks")
    return Message(role=role, content=[block_from_dict(item) for item in content])


class CheckpointStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


FINAL_STATUSES = frozenset({CheckpointStatus.COMPLETED, CheckpointStatus.FAILED})
RESUMABLE_STATUSES = frozenset({CheckpointStatus.RUNNING, CheckpointStatus.INTERRUPTED})
CHECKPOINT_SCHEMA_VERSION = 1


@dataclass(slots=True)
class Checkpoint:
    session_id: str
    team_id: str
    task: str
    team_name: str = ""
    team_agents: List[str] = field(default_factory=list)
    state_snapshot: dict[str, Any] = field(default_factory=dict)
    iteration: int = 0
    messages: List[Message] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    text_responses: List[TextResponse] = field(default_factory=list)
    result: dict[str, Any] | None = None
    status: CheckpointStatus = CheckpointStatus.RUNNING
    created_ts: float = 0.0
    updated_ts: float = 0.0
    revision: int = 0
    schema_version: int = CHECKPOINT_SCHEMA_VERSION

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    @property
    def is_resumable(self) -> bool:
        return self.status in RESUMABLE_STATUSES

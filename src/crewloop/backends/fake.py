from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Union

from crewloop.backends.registry import register_backend
from crewloop.core.types import (
    ContentBlock,
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolUseBlock,
    Usage,
    block_from_dict,
)

Responder = Callable[[ModelRequest], ModelResponse]
ScriptedTurn = Union[ModelResponse, Exception, Responder]


def tool_use(name: str, tool_input: dict[str, Any] | None = None, *, text: str | None = None) -> ModelResponse:
    blocks: list[ContentBlock] = []
    if text:
        blocks.append(TextBlock(text=text))
    blocks.append(ToolUseBlock(id=f"toolu_{uuid.uuid4().hex[:12]}", name=name, input=tool_input or {}))
    return ModelResponse(content=blocks, usage=Usage(input_tokens=10, output_tokens=5))


def tool_uses(*calls: tuple[str, dict[str, Any]], text: str | None = None) -> ModelResponse:
    blocks: list[ContentBlock] = [TextBlock(text=text)] if text else []
    for name, tool_input in calls:
        blocks.append(ToolUseBlock(id=f"toolu_{uuid.uuid4().hex[:12]}", name=name, input=tool_input))
    return ModelResponse(content=blocks, usage=Usage(input_tokens=10, output_tokens=5))


def text(value: str) -> ModelResponse:
    return ModelResponse(content=[TextBlock(text=value)], usage=Usage(input_tokens=10, output_tokens=5))


@dataclass(slots=True)
class FakeBackend:
    """Scripted backend: pops one turn per call, then falls back to `responder`."""

    responses: List[ScriptedTurn] = field(default_factory=list)
    responder: Responder | None = None
    calls: List[ModelRequest] = field(default_factory=list)

    def complete(self, request: ModelRequest) -> ModelResponse:
        self.calls.append(request)
        if self.responses:
            turn = self.responses.pop(0)
            if isinstance(turn, Exception):
                raise turn
            if isinstance(turn, ModelResponse):
                return turn
            return turn(request)
        if self.responder is not None:
            return self.responder(request)
        return ModelResponse(content=[], usage=Usage())

    def extend_responses(self, responses: Iterable[ScriptedTurn]) -> None:
        self.responses.extend(responses)

    def set_responses(self, responses: Iterable[ScriptedTurn]) -> None:
        self.responses = list(responses)


def _load_env_turns(env_value: str) -> list[ModelResponse]:
    data = json.loads(env_value)
    if not isinstance(data, list):
        raise ValueError("fake responses must be a JSON list")
    turns: list[ModelResponse] = []
    for item in data:
        if isinstance(item, str):
            turns.append(text(item))
        elif isinstance(item, list):
            turns.append(ModelResponse(content=[block_from_dict(block) for block in item]))
        else:
            raise ValueError("fake responses must be strings or lists of content blocks")
    return turns


def _factory() -> FakeBackend:
    backend = FakeBackend()
    responses_json = os.getenv("CREWLOOP_FAKE_RESPONSES")
    if responses_json:
        backend.responses = list(_load_env_turns(responses_json))
    return backend


register_backend("fake", _factory, remote=False)

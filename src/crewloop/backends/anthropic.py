from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from crewloop.backends.http import post_json
from crewloop.backends.registry import register_backend
from crewloop.config import WORKER_MODELS
from crewloop.core.types import (
    ContentBlock,
    Message,
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from crewloop.errors import ConfigurationError, TransportError

API_VERSION = "2023-06-01"
DEFAULT_BASE_URL = "https://api.anthropic.com"


def _block_to_wire(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {"type": "tool_result", "tool_use_id": block.tool_use_id, "content": block.content}


def _message_to_wire(message: Message) -> dict[str, Any]:
    return {"role": message.role, "content": [_block_to_wire(block) for block in message.content]}


def to_wire(request: ModelRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens,
        "system": request.system,
        "messages": [_message_to_wire(message) for message in request.messages],
    }
    if request.tools:
        payload["tools"] = [
            {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
            for tool in request.tools
        ]
    return payload


def from_wire(data: dict[str, Any]) -> ModelResponse:
    content = data.get("content")
    if not isinstance(content, list):
        raise TransportError("anthropic response is missing a content list")
    blocks: list[ContentBlock] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "text" and isinstance(item.get("text"), str):
            blocks.append(TextBlock(text=item["text"]))
        elif kind == "tool_use":
            tool_input = item.get("input")
            if isinstance(tool_input, str):
                try:
                    tool_input = json.loads(tool_input)
                except json.JSONDecodeError:
                    tool_input = {}
            blocks.append(
                ToolUseBlock(
                    id=str(item.get("id", "")),
                    name=str(item.get("name", "")),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
    usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    return ModelResponse(
        content=blocks,
        usage=Usage(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        ),
        stop_reason=data.get("stop_reason"),
    )


def validate_api_key(api_key: str | None) -> str:
    if not api_key:
        raise ConfigurationError("Anthropic API key is required")
    if not api_key.startswith("sk-ant-"):
        raise ConfigurationError("Invalid Anthropic API key format (expected 'sk-ant-...')")
    return api_key


@dataclass(slots=True)
class AnthropicBackend:
    api_key: str
    model: str = WORKER_MODELS["anthropic"]
    timeout_s: float = 20.0
    base_url: str = DEFAULT_BASE_URL

    def __post_init__(self) -> None:
        validate_api_key(self.api_key)

    def complete(self, request: ModelRequest) -> ModelResponse:
        if not request.model:
            request.model = self.model
        data = post_json(
            f"{self.base_url.rstrip('/')}/v1/messages",
            to_wire(request),
            {"x-api-key": self.api_key, "anthropic-version": API_VERSION},
            self.timeout_s,
            provider="Anthropic",
        )
        return from_wire(data)


def _factory(**kwargs: Any) -> AnthropicBackend:
    return AnthropicBackend(**kwargs)


register_backend("anthropic", _factory)

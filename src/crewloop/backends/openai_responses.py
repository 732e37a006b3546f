from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from crewloop.backends.http import post_json
from crewloop.backends.registry import register_backend
from crewloop.config import WORKER_MODELS
from crewloop.core.types import (
    ContentBlock,
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from crewloop.errors import ConfigurationError, TransportError

DEFAULT_BASE_URL = "https://api.openai.com"


def to_wire(request: ModelRequest) -> dict[str, Any]:
    """Map the canonical transcript onto Responses API input items."""
    items: list[dict[str, Any]] = [{"role": "system", "content": request.system}]
    for message in request.messages:
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                items.append(
                    {
                        "type": "function_call_output",
                        "call_id": block.tool_use_id,
                        "output": block.content,
                    }
                )
            elif isinstance(block, ToolUseBlock):
                items.append(
                    {
                        "type": "function_call",
                        "call_id": block.id,
                        "name": block.name,
                        "arguments": json.dumps(block.input),
                    }
                )
            elif isinstance(block, TextBlock):
                items.append({"role": message.role, "content": block.text})
    payload: dict[str, Any] = {
        "model": request.model,
        "instructions": request.system,
        "input": items,
        "max_output_tokens": request.max_tokens,
    }
    if request.tools:
        payload["tools"] = [
            {
                "type": "function",
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            }
            for tool in request.tools
        ]
    return payload


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def from_wire(data: dict[str, Any]) -> ModelResponse:
    output = data.get("output")
    if not isinstance(output, list):
        raise TransportError("openai response is missing an output list")
    blocks: list[ContentBlock] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "message":
            for part in item.get("content") or []:
                if (
                    isinstance(part, dict)
                    and part.get("type") == "output_text"
                    and isinstance(part.get("text"), str)
                ):
                    blocks.append(TextBlock(text=part["text"]))
        elif kind == "function_call":
            blocks.append(
                ToolUseBlock(
                    id=str(item.get("call_id") or item.get("id") or ""),
                    name=str(item.get("name", "")),
                    input=_parse_arguments(item.get("arguments")),
                )
            )
    usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    return ModelResponse(
        content=blocks,
        usage=Usage(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        ),
        stop_reason=data.get("status"),
    )


def validate_api_key(api_key: str | None) -> str:
    if not api_key:
        raise ConfigurationError("OpenAI API key is required")
    if not api_key.startswith("sk-"):
        raise ConfigurationError("Invalid OpenAI API key format (expected 'sk-...')")
    return api_key


@dataclass(slots=True)
class OpenAIResponsesBackend:
    api_key: str
    model: str = WORKER_MODELS["openai"]
    timeout_s: float = 20.0
    base_url: str = DEFAULT_BASE_URL

    def __post_init__(self) -> None:
        validate_api_key(self.api_key)

    def complete(self, request: ModelRequest) -> ModelResponse:
        if not request.model:
            request.model = self.model
        data = post_json(
            f"{self.base_url.rstrip('/')}/v1/responses",
            to_wire(request),
            {"Authorization": f"Bearer {self.api_key}"},
            self.timeout_s,
            provider="OpenAI",
        )
        return from_wire(data)


def _factory(**kwargs: Any) -> OpenAIResponsesBackend:
    return OpenAIResponsesBackend(**kwargs)


register_backend("openai", _factory)

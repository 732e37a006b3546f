from __future__ import annotations

import io
import json
import urllib.error

import pytest

from crewloop.backends import AnthropicBackend, FakeBackend, OpenAIResponsesBackend, get_backend, list_backends
from crewloop.backends import anthropic, openai_responses, registry
from crewloop.backends.fake import text, tool_use
from crewloop.backends.registry import register_backend
from crewloop.core.types import (
    Message,
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from crewloop.errors import ConfigurationError, TransportError


class FakeResponse:
    def __init__(self, payload: object) -> None:
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def _request() -> ModelRequest:
    return ModelRequest(
        model="m",
        system="be helpful",
        messages=[
            Message.user_text("hi"),
            Message(role="assistant", content=[ToolUseBlock(id="call_1", name="get_tasks", input={"limit": 2})]),
            Message(role="user", content=[ToolResultBlock(tool_use_id="call_1", content="[]")]),
        ],
        tools=[ToolDefinition(name="get_tasks", description="List tasks")],
        max_tokens=64,
    )


def test_registry_lists_builtin_backends() -> None:
    assert {"anthropic", "fake", "openai"} <= set(list_backends())
    with pytest.raises(ConfigurationError, match="Unknown backend"):
        get_backend("nope")
    with pytest.raises(ValueError, match="already registered"):
        register_backend("fake", lambda **_: FakeBackend())


def test_local_backends_ignore_credentials(monkeypatch) -> None:
    monkeypatch.setattr(registry, "_BACKENDS", dict(registry._BACKENDS))
    register_backend("echo", lambda: FakeBackend(responses=[text("echo")]), remote=False)

    backend = get_backend("Echo", api_key="unused", model="m", timeout_s=1.0)

    assert backend.complete(_request()).text_blocks()[0].text == "echo"
    assert get_backend("fake", api_key=None, model="m", timeout_s=1.0).calls == []


def test_fake_backend_scripted_turns() -> None:
    boom = TransportError("down")
    backend = FakeBackend(responses=[text("one"), boom, lambda request: text(request.system)])

    assert backend.complete(_request()).text_blocks()[0].text == "one"
    with pytest.raises(TransportError):
        backend.complete(_request())
    assert backend.complete(_request()).text_blocks()[0].text == "be helpful"
    assert backend.complete(_request()).content == []
    assert len(backend.calls) == 4


def test_fake_backend_from_env(monkeypatch) -> None:
    monkeypatch.setenv(
        "CREWLOOP_FAKE_RESPONSES",
        json.dumps(["hello", [{"type": "tool_use", "id": "t1", "name": "get_tasks", "input": {}}]]),
    )

    backend = get_backend("fake")

    assert backend.complete(_request()).text_blocks()[0].text == "hello"
    assert backend.complete(_request()).tool_uses()[0].name == "get_tasks"


def test_tool_use_helper() -> None:
    response = tool_use("create_task", {"title": "x"}, text="thinking")

    assert isinstance(response.content[0], TextBlock)
    assert response.tool_uses()[0].input == {"title": "x"}
    assert response.tool_uses()[0].id.startswith("toolu_")


def test_anthropic_key_validation() -> None:
    with pytest.raises(ConfigurationError):
        AnthropicBackend(api_key="")
    with pytest.raises(ConfigurationError, match="sk-ant-"):
        AnthropicBackend(api_key="sk-wrong")


def test_anthropic_wire_mapping() -> None:
    payload = anthropic.to_wire(_request())

    assert payload["system"] == "be helpful"
    assert payload["max_tokens"] == 64
    assert payload["messages"][1]["content"][0] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "get_tasks",
        "input": {"limit": 2},
    }
    assert payload["tools"][0]["input_schema"] == {"type": "object", "properties": {}}


def test_anthropic_complete(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout=0):
        captured["url"] = request.full_url
        captured["headers"] = dict(request.header_items())
        captured["timeout"] = timeout
        return FakeResponse(
            {
                "content": [
                    {"type": "text", "text": "On it"},
                    {"type": "tool_use", "id": "toolu_9", "name": "create_task", "input": {"title": "t"}},
                ],
                "usage": {"input_tokens": 12, "output_tokens": 7},
                "stop_reason": "tool_use",
            }
        )

    monkeypatch.setattr("crewloop.backends.http.urllib.request.urlopen", fake_urlopen)
    backend = AnthropicBackend(api_key="sk-ant-test", timeout_s=5.0)

    response = backend.complete(_request())

    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["X-api-key"] == "sk-ant-test"
    assert captured["timeout"] == 5.0
    assert response.text_blocks()[0].text == "On it"
    assert response.tool_uses()[0].input == {"title": "t"}
    assert response.usage.input_tokens == 12
    assert response.stop_reason == "tool_use"


def test_anthropic_http_error(monkeypatch) -> None:
    def fake_urlopen(request, timeout=0):
        raise urllib.error.HTTPError(
            request.full_url, 429, "Too Many Requests", {}, io.BytesIO(b'{"error": "rate_limited"}')
        )

    monkeypatch.setattr("crewloop.backends.http.urllib.request.urlopen", fake_urlopen)

    with pytest.raises(TransportError) as excinfo:
        AnthropicBackend(api_key="sk-ant-test").complete(_request())

    assert excinfo.value.status == 429
    assert "rate_limited" in excinfo.value.body


def test_anthropic_timeout(monkeypatch) -> None:
    def fake_urlopen(request, timeout=0):
        raise TimeoutError("slow")

    monkeypatch.setattr("crewloop.backends.http.urllib.request.urlopen", fake_urlopen)

    with pytest.raises(TransportError, match="timeout"):
        AnthropicBackend(api_key="sk-ant-test", timeout_s=1.0).complete(_request())


def test_anthropic_missing_content() -> None:
    with pytest.raises(TransportError):
        anthropic.from_wire({"usage": {}})


def test_openai_wire_mapping() -> None:
    payload = openai_responses.to_wire(_request())

    kinds = [item.get("type", item.get("role")) for item in payload["input"]]
    assert kinds == ["system", "user", "function_call", "function_call_output"]
    assert payload["input"][2]["arguments"] == '{"limit": 2}'
    assert payload["tools"][0]["type"] == "function"
    assert payload["max_output_tokens"] == 64


def test_openai_complete(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout=0):
        captured["url"] = request.full_url
        captured["auth"] = request.get_header("Authorization")
        return FakeResponse(
            {
                "output": [
                    {"type": "message", "content": [{"type": "output_text", "text": "Done"}]},
                    {"type": "function_call", "call_id": "c1", "name": "signal_completion", "arguments": '{"summary": "ok"}'},
                    {"type": "function_call", "call_id": "c2", "name": "get_tasks", "arguments": "not json"},
                ],
                "usage": {"input_tokens": 3, "output_tokens": 4},
                "status": "completed",
            }
        )

    monkeypatch.setattr("crewloop.backends.http.urllib.request.urlopen", fake_urlopen)

    response = OpenAIResponsesBackend(api_key="sk-test").complete(_request())

    assert captured["url"] == "https://api.openai.com/v1/responses"
    assert captured["auth"] == "Bearer sk-test"
    assert response.text_blocks()[0].text == "Done"
    uses = response.tool_uses()
    assert uses[0].input == {"summary": "ok"}
    assert uses[1].input == {}
    assert response.usage.output_tokens == 4


def test_openai_key_validation() -> None:
    with pytest.raises(ConfigurationError):
        OpenAIResponsesBackend(api_key="bad")


def test_invalid_json_body(monkeypatch) -> None:
    class Garbage(FakeResponse):
        def read(self) -> bytes:
            return b"<html>"

    monkeypatch.setattr(
        "crewloop.backends.http.urllib.request.urlopen", lambda request, timeout=0: Garbage({})
    )

    with pytest.raises(TransportError, match="invalid JSON"):
        OpenAIResponsesBackend(api_key="sk-test").complete(_request())


def test_model_response_text_helper() -> None:
    response = ModelResponse.text("hello")

    assert response.tool_uses() == []
    assert response.text_blocks()[0].text == "hello"

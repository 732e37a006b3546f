"""Backend implementations."""

from .anthropic import AnthropicBackend
from .fake import FakeBackend
from .openai_responses import OpenAIResponsesBackend
from .registry import Backend, get_backend, list_backends, register_backend

__all__ = [
    "AnthropicBackend",
    "Backend",
    "FakeBackend",
    "OpenAIResponsesBackend",
    "get_backend",
    "list_backends",
    "register_backend",
]

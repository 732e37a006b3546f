from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from crewloop.core.types import ModelRequest, ModelResponse
from crewloop.errors import ConfigurationError


class Backend(Protocol):
    """One model turn: canonical request in, canonical response out.

    Network and HTTP failures surface as `TransportError`.
    """

    def complete(self, request: ModelRequest) -> ModelResponse:
        ...


BackendFactory = Callable[..., Backend]


@dataclass(frozen=True, slots=True)
class _Registration:
    factory: BackendFactory
    remote: bool


_BACKENDS: dict[str, _Registration] = {}


def register_backend(name: str, factory: BackendFactory, *, remote: bool = True) -> None:
    """Register `factory` under `name`; remote backends receive credentials and model settings."""
    key = name.lower()
    if key in _BACKENDS:
        raise ValueError(f"Backend '{name}' is already registered")
    _BACKENDS[key] = _Registration(factory, remote)


def get_backend(name: str, **kwargs: Any) -> Backend:
    registration = _BACKENDS.get(name.lower())
    if registration is None:
        available = ", ".join(list_backends())
        raise ConfigurationError(f"Unknown backend '{name}'. Available backends: {available}")
    if not registration.remote:
        return registration.factory()
    return registration.factory(**kwargs)


def list_backends() -> list[str]:
    return sorted(_BACKENDS)

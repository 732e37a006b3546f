from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from crewloop.errors import ConfigurationError

WORKER_MODELS = {
    "anthropic": "claude-3-5-haiku-latest",
    "openai": "gpt-4o-mini",
}
ORCHESTRATOR_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    data_root: Path
    checkpoint_dir: Path
    checkpoint_backend: str
    workspace_root: Path
    provider: str
    model: str
    orchestrator_model: str
    anthropic_api_key: str | None
    openai_api_key: str | None
    max_iterations: int
    orchestrator_max_iterations: int
    timeout_s: float
    orchestrator_timeout_s: float
    max_tokens: int
    orchestrator_max_tokens: int
    daily_budget_limit: float
    monthly_budget_limit: float
    auto_stop_on_limit: bool
    checkpoint_retention_hours: float
    max_checkpoints_per_team: int
    admin_token: str | None
    log_level: str

    @property
    def trace_dir(self) -> Path:
        return self.data_root / "traces"

    def api_key_for(self, provider: str) -> str | None:
        if provider == "anthropic":
            return self.anthropic_api_key
        if provider == "openai":
            return self.openai_api_key
        return None


def load_settings() -> RuntimeSettings:
    data_root = Path(os.getenv("CREWLOOP_DATA_ROOT", "data"))
    checkpoint_dir_raw = _env_str("CREWLOOP_CHECKPOINT_DIR") or _env_str("AGENT_CHECKPOINT_DIR")
    checkpoint_dir = Path(checkpoint_dir_raw) if checkpoint_dir_raw else data_root / "checkpoints"
    checkpoint_backend = (_env_str("CREWLOOP_CHECKPOINT_BACKEND") or "file").lower()
    if checkpoint_backend not in {"file", "sqlite"}:
        raise ConfigurationError(
            f"CREWLOOP_CHECKPOINT_BACKEND must be 'file' or 'sqlite', got {checkpoint_backend!r}"
        )
    workspace_raw = _env_str("CREWLOOP_WORKSPACE_ROOT")
    workspace_root = Path(workspace_raw) if workspace_raw else data_root / "workspace"
    provider = (_env_str("CREWLOOP_PROVIDER") or "anthropic").lower()
    max_iterations = _env_int("CREWLOOP_MAX_ITERATIONS", 6)
    orchestrator_max_iterations = _env_int("CREWLOOP_ORCHESTRATOR_MAX_ITERATIONS", 10)
    if max_iterations <= 0 or orchestrator_max_iterations <= 0:
        raise ConfigurationError("iteration limits must be positive")
    daily_budget_limit = _env_float("DAILY_BUDGET_LIMIT", 50.0)
    monthly_budget_limit = _env_float("MONTHLY_BUDGET_LIMIT", 500.0)
    if daily_budget_limit <= 0 or monthly_budget_limit <= 0:
        raise ConfigurationError("DAILY_BUDGET_LIMIT and MONTHLY_BUDGET_LIMIT must be positive")
    return RuntimeSettings(
        data_root=data_root,
        checkpoint_dir=checkpoint_dir,
        checkpoint_backend=checkpoint_backend,
        workspace_root=workspace_root,
        provider=provider,
        model=_env_str("CREWLOOP_MODEL") or WORKER_MODELS.get(provider, ""),
        orchestrator_model=(
            _env_str("CREWLOOP_ORCHESTRATOR_MODEL") or ORCHESTRATOR_MODELS.get(provider, "")
        ),
        anthropic_api_key=_env_str("ANTHROPIC_API_KEY"),
        openai_api_key=_env_str("OPENAI_API_KEY"),
        max_iterations=max_iterations,
        orchestrator_max_iterations=orchestrator_max_iterations,
        timeout_s=_env_float("CREWLOOP_TIMEOUT_S", 20.0),
        orchestrator_timeout_s=_env_float("CREWLOOP_ORCHESTRATOR_TIMEOUT_S", 60.0),
        max_tokens=_env_int("CREWLOOP_MAX_TOKENS", 1024),
        orchestrator_max_tokens=_env_int("CREWLOOP_ORCHESTRATOR_MAX_TOKENS", 4096),
        daily_budget_limit=daily_budget_limit,
        monthly_budget_limit=monthly_budget_limit,
        auto_stop_on_limit=_env_bool("CREWLOOP_AUTO_STOP_ON_LIMIT", True),
        checkpoint_retention_hours=_env_float("CREWLOOP_CHECKPOINT_RETENTION_HOURS", 24.0),
        max_checkpoints_per_team=_env_int("CREWLOOP_MAX_CHECKPOINTS_PER_TEAM", 10),
        admin_token=_env_str("CREWLOOP_ADMIN_TOKEN"),
        log_level=(_env_str("CREWLOOP_LOG_LEVEL") or "INFO").upper(),
    )

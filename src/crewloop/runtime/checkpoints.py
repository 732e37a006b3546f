from __future__ import annotations

import json
import logging
import os
import random
import re
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from crewloop.core.types import (
    CHECKPOINT_SCHEMA_VERSION,
    FINAL_STATUSES,
    Checkpoint,
    CheckpointStatus,
    Message,
    TextResponse,
    ToolCallRecord,
    message_from_dict,
    message_to_dict,
)
from crewloop.errors import (
    CheckpointNotFoundError,
    CheckpointNotResumableError,
    CheckpointStateError,
)

logger = logging.getLogger(__name__)

DEFAULT_DIR = Path("data") / "checkpoints"
DEFAULT_RETENTION_HOURS = 24.0
MAX_CHECKPOINTS_PER_TEAM = 10

_SESSION_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{random.randrange(16**6):06x}"


def _check_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not _SESSION_ID.match(session_id):
        raise ValueError(f"invalid checkpoint session id: {session_id!r}")
    return session_id


# record codec


def checkpoint_to_payload(checkpoint: Checkpoint) -> dict[str, Any]:
    return {
        "schema_version": CHECKPOINT_SCHEMA_VERSION,
        "session_id": checkpoint.session_id,
        "team_id": checkpoint.team_id,
        "task": checkpoint.task,
        "team_name": checkpoint.team_name,
        "team_agents": list(checkpoint.team_agents),
        "state_snapshot": checkpoint.state_snapshot,
        "iteration": checkpoint.iteration,
        "messages": [message_to_dict(message) for message in checkpoint.messages],
        "tool_calls": [
            {"tool": call.tool, "input": call.input, "output": call.output, "iteration": call.iteration}
            for call in checkpoint.tool_calls
        ],
        "text_responses": [
            {"text": item.text, "iteration": item.iteration} for item in checkpoint.text_responses
        ],
        "result": checkpoint.result,
        "status": checkpoint.status.value,
        "created_ts": checkpoint.created_ts,
        "updated_ts": checkpoint.updated_ts,
        "revision": checkpoint.revision,
    }


def _ensure_str(value: Any, field_name: str) -> str:
    if isinstance(value, str):
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be str")


def _ensure_int(value: Any, field_name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be a non-negative int")


def _ensure_ts(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"checkpoint field '{field_name}' must be a timestamp")


def _ensure_list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be a list")


def _coerce_tool_calls(payload: Any) -> list[ToolCallRecord]:
    calls: list[ToolCallRecord] = []
    for item in _ensure_list(payload, "tool_calls"):
        if not isinstance(item, dict):
            raise ValueError("checkpoint tool_calls entries must be objects")
        tool_input = item.get("input")
        if tool_input is None:
            tool_input = {}
        output = item.get("output")
        if output is None:
            output = {}
        if not isinstance(tool_input, dict) or not isinstance(output, dict):
            raise ValueError("checkpoint tool_calls input/output must be objects")
        calls.append(
            ToolCallRecord(
                tool=_ensure_str(item.get("tool"), "tool_calls.tool"),
                input=tool_input,
                output=output,
                iteration=_ensure_int(item.get("iteration"), "tool_calls.iteration"),
            )
        )
    return calls


def _coerce_text_responses(payload: Any) -> list[TextResponse]:
    responses: list[TextResponse] = []
    for item in _ensure_list(payload, "text_responses"):
        if not isinstance(item, dict):
            raise ValueError("checkpoint text_responses entries must be objects")
        responses.append(
            TextResponse(
                text=_ensure_str(item.get("text"), "text_responses.text"),
                iteration=_ensure_int(item.get("iteration"), "text_responses.iteration"),
            )
        )
    return responses


def checkpoint_from_payload(payload: Any) -> Checkpoint:
    if not isinstance(payload, dict):
        raise ValueError("checkpoint payload must be an object")
    version = payload.get("schema_version", 1)
    if not isinstance(version, int) or version < 1:
        raise ValueError("checkpoint schema_version must be a positive int")
    if version > CHECKPOINT_SCHEMA_VERSION:
        raise ValueError(
            f"checkpoint schema_version {version} is newer than supported {CHECKPOINT_SCHEMA_VERSION}"
        )
    try:
        status = CheckpointStatus(payload.get("status"))
    except ValueError as exc:
        raise ValueError(f"checkpoint status is invalid: {payload.get('status')!r}") from exc
    snapshot = payload.get("state_snapshot") or {}
    if not isinstance(snapshot, dict):
        raise ValueError("checkpoint state_snapshot must be an object")
    result = payload.get("result")
    if result is not None and not isinstance(result, dict):
        raise ValueError("checkpoint result must be an object or null")
    agents = _ensure_list(payload.get("team_agents"), "team_agents")
    if not all(isinstance(agent, str) for agent in agents):
        raise ValueError("checkpoint team_agents must be list[str]")
    messages = [message_from_dict(item) for item in _ensure_list(payload.get("messages"), "messages")]
    return Checkpoint(
        session_id=_check_session_id(_ensure_str(payload.get("session_id"), "session_id")),
        team_id=_ensure_str(payload.get("team_id"), "team_id"),
        task=_ensure_str(payload.get("task"), "task"),
        team_name=_ensure_str(payload.get("team_name", ""), "team_name"),
        team_agents=agents,
        state_snapshot=snapshot,
        iteration=_ensure_int(payload.get("iteration"), "iteration"),
        messages=messages,
        tool_calls=_coerce_tool_calls(payload.get("tool_calls")),
        text_responses=_coerce_text_responses(payload.get("text_responses")),
        result=result,
        status=status,
        created_ts=_ensure_ts(payload.get("created_ts"), "created_ts"),
        updated_ts=_ensure_ts(payload.get("updated_ts"), "updated_ts"),
        revision=_ensure_int(payload.get("revision", 0), "revision"),
        schema_version=CHECKPOINT_SCHEMA_VERSION,
    )


# stores


class CheckpointStore(Protocol):
    def save(self, checkpoint: Checkpoint) -> None:
        ...

    def load(self, session_id: str) -> Checkpoint | None:
        ...

    def delete(self, session_id: str) -> bool:
        ...

    def list(self, team_id: str | None = None, status: CheckpointStatus | None = None) -> list[Checkpoint]:
        ...


def _matches(checkpoint: Checkpoint, team_id: str | None, status: CheckpointStatus | None) -> bool:
    if team_id is not None and checkpoint.team_id != team_id:
        return False
    return status is None or checkpoint.status == status


class FileCheckpointStore:
    """One JSON document per session, written atomically."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir or DEFAULT_DIR

    def path_for(self, session_id: str) -> Path:
        return self.base_dir / f"{_check_session_id(session_id)}.json"

    def save(self, checkpoint: Checkpoint) -> None:
        path = self.path_for(checkpoint.session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = checkpoint_to_payload(checkpoint)
        temp_path = path.with_suffix(".json.tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, default=str))
            handle.flush()
            os.fsync(handle.fileno())
        temp_path.replace(path)

    def load(self, session_id: str) -> Checkpoint | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        return checkpoint_from_payload(json.loads(path.read_text(encoding="utf-8")))

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list(self, team_id: str | None = None, status: CheckpointStatus | None = None) -> list[Checkpoint]:
        if not self.base_dir.exists():
            return []
        checkpoints: list[Checkpoint] = []
        for path in sorted(self.base_dir.glob("*.json")):
            try:
                checkpoint = checkpoint_from_payload(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                logger.warning("skipping unreadable checkpoint %s: %s", path.name, exc)
                continue
            if _matches(checkpoint, team_id, status):
                checkpoints.append(checkpoint)
        return checkpoints


class SqliteCheckpointStore:
    """Single-table store keyed by session id."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    session_id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_ts REAL NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_checkpoints_team ON checkpoints(team_id)")
            conn.commit()

    def save(self, checkpoint: Checkpoint) -> None:
        payload = json.dumps(checkpoint_to_payload(checkpoint), ensure_ascii=False, default=str)
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                INSERT INTO checkpoints (session_id, team_id, status, updated_ts, payload)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    team_id = excluded.team_id,
                    status = excluded.status,
                    updated_ts = excluded.updated_ts,
                    payload = excluded.payload
                """,
                (
                    _check_session_id(checkpoint.session_id),
                    checkpoint.team_id,
                    checkpoint.status.value,
                    checkpoint.updated_ts,
                    payload,
                ),
            )
            conn.commit()

    def load(self, session_id: str) -> Checkpoint | None:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute(
                "SELECT payload FROM checkpoints WHERE session_id = ?", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return checkpoint_from_payload(json.loads(row[0]))

    def delete(self, session_id: str) -> bool:
        with sqlite3.connect(self._path) as conn:
            cursor = conn.execute("DELETE FROM checkpoints WHERE session_id = ?", (session_id,))
            conn.commit()
            return cursor.rowcount > 0

    def list(self, team_id: str | None = None, status: CheckpointStatus | None = None) -> list[Checkpoint]:
        query = "SELECT payload FROM checkpoints"
        clauses: list[str] = []
        params: list[Any] = []
        if team_id is not None:
            clauses.append("team_id = ?")
            params.append(team_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with sqlite3.connect(self._path) as conn:
            rows = conn.execute(query + " ORDER BY session_id", params).fetchall()
        return [checkpoint_from_payload(json.loads(row[0])) for row in rows]


def open_store(kind: str, checkpoint_dir: Path) -> CheckpointStore:
    if kind == "sqlite":
        return SqliteCheckpointStore(checkpoint_dir / "checkpoints.sqlite")
    if kind == "file":
        return FileCheckpointStore(checkpoint_dir)
    raise ValueError(f"unknown checkpoint store: {kind}")


# lifecycle


def summarize(checkpoint: Checkpoint) -> dict[str, Any]:
    return {
        "session_id": checkpoint.session_id,
        "team_id": checkpoint.team_id,
        "task": checkpoint.task[:100],
        "iteration": checkpoint.iteration,
        "status": checkpoint.status.value,
        "tool_calls": len(checkpoint.tool_calls),
        "created_ts": checkpoint.created_ts,
        "updated_ts": checkpoint.updated_ts,
    }


def _eviction_order(checkpoints: Iterable[Checkpoint]) -> list[Checkpoint]:
    # oldest first; equal timestamps fall back to session id
    return sorted(checkpoints, key=lambda item: (item.updated_ts, item.session_id))


class CheckpointManager:
    def __init__(
        self,
        store: CheckpointStore,
        *,
        retention_hours: float = DEFAULT_RETENTION_HOURS,
        max_per_team: int = MAX_CHECKPOINTS_PER_TEAM,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.retention_hours = retention_hours
        self.max_per_team = max_per_team
        self._clock = clock

    def _persist(self, checkpoint: Checkpoint) -> bool:
        checkpoint.revision += 1
        checkpoint.updated_ts = self._clock()
        try:
            self.store.save(checkpoint)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "checkpoint %s not persisted (revision %d): %s",
                checkpoint.session_id,
                checkpoint.revision,
                exc,
            )
            return False
        return True

    def create(
        self,
        team_id: str,
        task: str,
        *,
        team_name: str = "",
        team_agents: Iterable[str] = (),
        state_snapshot: dict[str, Any] | None = None,
        messages: Iterable[Message] = (),
        session_id: str | None = None,
    ) -> Checkpoint:
        now = self._clock()
        checkpoint = Checkpoint(
            session_id=_check_session_id(session_id or new_session_id()),
            team_id=team_id,
            task=task,
            team_name=team_name,
            team_agents=list(team_agents),
            state_snapshot=dict(state_snapshot or {}),
            messages=list(messages),
            created_ts=now,
            updated_ts=now,
        )
        self._persist(checkpoint)
        return checkpoint

    def update_after_iteration(
        self,
        checkpoint: Checkpoint,
        iteration: int,
        messages: Iterable[Message],
        tool_calls: Iterable[ToolCallRecord],
        text_responses: Iterable[TextResponse],
    ) -> bool:
        if checkpoint.is_final:
            raise CheckpointStateError(
                f"checkpoint {checkpoint.session_id} is {checkpoint.status.value} and cannot change"
            )
        if iteration < checkpoint.iteration:
            raise CheckpointStateError("checkpoint iteration cannot move backwards")
        checkpoint.iteration = iteration
        checkpoint.messages = list(messages)
        checkpoint.tool_calls = list(tool_calls)
        checkpoint.text_responses = list(text_responses)
        return self._persist(checkpoint)

    def finalize(
        self,
        checkpoint: Checkpoint,
        status: CheckpointStatus,
        result: dict[str, Any] | None = None,
    ) -> bool:
        if status == CheckpointStatus.RUNNING:
            raise CheckpointStateError("finalize requires a terminal status")
        if checkpoint.is_final:
            raise CheckpointStateError(
                f"checkpoint {checkpoint.session_id} is already {checkpoint.status.value}"
            )
        checkpoint.status = status
        checkpoint.result = result
        persisted = self._persist(checkpoint)
        try:
            self.enforce_team_limit(checkpoint.team_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("checkpoint cap enforcement failed for %s: %s", checkpoint.team_id, exc)
        return persisted

    def mark_running(self, checkpoint: Checkpoint) -> bool:
        if checkpoint.is_final:
            raise CheckpointNotResumableError(checkpoint.session_id, checkpoint.status.value)
        checkpoint.status = CheckpointStatus.RUNNING
        return self._persist(checkpoint)

    def load(self, session_id: str) -> Checkpoint | None:
        return self.store.load(session_id)

    def require_resumable(self, session_id: str) -> Checkpoint:
        checkpoint = self.store.load(session_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(session_id)
        if not checkpoint.is_resumable:
            raise CheckpointNotResumableError(session_id, checkpoint.status.value)
        return checkpoint

    def delete(self, session_id: str) -> bool:
        return self.store.delete(session_id)

    def team_checkpoints(self, team_id: str | None = None) -> list[dict[str, Any]]:
        checkpoints = self.store.list(team_id=team_id)
        checkpoints.sort(key=lambda item: (item.updated_ts, item.session_id), reverse=True)
        return [summarize(item) for item in checkpoints]

    def resumable_checkpoints(self, team_id: str | None = None) -> list[dict[str, Any]]:
        return [
            item
            for item in self.team_checkpoints(team_id)
            if item["status"] in {CheckpointStatus.RUNNING.value, CheckpointStatus.INTERRUPTED.value}
        ]

    def cleanup_old(self, max_age_hours: float | None = None) -> list[str]:
        age_hours = self.retention_hours if max_age_hours is None else max_age_hours
        cutoff = self._clock() - age_hours * 3600
        removed: list[str] = []
        for checkpoint in self.store.list():
            if checkpoint.status in FINAL_STATUSES and checkpoint.updated_ts < cutoff:
                if self.store.delete(checkpoint.session_id):
                    removed.append(checkpoint.session_id)
        if removed:
            logger.info("removed %d expired checkpoint(s)", len(removed))
        return removed

    def enforce_team_limit(self, team_id: str, max_count: int | None = None) -> list[str]:
        limit = self.max_per_team if max_count is None else max_count
        checkpoints = self.store.list(team_id=team_id)
        excess = len(checkpoints) - limit
        if excess <= 0:
            return []
        candidates = _eviction_order(item for item in checkpoints if item.status in FINAL_STATUSES)
        evicted: list[str] = []
        for checkpoint in candidates[:excess]:
            if self.store.delete(checkpoint.session_id):
                evicted.append(checkpoint.session_id)
        if evicted:
            logger.info("evicted %d checkpoint(s) for team %s", len(evicted), team_id)
        return evicted

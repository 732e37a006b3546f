from __future__ import annotations

import json
from pathlib import Path

import pytest

from crewloop.core.types import (
    Checkpoint,
    CheckpointStatus,
    Message,
    TextResponse,
    ToolCallRecord,
    ToolResultBlock,
    ToolUseBlock,
)
from crewloop.errors import CheckpointNotFoundError, CheckpointNotResumableError, CheckpointStateError
from crewloop.runtime.checkpoints import (
    CheckpointManager,
    FileCheckpointStore,
    SqliteCheckpointStore,
    checkpoint_from_payload,
    checkpoint_to_payload,
    open_store,
)


class Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(params=["file", "sqlite"])
def store(request, tmp_path: Path):
    return open_store(request.param, tmp_path / "checkpoints")


def _transcript() -> list[Message]:
    return [
        Message.user_text("Plan the launch"),
        Message(role="assistant", content=[ToolUseBlock(id="toolu_1", name="get_tasks", input={"limit": 5})]),
        Message(role="user", content=[ToolResultBlock(tool_use_id="toolu_1", content='{"success": true}')]),
    ]


def test_payload_roundtrip_preserves_blocks() -> None:
    checkpoint = Checkpoint(
        session_id="session-1",
        team_id="gtm",
        task="Plan the launch",
        team_name="Go-to-Market Team",
        team_agents=["Launch Coordinator"],
        iteration=2,
        messages=_transcript(),
        tool_calls=[ToolCallRecord(tool="get_tasks", input={"limit": 5}, output={"success": True}, iteration=1)],
        text_responses=[TextResponse(text="Looking", iteration=1)],
        status=CheckpointStatus.INTERRUPTED,
        created_ts=1.0,
        updated_ts=2.0,
        revision=3,
    )

    restored = checkpoint_from_payload(json.loads(json.dumps(checkpoint_to_payload(checkpoint))))

    assert restored == checkpoint
    assert isinstance(restored.messages[1].content[0], ToolUseBlock)


def test_payload_accepts_string_content() -> None:
    payload = checkpoint_to_payload(Checkpoint(session_id="session-2", team_id="legal", task="t"))
    payload["messages"] = [{"role": "user", "content": "hello"}]

    assert checkpoint_from_payload(payload).messages[0].text() == "hello"


@pytest.mark.parametrize(
    "field, value",
    [
        ("status", "sleeping"),
        ("iteration", -1),
        ("schema_version", 99),
        ("session_id", "../escape"),
        ("messages", [{"role": "system", "content": "x"}]),
        ("tool_calls", [{"tool": "x", "input": [], "output": {}, "iteration": 1}]),
        ("tool_calls", [{"tool": "x", "input": "", "output": {}, "iteration": 1}]),
        ("tool_calls", [{"tool": "x", "input": {}, "output": [], "iteration": 1}]),
        ("tool_calls", [{"tool": "x", "input": {}, "output": 0, "iteration": 1}]),
    ],
)
def test_payload_validation(field: str, value) -> None:
    payload = checkpoint_to_payload(Checkpoint(session_id="session-3", team_id="legal", task="t"))
    payload[field] = value

    with pytest.raises(ValueError):
        checkpoint_from_payload(payload)


def test_payload_defaults_missing_tool_input_and_output() -> None:
    payload = checkpoint_to_payload(Checkpoint(session_id="session-3", team_id="legal", task="t"))
    payload["tool_calls"] = [{"tool": "get_tasks", "iteration": 2, "input": None}]

    restored = checkpoint_from_payload(payload)

    assert restored.tool_calls == [ToolCallRecord(tool="get_tasks", input={}, output={}, iteration=2)]


def test_store_save_load_delete(store) -> None:
    checkpoint = Checkpoint(session_id="session-4", team_id="design", task="Logo", messages=_transcript())

    store.save(checkpoint)

    assert store.load("session-4") == checkpoint
    assert [item.session_id for item in store.list(team_id="design")] == ["session-4"]
    assert store.list(team_id="legal") == []
    assert store.list(status=CheckpointStatus.COMPLETED) == []
    assert store.delete("session-4")
    assert not store.delete("session-4")
    assert store.load("session-4") is None


def test_file_store_rejects_path_ids(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path)

    with pytest.raises(ValueError):
        store.load("../etc/passwd")


def test_file_store_skips_corrupt_files(tmp_path: Path, caplog) -> None:
    store = FileCheckpointStore(tmp_path)
    store.save(Checkpoint(session_id="session-ok", team_id="design", task="t"))
    (tmp_path / "session-bad.json").write_text("{not json", encoding="utf-8")

    with caplog.at_level("WARNING"):
        listed = store.list()

    assert [item.session_id for item in listed] == ["session-ok"]
    assert "session-bad.json" in caplog.text


def test_open_store_kinds(tmp_path: Path) -> None:
    assert isinstance(open_store("file", tmp_path), FileCheckpointStore)
    assert isinstance(open_store("sqlite", tmp_path), SqliteCheckpointStore)
    with pytest.raises(ValueError):
        open_store("redis", tmp_path)


def test_manager_lifecycle(store) -> None:
    clock = Clock()
    manager = CheckpointManager(store, clock=clock)

    checkpoint = manager.create("design", "Logo", team_name="Design Team", messages=[Message.user_text("go")])
    assert checkpoint.revision == 1
    assert checkpoint.status == CheckpointStatus.RUNNING

    clock.advance(5)
    manager.update_after_iteration(checkpoint, 1, _transcript(), [], [TextResponse("hi", 1)])
    stored = manager.load(checkpoint.session_id)
    assert stored.iteration == 1
    assert stored.revision == 2
    assert stored.updated_ts == 1005.0
    assert len(stored.messages) == 3

    with pytest.raises(CheckpointStateError):
        manager.update_after_iteration(checkpoint, 0, [], [], [])

    manager.finalize(checkpoint, CheckpointStatus.COMPLETED, {"summary": "done"})
    stored = manager.load(checkpoint.session_id)
    assert stored.status == CheckpointStatus.COMPLETED
    assert stored.result == {"summary": "done"}

    with pytest.raises(CheckpointStateError):
        manager.update_after_iteration(checkpoint, 2, [], [], [])
    with pytest.raises(CheckpointStateError):
        manager.finalize(checkpoint, CheckpointStatus.FAILED)


def test_finalize_requires_terminal_status(store) -> None:
    manager = CheckpointManager(store)
    checkpoint = manager.create("design", "Logo")

    with pytest.raises(CheckpointStateError):
        manager.finalize(checkpoint, CheckpointStatus.RUNNING)


def test_require_resumable(store) -> None:
    manager = CheckpointManager(store)
    interrupted = manager.create("legal", "Review")
    manager.finalize(interrupted, CheckpointStatus.INTERRUPTED)
    done = manager.create("legal", "Done")
    manager.finalize(done, CheckpointStatus.COMPLETED)

    assert manager.require_resumable(interrupted.session_id).status == CheckpointStatus.INTERRUPTED
    with pytest.raises(CheckpointNotResumableError, match="completed"):
        manager.require_resumable(done.session_id)
    with pytest.raises(CheckpointNotFoundError):
        manager.require_resumable("session-missing")

    assert [item["session_id"] for item in manager.resumable_checkpoints("legal")] == [
        interrupted.session_id
    ]


def test_mark_running_rejects_final(store) -> None:
    manager = CheckpointManager(store)
    checkpoint = manager.create("legal", "Review")
    manager.finalize(checkpoint, CheckpointStatus.FAILED)

    with pytest.raises(CheckpointNotResumableError):
        manager.mark_running(checkpoint)


def test_team_checkpoints_sorted_newest_first(store) -> None:
    clock = Clock()
    manager = CheckpointManager(store, clock=clock)
    first = manager.create("sales", "one")
    clock.advance(10)
    second = manager.create("sales", "two")

    summaries = manager.team_checkpoints("sales")

    assert [item["session_id"] for item in summaries] == [second.session_id, first.session_id]
    assert summaries[0]["task"] == "two"
    assert summaries[0]["status"] == "running"


def test_team_cap_evicts_oldest_final_only(store) -> None:
    clock = Clock()
    manager = CheckpointManager(store, max_per_team=2, clock=clock)
    running = manager.create("sales", "still going")
    finished = []
    for index in range(3):
        clock.advance(1)
        checkpoint = manager.create("sales", f"job {index}")
        manager.finalize(checkpoint, CheckpointStatus.COMPLETED)
        finished.append(checkpoint.session_id)

    remaining = {item.session_id for item in store.list(team_id="sales")}

    assert running.session_id in remaining
    assert finished[-1] in remaining
    assert finished[0] not in remaining
    assert len(remaining) == 2


def test_cleanup_old_keeps_resumable(store) -> None:
    clock = Clock()
    manager = CheckpointManager(store, retention_hours=1.0, clock=clock)
    old_done = manager.create("gtm", "old")
    manager.finalize(old_done, CheckpointStatus.COMPLETED)
    old_interrupted = manager.create("gtm", "paused")
    manager.finalize(old_interrupted, CheckpointStatus.INTERRUPTED)

    clock.advance(2 * 3600)
    fresh_done = manager.create("gtm", "fresh")
    manager.finalize(fresh_done, CheckpointStatus.FAILED)

    removed = manager.cleanup_old()

    assert removed == [old_done.session_id]
    assert manager.load(old_interrupted.session_id) is not None
    assert manager.load(fresh_done.session_id) is not None
    clock.advance(1)
    assert manager.cleanup_old(max_age_hours=0) == [fresh_done.session_id]


def test_persistence_failure_is_best_effort(caplog) -> None:
    class BrokenStore:
        def save(self, checkpoint):
            raise OSError("disk full")

        def load(self, session_id):
            return None

        def delete(self, session_id):
            return False

        def list(self, team_id=None, status=None):
            return []

    manager = CheckpointManager(BrokenStore())

    with caplog.at_level("WARNING"):
        checkpoint = manager.create("design", "Logo")
        persisted = manager.update_after_iteration(checkpoint, 1, [], [], [])

    assert not persisted
    assert checkpoint.iteration == 1
    assert checkpoint.revision == 2
    assert "disk full" in caplog.text

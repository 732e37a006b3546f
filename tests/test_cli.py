from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from crewloop import cli


@pytest.fixture()
def data_root(monkeypatch, tmp_path: Path) -> Path:
    for key in ("CREWLOOP_CHECKPOINT_DIR", "AGENT_CHECKPOINT_DIR", "CREWLOOP_WORKSPACE_ROOT", "CREWLOOP_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    root = tmp_path / "data"
    monkeypatch.setenv("CREWLOOP_DATA_ROOT", str(root))
    monkeypatch.setenv("CREWLOOP_PROVIDER", "fake")
    monkeypatch.setenv("CREWLOOP_FAKE_RESPONSES", json.dumps(["Draft is ready"]))
    return root


def test_run_requires_trigger_in_manual_world(data_root: Path, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="crewloop")

    code = cli.main(["run", "--team", "design", "--task", "Draft a logo"])

    assert code == 2
    assert "trigger" in caplog.text.lower()


def test_run_with_trigger_prints_json(data_root: Path, capsys) -> None:
    code = cli.main(["run", "--team", "design", "--task", "Draft a logo", "--trigger", "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["completed"]
    assert payload["completion_summary"] == "Draft is ready"
    assert (data_root / "traces" / f"{payload['session_id']}.jsonl").exists()


def test_unknown_team_is_reported(data_root: Path, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="crewloop")

    assert cli.main(["run", "--team", "ghost", "--task", "x", "--trigger"]) == 2
    assert "Unknown team" in caplog.text


def test_checkpoints_listing(data_root: Path, capsys) -> None:
    assert cli.main(["checkpoints"]) == 0
    assert capsys.readouterr().out.strip() == "No checkpoints."

    cli.main(["run", "--team", "legal", "--task", "Review contract", "--trigger"])
    capsys.readouterr()

    assert cli.main(["checkpoints", "--team", "legal"]) == 0
    line = capsys.readouterr().out.strip()
    assert "legal" in line
    assert "completed" in line
    assert line.endswith("Review contract")

    assert cli.main(["checkpoints", "--resumable", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_cleanup(data_root: Path, capsys) -> None:
    assert cli.main(["cleanup", "--max-age-hours", "1"]) == 0
    assert capsys.readouterr().out.strip() == "Removed 0 checkpoint(s)."


def test_orchestrate(data_root: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CREWLOOP_FAKE_RESPONSES", json.dumps(["All teams are idle."]))

    code = cli.main(["orchestrate", "--message", "How are things?", "--verbose"])

    out = capsys.readouterr().out
    assert code == 0
    assert "orchestrator_started" in out
    assert out.strip().endswith("All teams are idle.")


def test_missing_subcommand_exits() -> None:
    with pytest.raises(SystemExit):
        cli.main([])

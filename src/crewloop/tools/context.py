from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from crewloop.state.context import StateContext
from crewloop.world.controller import WorldController


@dataclass(slots=True)
class ToolContext:
    state: StateContext
    team_id: str
    world: WorldController | None = None
    workspace_root: Path | None = None
    iteration: int = 0

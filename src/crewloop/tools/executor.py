from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from crewloop.core.types import ToolDefinition
from crewloop.state.context import StateContext
from crewloop.tools.context import ToolContext
from crewloop.tools.registry import ToolRegistry
from crewloop.tools.results import ToolResult
from crewloop.world.controller import WorldController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolExecutor:
    registry: ToolRegistry[Any]
    world: WorldController | None = None
    workspace_root: Path | None = None

    def execute(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        team_id: str,
        state: StateContext,
        *,
        iteration: int = 0,
    ) -> ToolResult:
        spec = self.registry.get(tool_name)
        if spec is None:
            return ToolResult.fail(f"Unknown tool: {tool_name}")
        context = ToolContext(
            state=state,
            team_id=team_id,
            world=self.world,
            workspace_root=self.workspace_root,
            iteration=iteration,
        )
        try:
            return spec.handler(dict(tool_input or {}), context)
        except Exception as exc:  # noqa: BLE001
            logger.info("tool %s failed for team %s: %s", tool_name, team_id, exc)
            return ToolResult.fail(f"Tool error: {exc}")

    def definitions(self) -> list[ToolDefinition]:
        return self.registry.definitions()

    def list_tools(self) -> list[str]:
        return [str(spec.name.value) for spec in self.registry.list_tools()]

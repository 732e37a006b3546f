from __future__ import annotations

from crewloop.tools.executor import ToolExecutor
from crewloop.tools.registry import OrchestratorTool, TeamTool, ToolRegistry, ToolSpec
from crewloop.tools.results import ToolResult
from crewloop.tools.sandbox import resolve_under_root
from crewloop.tools.team_tools import build_team_registry

__all__ = [
    "OrchestratorTool",
    "TeamTool",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "build_team_registry",
    "resolve_under_root",
]

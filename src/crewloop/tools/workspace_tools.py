from __future__ import annotations

from pathlib import Path
from typing import Any

from crewloop.tools.context import ToolContext
from crewloop.tools.registry import TeamTool, ToolHandler, ToolRegistry
from crewloop.tools.results import ToolResult
from crewloop.tools.sandbox import resolve_under_root, team_root

_SEARCH_MAX_FILE_BYTES = 200_000


def _team_root(workspace_root: Path | None, ctx: ToolContext) -> Path:
    root = workspace_root or ctx.workspace_root
    if root is None:
        raise ValueError("workspace is not configured")
    return team_root(root, ctx.team_id)


def _get_path(root: Path, user_path: str) -> Path:
    if user_path in {"", "/"}:
        user_path = "."
    resolved = resolve_under_root(root, user_path)
    if resolved is None:
        raise PermissionError("path escapes the team workspace")
    return resolved


def _positive_int(args: dict[str, Any], key: str, default: int) -> int:
    value = args.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{key} must be a positive integer")
    return value


def read_file_handler(workspace_root: Path | None = None) -> ToolHandler:
    def handler(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        path = args.get("path")
        if not isinstance(path, str):
            raise ValueError("path must be a string")
        max_bytes = _positive_int(args, "max_bytes", 20000)
        resolved = _get_path(_team_root(workspace_root, ctx), path)
        if not resolved.is_file():
            return ToolResult.fail(f"File not found: {path}")
        with resolved.open("rb") as handle:
            data = handle.read(max_bytes)
        return ToolResult.ok(
            f"Read {len(data)} bytes from {path}",
            {"path": path, "content": data.decode("utf-8", errors="replace")},
        )

    return handler


def write_file_handler(workspace_root: Path | None = None) -> ToolHandler:
    def handler(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        path = args.get("path")
        content = args.get("content")
        overwrite = args.get("overwrite", False)
        if not isinstance(path, str):
            raise ValueError("path must be a string")
        if not isinstance(content, str):
            raise ValueError("content must be a string")
        if not isinstance(overwrite, bool):
            raise ValueError("overwrite must be a boolean")
        resolved = _get_path(_team_root(workspace_root, ctx), path)
        if resolved.exists() and not overwrite:
            return ToolResult.fail(f"Refusing to overwrite existing file: {path}")
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding="utf-8")
        size = len(content.encode("utf-8"))
        ctx.state.add_activity(
            ctx.state.require_team(ctx.team_id).agents[0].name,
            ctx.team_id,
            f"Wrote workspace file {path}",
            tag="file",
        )
        return ToolResult.ok(f"Wrote {size} bytes to {path}", {"path": path, "bytes": size})

    return handler


def list_files_handler(workspace_root: Path | None = None) -> ToolHandler:
    def handler(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        path = args.get("path", ".")
        if not isinstance(path, str):
            raise ValueError("path must be a string")
        max_entries = _positive_int(args, "max_entries", 200)
        resolved = _get_path(_team_root(workspace_root, ctx), path)
        if not resolved.is_dir():
            return ToolResult.fail(f"Not a directory: {path}")
        entries = sorted(
            f"{entry.name}/" if entry.is_dir() else entry.name for entry in resolved.iterdir()
        )
        return ToolResult.ok(
            f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'} in {path}",
            {"path": path, "entries": entries[:max_entries]},
        )

    return handler


def search_files_handler(workspace_root: Path | None = None) -> ToolHandler:
    def handler(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ValueError("query must be a non-empty string")
        path = args.get("path", ".")
        if not isinstance(path, str):
            raise ValueError("path must be a string")
        max_results = _positive_int(args, "max_results", 20)
        root = _team_root(workspace_root, ctx)
        base = _get_path(root, path)
        if not base.is_dir():
            return ToolResult.fail(f"Not a directory: {path}")
        needle = query.lower()
        matches: list[dict[str, Any]] = []
        for candidate in sorted(base.rglob("*")):
            if not candidate.is_file() or candidate.stat().st_size > _SEARCH_MAX_FILE_BYTES:
                continue
            text = candidate.read_text(encoding="utf-8", errors="replace")
            for line_no, line in enumerate(text.splitlines(), start=1):
                if needle in line.lower():
                    matches.append(
                        {
                            "path": candidate.relative_to(root.resolve()).as_posix(),
                            "line": line_no,
                            "text": line.strip()[:200],
                        }
                    )
                    if len(matches) >= max_results:
                        break
            if len(matches) >= max_results:
                break
        return ToolResult.ok(f"Found {len(matches)} match(es) for '{query}'", {"matches": matches})

    return handler


def register_workspace_tools(registry: ToolRegistry[TeamTool], workspace_root: Path | None) -> None:
    registry.register(
        TeamTool.READ_WORKSPACE_FILE,
        "Read a text file from your team's workspace.",
        read_file_handler(workspace_root),
        {
            "type": "object",
            "properties": {"path": {"type": "string"}, "max_bytes": {"type": "integer"}},
            "required": ["path"],
        },
    )
    registry.register(
        TeamTool.WRITE_WORKSPACE_FILE,
        "Write a text file in your team's workspace. Set overwrite to replace an existing file.",
        write_file_handler(workspace_root),
        {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "content": {"type": "string"},
                "overwrite": {"type": "boolean"},
            },
            "required": ["path", "content"],
        },
    )
    registry.register(
        TeamTool.LIST_WORKSPACE_FILES,
        "List files in a directory of your team's workspace.",
        list_files_handler(workspace_root),
        {"type": "object", "properties": {"path": {"type": "string"}, "max_entries": {"type": "integer"}}},
    )
    registry.register(
        TeamTool.SEARCH_WORKSPACE_FILES,
        "Case-insensitive text search across your team's workspace files.",
        search_files_handler(workspace_root),
        {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "path": {"type": "string"},
                "max_results": {"type": "integer"},
            },
            "required": ["query"],
        },
    )

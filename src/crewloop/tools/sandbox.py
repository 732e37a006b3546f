from __future__ import annotations

from pathlib import Path


def resolve_under_root(root: Path, user_path: str) -> Path | None:
    """
    Return the absolute path under `root` for `user_path`, or None if it
    escapes the root (absolute paths, `..` traversal, NUL bytes).
    """
    if not isinstance(user_path, str) or not user_path or "\x00" in user_path:
        return None
    candidate_rel = Path(user_path)
    if candidate_rel.is_absolute():
        return None
    root_abs = root.resolve(strict=False)
    candidate = (root_abs / candidate_rel).resolve(strict=False)
    try:
        candidate.relative_to(root_abs)
    except ValueError:
        return None
    return candidate


def team_root(workspace_root: Path, team_id: str) -> Path:
    root = workspace_root / team_id
    root.mkdir(parents=True, exist_ok=True)
    return root

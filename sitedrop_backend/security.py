from __future__ import annotations

import re
from pathlib import Path, PurePosixPath, PureWindowsPath

from .errors import PathTraversal


PROJECT_ID_RE = re.compile(r"[a-z0-9_]{1,48}-[0-9a-f]{8,64}")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def is_valid_project_id(project_id: object) -> bool:
    """Purely syntactic check; never touches the filesystem.

    Project ids end up as a directory name under the projects root, so anything
    that could act as a separator or a parent reference is refused here, before
    any lookup happens.
    """
    if not isinstance(project_id, str) or not project_id:
        return False
    if "/" in project_id or "\\" in project_id or ".." in project_id:
        return False
    return PROJECT_ID_RE.fullmatch(project_id) is not None


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if "/" in name or "\\" in name or ":" in name:
        return False
    if _CONTROL_RE.search(name):
        return False
    if name != Path(name).name:
        return False
    return True


def is_unsafe_member_name(name: str) -> bool:
    """Zip Slip defenses for a relative path taken from an archive entry."""
    if not name or not name.strip():
        return True
    if _CONTROL_RE.search(name):
        return True
    if name.startswith("/") or name.startswith("\\"):
        return True
    if ":" in name:
        # block drive letters / weird schemes
        return True
    if PurePosixPath(name).is_absolute() or PureWindowsPath(name).is_absolute():
        return True
    # Check both separator conventions; archives built on Windows use "\".
    parts = set(PurePosixPath(name).parts) | set(PureWindowsPath(name).parts)
    if ".." in parts:
        return True
    return False


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Resolve `parts` under `base_dir`, refusing anything that lands outside it.

    Resolution follows symlinks already on disk, so a link planted inside a
    workspace cannot redirect a write elsewhere. `base_dir` itself is allowed.
    """
    base = Path(base_dir).resolve()
    resolved = base.joinpath(*parts).resolve()
    if not resolved.is_relative_to(base):
        raise PathTraversal("Path escapes its root")
    return resolved

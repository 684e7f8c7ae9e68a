from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


# Default: project-local ./storage for easier inspection and cleanup.
# Override with env var SITEDROP_STORAGE_ROOT.
DEFAULT_STORAGE_ROOT = Path(__file__).resolve().parent.parent / "storage"

PROJECTS_SUBDIR = "projects"
# Multipart uploads are staged here before ingestion; never publicly served.
INCOMING_SUBDIR = "incoming"

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024  # 50MB
DEFAULT_MAX_ARCHIVE_ENTRIES = 10_000
DEFAULT_MAX_ARCHIVE_BYTES = 500 * 1024 * 1024  # 500MB decompressed
DEFAULT_ID_SUFFIX_BYTES = 4
DEFAULT_CREATE_ATTEMPTS = 5
DEFAULT_PORT = 5000


@dataclass(frozen=True)
class Settings:
    storage_root: Path
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_archive_entries: int = DEFAULT_MAX_ARCHIVE_ENTRIES
    max_archive_decompressed_bytes: int = DEFAULT_MAX_ARCHIVE_BYTES
    # Empty means "allow everything".
    allowed_suffixes: frozenset[str] = frozenset()
    allowed_media_types: frozenset[str] = frozenset()
    id_suffix_bytes: int = DEFAULT_ID_SUFFIX_BYTES
    create_attempts: int = DEFAULT_CREATE_ATTEMPTS
    log_level: str = "INFO"
    port: int = DEFAULT_PORT

    @property
    def projects_root(self) -> Path:
        return self.storage_root / PROJECTS_SUBDIR

    @property
    def incoming_root(self) -> Path:
        return self.storage_root / INCOMING_SUBDIR


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Read an integer env var, returning `default` on missing/invalid."""
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def normalize_suffix(suffix: str) -> str:
    s = suffix.strip().lower()
    if s and not s.startswith("."):
        s = f".{s}"
    return s


def _env_set(env: Mapping[str, str], name: str, normalize=None) -> frozenset[str]:
    raw = env.get(name) or ""
    items = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        items.add(normalize(part) if normalize else part.lower())
    return frozenset(items)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Pass an explicit mapping to get an isolated configuration (tests do this).
    """
    env = os.environ if environ is None else environ

    root_raw = env.get("SITEDROP_STORAGE_ROOT")
    if root_raw and root_raw.strip():
        storage_root = Path(root_raw.strip())
    else:
        storage_root = DEFAULT_STORAGE_ROOT

    return Settings(
        storage_root=storage_root.resolve(),
        max_upload_bytes=_env_int(env, "SITEDROP_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        max_archive_entries=_env_int(env, "SITEDROP_MAX_ARCHIVE_ENTRIES", DEFAULT_MAX_ARCHIVE_ENTRIES),
        max_archive_decompressed_bytes=_env_int(env, "SITEDROP_MAX_ARCHIVE_BYTES", DEFAULT_MAX_ARCHIVE_BYTES),
        allowed_suffixes=_env_set(env, "SITEDROP_ALLOWED_SUFFIXES", normalize=normalize_suffix),
        allowed_media_types=_env_set(env, "SITEDROP_ALLOWED_MEDIA_TYPES"),
        id_suffix_bytes=min(32, max(4, _env_int(env, "SITEDROP_ID_SUFFIX_BYTES", DEFAULT_ID_SUFFIX_BYTES))),
        create_attempts=max(1, _env_int(env, "SITEDROP_CREATE_ATTEMPTS", DEFAULT_CREATE_ATTEMPTS)),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        port=_env_int(env, "PORT", DEFAULT_PORT),
    )

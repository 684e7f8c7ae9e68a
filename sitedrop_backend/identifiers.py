from __future__ import annotations

import re
import secrets
from typing import Callable


# "-" separates slug from suffix, so the slug alphabet must not contain it.
ID_DELIMITER = "-"
MIN_SUFFIX_BYTES = 4
MAX_SLUG_LENGTH = 48
FALLBACK_SLUG = "user"

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9_]+")


def sanitize_username(username: str) -> str:
    """Reduce a user-supplied name to [a-z0-9_], usable inside a path segment."""
    slug = _SLUG_STRIP_RE.sub("_", (username or "").strip().lower())
    slug = re.sub(r"_+", "_", slug).strip("_")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("_")
    return slug or FALLBACK_SLUG


class IdentifierGenerator:
    """Produce `{slug}-{hex}` project ids.

    The entropy source is injectable (``entropy(n) -> n bytes``) so callers can
    force collisions in tests. Collisions are unlikely but possible; the
    workspace store re-checks before creating anything.
    """

    def __init__(
        self,
        entropy: Callable[[int], bytes] = secrets.token_bytes,
        suffix_bytes: int = MIN_SUFFIX_BYTES,
    ) -> None:
        if suffix_bytes < MIN_SUFFIX_BYTES:
            raise ValueError(f"suffix_bytes must be >= {MIN_SUFFIX_BYTES}")
        self._entropy = entropy
        self._suffix_bytes = suffix_bytes

    def generate(self, username: str) -> str:
        raw = self._entropy(self._suffix_bytes)
        if len(raw) < self._suffix_bytes:
            raise ValueError("Entropy source returned too few bytes")
        suffix = bytes(raw[: self._suffix_bytes]).hex()
        return f"{sanitize_username(username)}{ID_DELIMITER}{suffix}"

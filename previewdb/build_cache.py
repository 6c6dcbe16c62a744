"""Migration hashing and the reuse/rebuild decision for preview databases."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Protocol

LOG = logging.getLogger(__name__)

NO_MIGRATIONS = "no-migrations"
READ_ERROR_PREFIX = "read-error"


class BuildDecision(str, Enum):
    REUSE = "reuse"
    REBUILD = "rebuild"


def compute_migration_hash(migrations_dir: Path | None) -> str:
    """SHA-256 over every migration file, in file-name order.

    Returns ``"no-migrations"`` for an absent or empty directory and a unique
    ``read-error`` value when a file cannot be read, so an unreadable tree is
    never mistaken for an unchanged one.
    """

    if migrations_dir is None or not migrations_dir.is_dir():
        return NO_MIGRATIONS
    try:
        files = sorted((path for path in migrations_dir.iterdir() if path.is_file()), key=lambda p: p.name)
        if not files:
            return NO_MIGRATIONS
        digest = hashlib.sha256()
        for path in files:
            digest.update(path.name.encode("utf-8"))
            digest.update(b"\0")
            digest.update(path.read_bytes())
            digest.update(b"\0")
    except OSError as exc:
        LOG.warning("Could not hash migrations in %s: %s", migrations_dir, exc)
        return f"{READ_ERROR_PREFIX}:{type(exc).__name__}:{uuid.uuid4().hex}"
    return digest.hexdigest()


def decide(
    environment_key: str,
    current_hash: str,
    target_exists: bool,
    cached_hash: str | None,
) -> BuildDecision:
    """Pure reuse/rebuild policy for one environment."""

    if not target_exists:
        return BuildDecision.REBUILD
    if cached_hash is not None and cached_hash == current_hash:
        return BuildDecision.REUSE
    return BuildDecision.REBUILD


class HashCache(Protocol):
    """Persistent map of environment key to the migration hash last built."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryHashCache:
    """In-process cache, mostly for tests."""

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self.entries: dict[str, str] = dict(entries or {})

    def get(self, key: str) -> str | None:
        return self.entries.get(key)

    def set(self, key: str, value: str) -> None:
        self.entries[key] = value


class JsonFileHashCache:
    """Cache stored as a JSON object in a file the build system persists."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        entries = self._load()
        entries[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(entries, indent=2, sort_keys=True) + "\n")

    def _load(self) -> dict[str, object]:
        try:
            raw = json.loads(self._path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            LOG.warning("Ignoring unreadable hash cache %s: %s", self._path, exc)
            return {}
        return raw if isinstance(raw, dict) else {}


__all__ = [
    "BuildDecision",
    "HashCache",
    "JsonFileHashCache",
    "MemoryHashCache",
    "NO_MIGRATIONS",
    "compute_migration_hash",
    "decide",
]

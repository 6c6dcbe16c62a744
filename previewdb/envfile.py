"""Rewrites of the ``DATABASE_URL`` line in a local ``.env`` file."""

from __future__ import annotations

import logging
from pathlib import Path

from .connections import build_connection_string, parse_connection_string

LOG = logging.getLogger(__name__)

_PREFIX = "DATABASE_URL="


def update_env_database_url(path: Path, database_url: str) -> bool:
    """Point every ``DATABASE_URL=`` line at ``database_url``.

    Returns ``False`` when the file has no such line.
    """

    lines = path.read_text().split("\n")
    updated = False
    for index, line in enumerate(lines):
        if line.startswith(_PREFIX):
            lines[index] = f"{_PREFIX}{database_url}"
            updated = True
    if updated:
        path.write_text("\n".join(lines))
        LOG.info("Updated %s with new DATABASE_URL", path)
    return updated


def current_database_url(path: Path) -> str | None:
    for line in path.read_text().split("\n"):
        if line.startswith(_PREFIX):
            return line[len(_PREFIX):].strip().strip('"').strip("'")
    return None


def restore_env_database(path: Path, database: str = "dev") -> bool:
    """Point the ``.env`` connection string back at ``database``."""

    current = current_database_url(path)
    if not current:
        return False
    descriptor = parse_connection_string(current)
    return update_env_database_url(path, build_connection_string(descriptor, database))


__all__ = ["current_database_url", "restore_env_database", "update_env_database_url"]

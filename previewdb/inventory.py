"""Inventory of logical databases and the deletion guard."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from .connections import DatabaseClient
from .models import DatabaseInfo, DatabaseKind, DatabaseMetadata

LOG = logging.getLogger(__name__)

PERMANENT_DATABASES: tuple[str, ...] = ("dev", "prod")
SYSTEM_DATABASES: tuple[str, ...] = ("defaultdb", "postgres", "system")
PROTECTED_DATABASES: tuple[str, ...] = PERMANENT_DATABASES + SYSTEM_DATABASES
MANAGED_PREFIXES: tuple[str, ...] = ("pr_", "dev_")
INTERNAL_PREFIX = "crdb_"


def classify(name: str) -> DatabaseKind:
    if name in PROTECTED_DATABASES:
        return DatabaseKind.PROTECTED
    if name.startswith("pr_"):
        return DatabaseKind.PREVIEW
    if name.startswith("dev_"):
        return DatabaseKind.PERSONAL
    return DatabaseKind.UNRECOGNIZED


def can_delete(name: str) -> bool:
    """Single authority consulted before any database is dropped."""

    if name in PROTECTED_DATABASES:
        return False
    return name.startswith(MANAGED_PREFIXES)


def decode_metadata(name: str, comment: str | None) -> DatabaseMetadata | None:
    """Decode a database comment; malformed content counts as no metadata."""

    if not comment:
        return None
    try:
        return DatabaseMetadata.model_validate(json.loads(comment))
    except (ValueError, ValidationError) as exc:
        LOG.warning("Ignoring unreadable metadata on %s: %s", name, exc)
        return None


async def database_exists(client: DatabaseClient, name: str) -> bool:
    rows = await client.fetch("SELECT 1 FROM pg_database WHERE datname = $1", name)
    return len(rows) > 0


async def list_databases(client: DatabaseClient, *, include_permanent: bool = False) -> list[DatabaseInfo]:
    """All databases on the server with decoded metadata, sorted by name.

    Protected and internal databases are left out; ``include_permanent`` keeps
    ``dev``/``prod`` in the listing for display purposes.
    """

    hidden = SYSTEM_DATABASES if include_permanent else PROTECTED_DATABASES
    rows = await client.fetch("SHOW DATABASES WITH COMMENT")
    databases: list[DatabaseInfo] = []
    for row in rows:
        name = str(row["database_name"])
        if name in hidden or name.startswith(INTERNAL_PREFIX):
            continue
        databases.append(
            DatabaseInfo(
                name=name,
                owner=str(row.get("owner") or ""),
                metadata=decode_metadata(name, row.get("comment")),
            )
        )
    databases.sort(key=lambda info: info.name)
    return databases


async def list_older_than(
    client: DatabaseClient,
    days: float,
    *,
    now: datetime | None = None,
) -> list[DatabaseInfo]:
    """Deletable databases whose recorded creation time is older than ``days``."""

    cutoff = (now or datetime.now(tz=timezone.utc)) - timedelta(days=days)
    stale: list[DatabaseInfo] = []
    for info in await list_databases(client):
        if not can_delete(info.name):
            continue
        created = info.metadata.created_datetime() if info.metadata else None
        if created is None:
            continue
        if created < cutoff:
            stale.append(info)
    return stale


__all__ = [
    "INTERNAL_PREFIX",
    "MANAGED_PREFIXES",
    "PERMANENT_DATABASES",
    "PROTECTED_DATABASES",
    "SYSTEM_DATABASES",
    "can_delete",
    "classify",
    "database_exists",
    "decode_metadata",
    "list_databases",
    "list_older_than",
]

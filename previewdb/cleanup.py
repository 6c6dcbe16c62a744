"""Selection and removal of stale preview and personal databases."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Sequence

from .connections import DatabaseClient, quote_ident
from .errors import (
    DatabaseCommandError,
    DatabaseInUse,
    DatabaseNotFound,
    InvalidName,
    LifecycleError,
    ProtectedName,
    UsageError,
)
from .inventory import PROTECTED_DATABASES, can_delete, list_databases, list_older_than
from .models import CleanupResult, DatabaseInfo, DropFailure

LOG = logging.getLogger(__name__)

ConfirmCallback = Callable[[Sequence[DatabaseInfo]], bool]
ReviewCallback = Callable[[Sequence[DatabaseInfo]], None]

_IN_USE_MARKER = "cannot drop the currently open database"


@dataclass(frozen=True, slots=True)
class Selection:
    """Exactly one way of choosing cleanup candidates."""

    name: str | None = None
    pattern: str | None = None
    older_than_days: float | None = None

    def __post_init__(self) -> None:
        chosen = [value for value in (self.name, self.pattern, self.older_than_days) if value is not None]
        if len(chosen) != 1:
            raise UsageError("Specify exactly one of <name>, --pattern or --older-than.")
        if self.older_than_days is not None and self.older_than_days < 0:
            raise UsageError(f"--older-than must not be negative: {self.older_than_days}")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise UsageError(f"Invalid --pattern {self.pattern!r}: {exc}") from exc


def ensure_deletable(name: str) -> None:
    """Raise unless the deletion guard allows dropping ``name``."""

    if can_delete(name):
        return
    if name in PROTECTED_DATABASES:
        raise ProtectedName(name, PROTECTED_DATABASES)
    raise InvalidName(name, "Only pr_ and dev_ databases can be deleted.")


async def drop_database(client: DatabaseClient, name: str) -> None:
    """Drop one database after re-checking the deletion guard."""

    ensure_deletable(name)
    LOG.info("Dropping database: %s", name)
    try:
        await client.execute(f"DROP DATABASE IF EXISTS {quote_ident(name)}")
    except DatabaseCommandError as exc:
        if _IN_USE_MARKER in str(exc):
            raise DatabaseInUse(name) from exc
        raise
    LOG.info("Dropped database: %s", name)


async def select_candidates(client: DatabaseClient, selection: Selection) -> list[DatabaseInfo]:
    """Resolve a selection against the inventory, keeping only deletable entries."""

    if selection.name is not None:
        ensure_deletable(selection.name)
        databases = await list_databases(client)
        match = next((info for info in databases if info.name == selection.name), None)
        if match is None:
            raise DatabaseNotFound(selection.name)
        candidates = [match]
    elif selection.pattern is not None:
        regex = re.compile(selection.pattern)
        candidates = [info for info in await list_databases(client) if regex.search(info.name)]
    else:
        candidates = await list_older_than(client, selection.older_than_days or 0)
    return [info for info in candidates if can_delete(info.name)]


async def drop_all(client: DatabaseClient, names: Sequence[str]) -> tuple[list[str], list[DropFailure]]:
    """Drop ``names`` one at a time; a failure never stops the remaining drops."""

    deleted: list[str] = []
    failures: list[DropFailure] = []
    for name in names:
        try:
            await drop_database(client, name)
        except LifecycleError as exc:
            LOG.error("Failed to drop database %s: %s", name, exc)
            failures.append(DropFailure(name=name, message=str(exc)))
        else:
            deleted.append(name)
    return deleted, failures


async def cleanup(
    client: DatabaseClient,
    selection: Selection,
    *,
    dry_run: bool = False,
    force: bool = False,
    confirm: ConfirmCallback | None = None,
    review: ReviewCallback | None = None,
) -> CleanupResult:
    """Select candidates and, unless previewing, drop them sequentially.

    ``review`` sees the candidate list before anything is dropped. Without
    ``force`` the ``confirm`` callback must approve the batch.
    """

    candidates = tuple(await select_candidates(client, selection))
    if not candidates:
        LOG.info("No databases to clean up.")
        return CleanupResult(candidates=(), dry_run=dry_run)
    LOG.info("%d database(s) selected for cleanup", len(candidates))
    if review is not None:
        review(candidates)
    if dry_run:
        return CleanupResult(candidates=candidates, dry_run=True)
    if not force:
        if confirm is None:
            raise UsageError("Refusing to delete without --force or interactive confirmation.")
        if not confirm(candidates):
            LOG.info("Cleanup cancelled.")
            return CleanupResult(candidates=candidates, cancelled=True)
    deleted, failures = await drop_all(client, [info.name for info in candidates])
    LOG.info("Successfully deleted %d database(s)", len(deleted))
    return CleanupResult(candidates=candidates, deleted=tuple(deleted), failures=tuple(failures))


__all__ = [
    "ConfirmCallback",
    "ReviewCallback",
    "Selection",
    "cleanup",
    "drop_all",
    "drop_database",
    "ensure_deletable",
    "select_candidates",
]

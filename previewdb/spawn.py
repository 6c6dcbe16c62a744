"""Create databases by restoring the latest snapshot of a source database."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from .cleanup import drop_database
from .connections import DatabaseClient, build_connection_string, quote_ident, quote_literal
from .errors import (
    AlreadyExists,
    InvalidName,
    LifecycleError,
    NoSnapshotFound,
    ProtectedName,
    SpawnIncomplete,
    UsageError,
)
from .inventory import MANAGED_PREFIXES, PROTECTED_DATABASES, database_exists
from .models import ConnectionDescriptor, DatabaseMetadata, SpawnResult
from .snapshots import SnapshotStore

LOG = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
MAX_NAME_LENGTH = 63

Clock = Callable[[], datetime]


def validate_name(name: str) -> None:
    """Reject protected, malformed or overlong target names (no I/O)."""

    if name in PROTECTED_DATABASES:
        raise ProtectedName(name, PROTECTED_DATABASES)
    if not NAME_PATTERN.fullmatch(name):
        raise InvalidName(name, "Must contain only lowercase letters, numbers, and underscores.")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidName(name, f"Maximum length is {MAX_NAME_LENGTH} characters.")


def _sanitize(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.strip().lower())


def resolve_identity(
    environ: Mapping[str, str] | None = None,
    *,
    run: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
) -> str:
    """Git user name, then the OS user, then ``"unknown"``."""

    try:
        result = run(["git", "config", "user.name"], capture_output=True, text=True, check=False)
    except OSError:
        result = None
    if result is not None and result.returncode == 0:
        git_user = _sanitize(result.stdout)
        if git_user:
            return git_user
    env = os.environ if environ is None else environ
    for key in ("USER", "USERNAME"):
        user = _sanitize(env.get(key, ""))
        if user:
            return user
    return "unknown"


def personal_database_name(feature: str, identity: str) -> str:
    """Name of a developer's personal database for ``feature``."""

    return f"dev_{identity}_{feature.removeprefix('--')}"


def parse_metadata_overrides(raw: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Decode caller-supplied metadata; it must be a JSON object."""

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise UsageError(f"--metadata must be a JSON object: {raw!r}") from exc
    if not isinstance(value, dict):
        raise UsageError(f"--metadata must be a JSON object: {raw!r}")
    return value


def build_metadata(created_by: str, overrides: Mapping[str, Any], *, now: datetime) -> DatabaseMetadata:
    fields: dict[str, Any] = {"created_at": now.isoformat(), "created_by": created_by}
    fields.update(overrides)
    try:
        return DatabaseMetadata.model_validate(fields)
    except ValidationError as exc:
        raise UsageError(f"Invalid metadata: {exc}") from exc


async def spawn(
    client: DatabaseClient,
    store: SnapshotStore,
    server: ConnectionDescriptor,
    source: str,
    target: str,
    *,
    metadata: str | Mapping[str, Any] | None = None,
    replace: bool = False,
    identity: str | None = None,
    clock: Clock | None = None,
) -> SpawnResult:
    """Restore the latest snapshot of ``source`` as ``target``.

    Validation happens before any statement is sent. With ``replace`` an existing
    target is dropped first; failures after that point raise
    :class:`SpawnIncomplete` and leave the server as they found it.
    """

    validate_name(target)
    if not target.startswith(MANAGED_PREFIXES):
        raise InvalidName(target, "Spawned databases must start with pr_ or dev_.")
    if not NAME_PATTERN.fullmatch(source):
        raise InvalidName(source, "Source must contain only lowercase letters, numbers, and underscores.")
    overrides = parse_metadata_overrides(metadata)
    now = (clock or (lambda: datetime.now(tz=timezone.utc)))()
    record = build_metadata(identity or resolve_identity(), overrides, now=now)

    dropped = False
    if await database_exists(client, target):
        if not replace:
            raise AlreadyExists(target)
        LOG.info("Database %s exists. Replacing...", target)
        await drop_database(client, target)
        dropped = True

    stage = "snapshot lookup"
    restored = False
    try:
        snapshot = await store.latest_snapshot(source)
        if snapshot is None:
            raise NoSnapshotFound(source)
        stage = "restore"
        await store.restore(source, snapshot, target)
        restored = True
        stage = "metadata"
        comment = record.model_dump_json(exclude_none=True)
        await client.execute(f"COMMENT ON DATABASE {quote_ident(target)} IS {quote_literal(comment)}")
    except LifecycleError as exc:
        if not (dropped or restored):
            raise
        raise SpawnIncomplete(target, stage, dropped=dropped, restored=restored, cause=exc) from exc

    url = build_connection_string(server, target)
    LOG.info("Database spawn complete: %s", server.with_database(target).redacted())
    return SpawnResult(
        database=target,
        database_url=url,
        snapshot=snapshot,
        metadata=record,
        replaced=dropped,
    )


__all__ = [
    "MAX_NAME_LENGTH",
    "NAME_PATTERN",
    "build_metadata",
    "parse_metadata_overrides",
    "personal_database_name",
    "resolve_identity",
    "spawn",
    "validate_name",
]

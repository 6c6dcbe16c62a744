"""Snapshot store adapter backed by CockroachDB BACKUP/RESTORE against S3."""

from __future__ import annotations

import logging
import os
import re
from typing import Mapping
from urllib.parse import quote

from .connections import DatabaseClient, quote_ident, quote_literal
from .errors import DatabaseCommandError, MissingCredentials, SnapshotCreationFailed

LOG = logging.getLogger(__name__)

ACCESS_KEY_ENV = "AWS_ACCESS_KEY_COCKROACH_BACKUP"
SECRET_KEY_ENV = "AWS_SECRET_ACCESS_KEY_COCKROACH_BACKUP"

# Backup collection paths look like /2024/01/30-184512.37
_PATH_TIMESTAMP = re.compile(r"(\d{4})/(\d{2})/(\d{2})-(\d{6})(?:\.(\d+))?")
_SECRET_PARAM = re.compile(r"(AWS_SECRET_ACCESS_KEY=)[^&]*")


def build_store_uri(bucket: str, environ: Mapping[str, str] | None = None) -> str:
    """Return the authenticated ``s3://`` URI for ``bucket``."""

    env = os.environ if environ is None else environ
    access_key = env.get(ACCESS_KEY_ENV)
    if not access_key:
        raise MissingCredentials(ACCESS_KEY_ENV)
    secret_key = env.get(SECRET_KEY_ENV)
    if not secret_key:
        raise MissingCredentials(SECRET_KEY_ENV)
    return f"s3://{bucket}?AWS_ACCESS_KEY_ID={access_key}&AWS_SECRET_ACCESS_KEY={quote(secret_key, safe='')}"


def redact_store_uri(uri: str) -> str:
    return _SECRET_PARAM.sub(r"\1***", uri)


def _sort_key(path: str) -> tuple[int, ...] | None:
    match = _PATH_TIMESTAMP.search(path)
    if match is None:
        return None
    year, month, day, clock, fraction = match.groups()
    return int(year), int(month), int(day), int(clock), int((fraction or "0").ljust(6, "0")[:6])


def order_snapshots(paths: list[str]) -> list[str]:
    """Order snapshots oldest to newest.

    Paths carrying a backup timestamp are sorted by it; if any path lacks one the
    listing order of the store is kept.
    """

    keys = [_sort_key(path) for path in paths]
    if any(key is None for key in keys):
        if paths:
            LOG.warning("Snapshot paths carry no timestamp; relying on store listing order")
        return list(paths)
    return [path for _, path in sorted(zip(keys, paths), key=lambda pair: pair[0])]


class SnapshotStore:
    """Lists and creates full-database backups in one bucket."""

    def __init__(self, client: DatabaseClient, uri: str, *, as_of: str = "-10s") -> None:
        self._client = client
        self._uri = uri
        self._as_of = as_of

    @classmethod
    def for_bucket(
        cls,
        client: DatabaseClient,
        bucket: str,
        *,
        environ: Mapping[str, str] | None = None,
        as_of: str = "-10s",
    ) -> SnapshotStore:
        return cls(client, build_store_uri(bucket, environ), as_of=as_of)

    @property
    def uri(self) -> str:
        return self._uri

    def __repr__(self) -> str:
        return f"SnapshotStore({redact_store_uri(self._uri)!r})"

    async def list_snapshots(self, source: str | None = None) -> list[str]:
        """Snapshots in the bucket, oldest first; an empty bucket yields ``[]``."""

        try:
            rows = await self._client.fetch(f"SHOW BACKUPS IN {quote_literal(self._uri)}")
        except DatabaseCommandError as exc:
            if "no backup" in str(exc).lower():
                LOG.debug("No backups present in %s", redact_store_uri(self._uri))
                return []
            raise
        paths = [str(row["path"]) for row in rows]
        if source:
            LOG.debug("Found %d snapshot(s) usable for %s", len(paths), source)
        return order_snapshots(paths)

    async def latest_snapshot(self, source: str | None = None) -> str | None:
        snapshots = await self.list_snapshots(source)
        return snapshots[-1] if snapshots else None

    async def create_snapshot(self, source: str) -> str:
        """Back up ``source`` and return the path of the new snapshot."""

        before = set(await self.list_snapshots(source))
        LOG.info("Creating snapshot of database: %s", source)
        await self._client.execute(
            f"BACKUP DATABASE {quote_ident(source)} INTO {quote_literal(self._uri)} "
            f"AS OF SYSTEM TIME {quote_literal(self._as_of)}"
        )
        latest = await self.latest_snapshot(source)
        if latest is None or latest in before:
            raise SnapshotCreationFailed(
                f"Failed to create snapshot of {source} - no new backup found after BACKUP"
            )
        LOG.info("Snapshot created: %s", latest)
        return latest

    async def restore(self, source: str, snapshot: str, target: str) -> None:
        """Restore ``source`` from ``snapshot`` under the name ``target``."""

        LOG.info("Restoring %s from snapshot %s into %s", source, snapshot, target)
        await self._client.execute(
            f"RESTORE DATABASE {quote_ident(source)} FROM {quote_literal(snapshot)} "
            f"IN {quote_literal(self._uri)} WITH new_db_name = {quote_literal(target)}"
        )


__all__ = [
    "ACCESS_KEY_ENV",
    "SECRET_KEY_ENV",
    "SnapshotStore",
    "build_store_uri",
    "order_snapshots",
    "redact_store_uri",
]

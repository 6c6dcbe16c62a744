"""Deploy-preview hooks: build-time database preparation and teardown."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel

from .build_cache import BuildDecision, HashCache, compute_migration_hash, decide
from .cleanup import drop_database
from .connections import DatabaseClient, build_connection_string
from .inventory import database_exists
from .models import ConnectionDescriptor
from .snapshots import SnapshotStore
from .spawn import Clock, spawn

LOG = logging.getLogger(__name__)

PREVIEW_CONTEXT = "deploy-preview"
TEARDOWN_STATES = frozenset({"locked", "error"})


def preview_database_name(review_id: int | str) -> str:
    return f"pr_{review_id}"


@dataclass(frozen=True, slots=True)
class PreviewOutcome:
    """Database a preview build should use."""

    decision: BuildDecision
    database: str
    database_url: str
    migration_hash: str


async def prepare_preview_database(
    client: DatabaseClient,
    store: SnapshotStore,
    cache: HashCache,
    server: ConnectionDescriptor,
    *,
    review_id: int,
    source: str,
    migrations_dir: Path | None,
    branch: str | None = None,
    created_by: str = "netlify-bot",
    clock: Clock | None = None,
) -> PreviewOutcome:
    """Reuse ``pr_<review_id>`` when its schema is current, otherwise rebuild it."""

    target = preview_database_name(review_id)
    key = target
    current_hash, exists = await asyncio.gather(
        asyncio.to_thread(compute_migration_hash, migrations_dir),
        database_exists(client, target),
    )
    decision = decide(key, current_hash, exists, cache.get(key))
    if decision is BuildDecision.REUSE:
        LOG.info("Migrations unchanged; reusing preview database %s", target)
        return PreviewOutcome(decision, target, build_connection_string(server, target), current_hash)

    if exists:
        LOG.info("Migrations changed; rebuilding preview database %s", target)
    now = (clock or (lambda: datetime.now(tz=timezone.utc)))()
    result = await spawn(
        client,
        store,
        server,
        source,
        target,
        metadata={
            "created_at": now.isoformat(),
            "pr_number": review_id,
            "branch": branch or "unknown",
            "created_by": created_by,
        },
        replace=exists,
        identity=created_by,
        clock=lambda: now,
    )
    cache.set(key, current_hash)
    return PreviewOutcome(decision, target, result.database_url, current_hash)


class DeployNotification(BaseModel):
    """Fields of a deploy webhook payload relevant to teardown."""

    context: str
    state: str
    review_id: int | None = None
    branch: str | None = None


async def handle_deploy_notification(client: DatabaseClient, payload: DeployNotification) -> str | None:
    """Drop the preview database of a closed or failed deploy preview.

    Returns the dropped database name, or ``None`` when the payload does not call
    for a teardown.
    """

    if payload.context != PREVIEW_CONTEXT:
        LOG.info("Ignoring non-preview deployment (%s)", payload.context)
        return None
    if payload.state not in TEARDOWN_STATES:
        LOG.info("Ignoring state: %s", payload.state)
        return None
    if not payload.review_id:
        LOG.info("No review_id in payload, cannot determine database name")
        return None
    target = preview_database_name(payload.review_id)
    LOG.info("Cleaning up preview database: %s", target)
    await drop_database(client, target)
    return target


__all__ = [
    "DeployNotification",
    "PREVIEW_CONTEXT",
    "PreviewOutcome",
    "handle_deploy_notification",
    "prepare_preview_database",
    "preview_database_name",
]

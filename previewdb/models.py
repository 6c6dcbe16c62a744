"""Shared dataclasses used across the lifecycle engines."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict

DEFAULT_PORT = 26257
DEFAULT_SSLMODE = "verify-full"


@dataclass(frozen=True, slots=True)
class ConnectionDescriptor:
    """Typed parts of a database connection URL."""

    user: str
    password: str
    host: str
    port: int = DEFAULT_PORT
    database: str = ""
    sslmode: str = DEFAULT_SSLMODE
    options: tuple[tuple[str, str], ...] = ()

    def with_database(self, database: str) -> ConnectionDescriptor:
        """Return a copy pointing at another logical database."""

        return replace(self, database=database)

    def redacted(self) -> str:
        """Human readable form with the password masked."""

        return f"{self.user}:***@{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"


class DatabaseMetadata(BaseModel):
    """Lineage record stored as the comment of a spawned database."""

    model_config = ConfigDict(extra="allow")

    created_at: str | None = None
    created_by: str | None = None
    pr_number: int | None = None
    branch: str | None = None

    def created_datetime(self) -> datetime | None:
        """Parse ``created_at``; ``None`` when absent or unparseable."""

        if not self.created_at:
            return None
        try:
            value = datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class DatabaseKind(str, Enum):
    """How the protection rules classify a database name."""

    PROTECTED = "protected"
    PREVIEW = "preview"
    PERSONAL = "personal"
    UNRECOGNIZED = "unrecognized"

    @property
    def deletable(self) -> bool:
        return self in (DatabaseKind.PREVIEW, DatabaseKind.PERSONAL)


@dataclass(frozen=True, slots=True)
class DatabaseInfo:
    """A logical database as reported by the server inventory."""

    name: str
    owner: str
    metadata: DatabaseMetadata | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"name": self.name, "owner": self.owner}
        if self.metadata is not None:
            data["metadata"] = self.metadata.model_dump(exclude_none=True)
        return data


@dataclass(frozen=True, slots=True)
class DropFailure:
    """A candidate that could not be dropped during bulk cleanup."""

    name: str
    message: str


@dataclass(frozen=True, slots=True)
class CleanupResult:
    """Summary of a cleanup invocation."""

    candidates: tuple[DatabaseInfo, ...]
    deleted: tuple[str, ...] = ()
    failures: tuple[DropFailure, ...] = ()
    dry_run: bool = False
    cancelled: bool = False

    @property
    def count(self) -> int:
        return len(self.deleted)


@dataclass(frozen=True, slots=True)
class SpawnResult:
    """Outcome of a successful spawn."""

    database: str
    database_url: str
    snapshot: str
    metadata: DatabaseMetadata
    replaced: bool = False


__all__ = [
    "CleanupResult",
    "ConnectionDescriptor",
    "DEFAULT_PORT",
    "DEFAULT_SSLMODE",
    "DatabaseInfo",
    "DatabaseKind",
    "DatabaseMetadata",
    "DropFailure",
    "SpawnResult",
]

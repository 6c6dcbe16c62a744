"""Error taxonomy shared by every lifecycle engine."""

from __future__ import annotations


class LifecycleError(RuntimeError):
    """Base class for failures surfaced by the lifecycle tooling."""


class MissingCredentials(LifecycleError):
    """Raised when a required environment variable is not set."""

    def __init__(self, variable: str) -> None:
        super().__init__(f"{variable} environment variable is not set")
        self.variable = variable


class MalformedConnectionString(LifecycleError):
    """Raised when a connection URL cannot be parsed."""


class ProtectedName(LifecycleError):
    """Raised when a protected database is targeted for creation or removal."""

    def __init__(self, name: str, protected: tuple[str, ...]) -> None:
        super().__init__(
            f"Cannot use protected database name: {name}. "
            f"Protected databases: {', '.join(protected)}"
        )
        self.name = name


class InvalidName(LifecycleError):
    """Raised when a database name breaks the naming rules."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Invalid database name: {name}. {reason}")
        self.name = name


class AlreadyExists(LifecycleError):
    """Raised when a spawn target exists and replacement was not requested."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Database {name} already exists. Please choose a different name or clean it up first."
        )
        self.name = name


class NoSnapshotFound(LifecycleError):
    """Raised when the backing store holds no snapshot to restore from."""

    def __init__(self, source: str) -> None:
        super().__init__(
            f"No snapshots found for database '{source}' in the backup store. "
            f"Run 'previewdb snapshot {source}' first to create a snapshot."
        )
        self.source = source


class SnapshotCreationFailed(LifecycleError):
    """Raised when a backup reported success but produced no new snapshot."""


class DatabaseInUse(LifecycleError):
    """Raised when a drop is refused because the database has open connections."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Cannot drop database {name}: it's currently in use. "
            "Close all connections and try again."
        )
        self.name = name


class DatabaseNotFound(LifecycleError):
    """Raised when a named database is absent from the inventory."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Database not found: {name}")
        self.name = name


class UsageError(LifecycleError):
    """Raised for invalid option combinations or malformed caller input."""


class DatabaseCommandError(LifecycleError):
    """Raised when the database server rejects a statement."""


class SpawnIncomplete(LifecycleError):
    """Raised when a spawn fails after it already changed the server.

    The target is left as the failed step found it: dropped when a replace
    removed the previous instance, or restored without metadata. Nothing is
    rolled back.
    """

    def __init__(self, target: str, stage: str, *, dropped: bool, restored: bool, cause: Exception) -> None:
        if restored:
            state = f"{target} was restored but is missing its metadata"
        elif dropped:
            state = f"the previous {target} was dropped and no replacement was restored"
        else:
            state = f"{target} was not created"
        super().__init__(f"Spawn of {target} failed during {stage}: {cause}. Note: {state}.")
        self.target = target
        self.stage = stage
        self.dropped = dropped
        self.restored = restored


__all__ = [
    "AlreadyExists",
    "DatabaseCommandError",
    "DatabaseInUse",
    "DatabaseNotFound",
    "InvalidName",
    "LifecycleError",
    "MalformedConnectionString",
    "MissingCredentials",
    "NoSnapshotFound",
    "ProtectedName",
    "SnapshotCreationFailed",
    "SpawnIncomplete",
    "UsageError",
]

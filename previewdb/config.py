"""App configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import tomllib

from pydantic import BaseModel, ValidationError

from .errors import MissingCredentials

CONFIG_FILE = Path.home() / ".config" / "previewdb" / "config.toml"

ROOT_URL_ENV = "DATABASE_URL_ROOT"
DATABASE_URL_ENV = "DATABASE_URL"
BUCKET_ENV = "COCKROACH_BACKUP_BUCKET_NAME"


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    backup_bucket: str = "movie-club-crdb-dev-exports"
    source_database: str = "dev"
    admin_database: str = "defaultdb"
    max_snapshots: int = 5
    backup_as_of: str = "-10s"
    migrations_dir: Path = Path("migrations/schema")
    hash_cache_file: Path = Path(".previewdb/migration-hashes.json")
    env_file: Path = Path(".env")
    connect_timeout: float = 10.0
    preview_created_by: str = "netlify-bot"

    def with_environment(self, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Return a copy with environment overrides applied."""

        env = os.environ if environ is None else environ
        bucket = env.get(BUCKET_ENV)
        if bucket:
            return self.model_copy(update={"backup_bucket": bucket})
        return self


def config_path() -> Path:
    override = os.environ.get("PREVIEWDB_CONFIG")
    return Path(override) if override else CONFIG_FILE


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file(config_path())
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    try:
        return AppConfig(**data)
    except ValidationError:
        return AppConfig()


def root_database_url(environ: Mapping[str, str] | None = None) -> str:
    """Connection URL of the cluster, preferring the root credentials."""

    env = os.environ if environ is None else environ
    for name in (ROOT_URL_ENV, DATABASE_URL_ENV):
        value = env.get(name)
        if value:
            return value
    raise MissingCredentials(DATABASE_URL_ENV)


def app_database_url(environ: Mapping[str, str] | None = None) -> str:
    """Connection URL handed to the application, preferring its own credentials."""

    env = os.environ if environ is None else environ
    for name in (DATABASE_URL_ENV, ROOT_URL_ENV):
        value = env.get(name)
        if value:
            return value
    raise MissingCredentials(DATABASE_URL_ENV)


def is_ci(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get("CI") == "true"


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("backup_bucket", "source_database", "admin_database", "backup_as_of", "preview_created_by"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            data[key] = value
    for key in ("migrations_dir", "hash_cache_file", "env_file"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            data[key] = Path(value)
    max_snapshots = raw.get("max_snapshots")
    if isinstance(max_snapshots, int) and not isinstance(max_snapshots, bool):
        data["max_snapshots"] = max_snapshots
    timeout = raw.get("connect_timeout")
    if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
        data["connect_timeout"] = float(timeout)
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "app_database_url",
    "config_path",
    "is_ci",
    "load_config",
    "root_database_url",
]

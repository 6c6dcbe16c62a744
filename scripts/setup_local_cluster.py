"""Utility that launches a single-node CockroachDB container for local previewdb work."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from previewdb.envfile import update_env_database_url

DEFAULT_CONTAINER = "previewdb-local-crdb"
DEFAULT_PORT = 26257
DEFAULT_DB = "dev"
DOCKER_IMAGE = "cockroachdb/cockroach:latest-v24.2"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-p",
                f"{port}:26257",
                DOCKER_IMAGE,
                "start-single-node",
                "--insecure",
            ]
        )
    wait_for_start(name)


def sql(name: str, statement: str, *, check: bool = True) -> subprocess.CompletedProcess[str]:
    return run(
        ["docker", "exec", "-i", name, "./cockroach", "sql", "--insecure", "-e", statement],
        check=check,
    )


def wait_for_start(name: str, retries: int = 30, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", name, "./cockroach", "sql", "--insecure", "-e", "SELECT 1"],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: cluster did not report ready state; continuing anyway.")


def seed_data(name: str, database: str) -> None:
    sql(name, f'CREATE DATABASE IF NOT EXISTS "{database}"')
    sql(
        name,
        f"""
        CREATE TABLE IF NOT EXISTS "{database}".public.movies (
            id INT8 PRIMARY KEY DEFAULT unique_rowid(),
            title STRING NOT NULL,
            created_at TIMESTAMPTZ DEFAULT now()
        );
        UPSERT INTO "{database}".public.movies (id, title) VALUES
            (1, 'Stalker'),
            (2, 'Paris, Texas'),
            (3, 'In the Mood for Love');
        """.strip(),
    )


def update_env(env_file: Path, url: str) -> None:
    if env_file.exists() and update_env_database_url(env_file, url):
        print(f"Pointed DATABASE_URL in {env_file} at the local cluster.")
        return
    with env_file.open("a") as handle:
        handle.write(f"DATABASE_URL={url}\n")
    print(f"Added DATABASE_URL to {env_file}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose CockroachDB on")
    parser.add_argument("--database", default=DEFAULT_DB, help="Source database to create")
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="Env file to update")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port)
        seed_data(args.container, args.database)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    url = f"postgresql://root@localhost:{args.port}/{args.database}?sslmode=disable"
    update_env(args.env_file, url)
    print(
        "Local cluster is ready. Backups still go to the configured bucket, so set "
        "AWS_ACCESS_KEY_COCKROACH_BACKUP and AWS_SECRET_ACCESS_KEY_COCKROACH_BACKUP before "
        f"running 'previewdb snapshot'. DSN: {url}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Tests for the inventory and the deletion guard."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from previewdb.inventory import (
    PROTECTED_DATABASES,
    can_delete,
    classify,
    database_exists,
    list_databases,
    list_older_than,
)
from previewdb.models import DatabaseKind
from tests.fakes import FakeCluster

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _created(days_ago: float) -> dict[str, str]:
    return {"created_at": (NOW - timedelta(days=days_ago)).isoformat()}


@pytest.mark.parametrize("name", PROTECTED_DATABASES)
def test_protected_names_are_never_deletable(name: str) -> None:
    assert can_delete(name) is False
    assert classify(name) is DatabaseKind.PROTECTED


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("randomname", False),
        ("pr_123", True),
        ("dev_alice_feature", True),
        ("preview_1", False),
        ("develop", False),
    ],
)
def test_can_delete_requires_managed_prefix(name: str, expected: bool) -> None:
    assert can_delete(name) is expected


def test_classify_distinguishes_managed_kinds() -> None:
    assert classify("pr_5") is DatabaseKind.PREVIEW
    assert classify("dev_bob_x") is DatabaseKind.PERSONAL
    assert classify("weird_name") is DatabaseKind.UNRECOGNIZED
    assert DatabaseKind.PREVIEW.deletable and not DatabaseKind.UNRECOGNIZED.deletable


@pytest.mark.anyio
async def test_list_databases_hides_protected_and_internal_names() -> None:
    cluster = FakeCluster()
    for name in ("system", "defaultdb", "postgres", "dev", "prod", "crdb_internal_x", "pr_2", "pr_1"):
        cluster.add_database(name)

    names = [info.name for info in await list_databases(cluster)]
    display = [info.name for info in await list_databases(cluster, include_permanent=True)]

    assert names == ["pr_1", "pr_2"]
    assert display == ["dev", "pr_1", "pr_2", "prod"]


@pytest.mark.anyio
async def test_list_databases_decodes_metadata_and_tolerates_garbage() -> None:
    cluster = FakeCluster()
    cluster.add_database("pr_1", {"created_at": "2026-10-01T00:00:00Z", "pr_number": 1, "branch": "feat"})
    cluster.add_database("pr_2", "not json at all")
    cluster.add_database("pr_3", '["a", "list"]')
    cluster.add_database("pr_4", '{"pr_number": "not-a-number"}')
    cluster.add_database("pr_5", owner="app")

    databases = {info.name: info for info in await list_databases(cluster)}

    metadata = databases["pr_1"].metadata
    assert metadata is not None
    assert metadata.pr_number == 1
    assert metadata.branch == "feat"
    assert metadata.created_datetime() == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert databases["pr_2"].metadata is None
    assert databases["pr_3"].metadata is None
    assert databases["pr_4"].metadata is None
    assert databases["pr_5"].metadata is None
    assert databases["pr_5"].owner == "app"


@pytest.mark.anyio
async def test_list_older_than_selects_only_stale_managed_databases() -> None:
    cluster = FakeCluster()
    cluster.add_database("dev", _created(30))
    cluster.add_database("pr_10", _created(10))
    cluster.add_database("pr_11", _created(2))
    cluster.add_database("weird_name", _created(30))

    stale = await list_older_than(cluster, 7, now=NOW)

    assert [info.name for info in stale] == ["pr_10"]


@pytest.mark.anyio
async def test_list_older_than_skips_unknown_ages() -> None:
    cluster = FakeCluster()
    cluster.add_database("pr_1")
    cluster.add_database("pr_2", {"created_by": "bot"})
    cluster.add_database("pr_3", {"created_at": "yesterday-ish"})

    assert await list_older_than(cluster, 0, now=NOW) == []


@pytest.mark.anyio
async def test_database_exists_uses_catalog_lookup() -> None:
    cluster = FakeCluster()
    cluster.add_database("pr_1")

    assert await database_exists(cluster, "pr_1") is True
    assert await database_exists(cluster, "pr_2") is False
    assert cluster.statements[0] == "SELECT 1 FROM pg_database WHERE datname = $1"

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from integration_queue.catalog import IntegrationCatalog
from integration_queue.models import (
    Category,
    InstallationRecord,
    InstallationStatus,
    Integration,
    IntegrationDefinition,
)
from integration_queue.settings import RuntimeSettings
from integration_queue.state_store import FileInstallationStore

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


def scenario_catalog() -> IntegrationCatalog:
    """backend <- database <- authentication, with authentication outranking database on priority."""
    categories = [
        Category(key="backend", priority=0),
        Category(key="database", dependencies=frozenset({"backend"}), priority=100),
        Category(key="authentication", dependencies=frozenset({"backend", "database"}), priority=0),
    ]
    definitions = [
        IntegrationDefinition(key="be-1", category="backend"),
        IntegrationDefinition(key="db-1", category="database"),
        IntegrationDefinition(key="auth-1", category="authentication"),
    ]
    return IntegrationCatalog(categories, definitions)


def make_record(
    key: str,
    category: str,
    *,
    version_id: str = "v1",
    project_id: str = "proj-1",
    integration_id: str | None = None,
    status: InstallationStatus = InstallationStatus.QUEUED,
    offset: int = 0,
) -> InstallationRecord:
    created_at = BASE_TIME + timedelta(seconds=offset)
    integration = Integration(
        id=integration_id or key,
        key=key,
        category=category,
        project_id=project_id,
        created_at=created_at,
    )
    return InstallationRecord(
        integration=integration,
        version_id=version_id,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


def seed_version(
    store: FileInstallationStore,
    version_id: str,
    records: list[InstallationRecord],
    *,
    project_id: str = "proj-1",
) -> None:
    if not store.has_version(version_id):
        store.create_version(version_id, project_id)
    for record in records:
        store.save_integration(record.integration)
    store.add_records(version_id, records)


@pytest.fixture()
def store(tmp_path: Path) -> FileInstallationStore:
    return FileInstallationStore(tmp_path / "state_store")


@pytest.fixture()
def settings() -> RuntimeSettings:
    return RuntimeSettings()


@pytest.fixture()
def scenario_store(store: FileInstallationStore) -> FileInstallationStore:
    """Version v1 with queued auth-1, db-1 and be-1, created in that order."""
    seed_version(
        store,
        "v1",
        [
            make_record("auth-1", "authentication", offset=0),
            make_record("db-1", "database", offset=1),
            make_record("be-1", "backend", offset=2),
        ],
    )
    return store

from __future__ import annotations

import pytest

from integration_queue.catalog import default_catalog
from integration_queue.errors import RecordNotFound, UnknownIntegration
from integration_queue.intake import configure_integration, enqueue_integrations, new_integration_id, requeue_failed
from integration_queue.models import BetterAuthOptions, InstallationStatus
from integration_queue.state_store import FileInstallationStore


def _statuses(store: FileInstallationStore, version_id: str = "v1") -> dict[str, InstallationStatus]:
    return {record.key: record.status for record in store.list_records(version_id)}


def _install(store: FileInstallationStore, version_id: str, key: str) -> None:
    (record,) = store.find_records(version_id, key)
    if record.status == InstallationStatus.BLOCKED:
        store.update_record_status(record.integration_id, version_id, InstallationStatus.QUEUED)
    store.update_record_status(record.integration_id, version_id, InstallationStatus.INSTALLING)
    store.update_record_status(record.integration_id, version_id, InstallationStatus.INSTALLED)


def test_new_integration_id_format() -> None:
    integration_id = new_integration_id()

    assert integration_id.startswith("INT-")
    assert len(integration_id) == 16
    assert integration_id != new_integration_id()


def test_enqueue_sets_initial_statuses(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")

    report = enqueue_integrations(store, default_catalog(), version_id="v1", keys=["better-auth", "orpc", "postgresql"])

    assert report.created == ["better-auth", "orpc", "postgresql"]
    assert report.reused == []
    assert report.skipped == []
    assert _statuses(store) == {
        "better-auth": InstallationStatus.BLOCKED,
        "orpc": InstallationStatus.QUEUED,
        "postgresql": InstallationStatus.AWAITING_CONFIG,
    }
    (postgres,) = store.find_records("v1", "postgresql")
    assert postgres.metadata["missing_variables"] == ["DATABASE_URL"]
    assert {record.key for record in report.records} == {"better-auth", "orpc", "postgresql"}


def test_enqueue_with_variables_queues_immediately(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")

    enqueue_integrations(store, default_catalog(), version_id="v1", keys=["orpc", "postgresql"], variables=["DATABASE_URL"])

    (postgres,) = store.find_records("v1", "postgresql")
    assert postgres.status == InstallationStatus.BLOCKED
    assert postgres.metadata == {"configured_variables": ["DATABASE_URL"]}


def test_enqueue_unknown_key_writes_nothing(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")

    with pytest.raises(UnknownIntegration, match="Integration redis not found"):
        enqueue_integrations(store, default_catalog(), version_id="v1", keys=["orpc", "redis"])

    assert store.list_records("v1") == []
    assert store.find_integrations("proj-1", "orpc") == []


def test_enqueue_skips_keys_already_in_version(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()
    enqueue_integrations(store, catalog, version_id="v1", keys=["orpc", "orpc"])

    report = enqueue_integrations(store, catalog, version_id="v1", keys=["orpc"])

    assert report.skipped == ["orpc"]
    assert report.records == []
    assert len(store.find_records("v1", "orpc")) == 1


def test_enqueue_allows_multiple_instances_where_catalog_permits(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()

    enqueue_integrations(store, catalog, version_id="v1", keys=["postgresql"], variables=["DATABASE_URL"])
    report = enqueue_integrations(store, catalog, version_id="v1", keys=["postgresql"], variables=["DATABASE_URL"])

    assert report.created == ["postgresql"]
    records = store.find_records("v1", "postgresql")
    assert len(records) == 2
    assert records[0].integration_id != records[1].integration_id


def test_enqueue_reuses_project_integration_in_child_version(store: FileInstallationStore) -> None:
    catalog = default_catalog()
    store.create_version("v1", "proj-1")
    enqueue_integrations(store, catalog, version_id="v1", keys=["orpc"])
    store.create_version("v2", "proj-1", parent_version_id="v1")

    report = enqueue_integrations(store, catalog, version_id="v2", keys=["orpc"])

    assert report.reused == ["orpc"]
    (original,) = store.find_records("v1", "orpc")
    (reused,) = store.find_records("v2", "orpc")
    assert reused.integration_id == original.integration_id
    assert reused.status == InstallationStatus.QUEUED


def test_enqueue_skips_integration_installed_in_ancestor(store: FileInstallationStore) -> None:
    catalog = default_catalog()
    store.create_version("v1", "proj-1")
    enqueue_integrations(store, catalog, version_id="v1", keys=["orpc"])
    _install(store, "v1", "orpc")
    store.create_version("v2", "proj-1", parent_version_id="v1")
    store.create_version("v3", "proj-1", parent_version_id="v2")

    report = enqueue_integrations(store, catalog, version_id="v3", keys=["orpc", "tanstack-start"])

    assert report.skipped == ["orpc"]
    assert report.created == ["tanstack-start"]
    assert _statuses(store, "v3") == {"tanstack-start": InstallationStatus.QUEUED}


def test_enqueue_validates_options(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()

    enqueue_integrations(
        store,
        catalog,
        version_id="v1",
        keys=["better-auth"],
        options={"better-auth": {"social_providers": ["github"], "plugins": ["organization"]}},
    )

    (record,) = store.find_records("v1", "better-auth")
    assert record.integration.options == BetterAuthOptions(social_providers=["github"], plugins=["organization"])

    with pytest.raises(ValueError):
        enqueue_integrations(store, catalog, version_id="v1", keys=["orpc"], options={"orpc": {"key": "postgresql"}})
    with pytest.raises(ValueError):
        enqueue_integrations(
            store, catalog, version_id="v1", keys=["tanstack-start"], options={"tanstack-start": {"ssr": "sometimes"}}
        )


def test_configure_queues_and_reevaluates_blocking(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()
    enqueue_integrations(store, catalog, version_id="v1", keys=["postgresql"])

    with pytest.raises(ValueError, match="missing required variables: DATABASE_URL"):
        configure_integration(store, catalog, version_id="v1", key="postgresql", variables=["OTHER"])

    record = configure_integration(store, catalog, version_id="v1", key="postgresql", variables=["DATABASE_URL"])

    assert record.status == InstallationStatus.BLOCKED
    assert record.metadata == {"configured_variables": ["DATABASE_URL"]}


def test_configure_after_dependency_installed_leaves_record_queued(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()
    enqueue_integrations(store, catalog, version_id="v1", keys=["orpc", "postgresql"])
    _install(store, "v1", "orpc")

    record = configure_integration(store, catalog, version_id="v1", key="postgresql", variables=["DATABASE_URL"])

    assert record.status == InstallationStatus.QUEUED


def test_configure_rejects_records_not_awaiting_config(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    catalog = default_catalog()
    enqueue_integrations(store, catalog, version_id="v1", keys=["orpc"])

    with pytest.raises(ValueError, match="orpc is queued, not awaiting configuration"):
        configure_integration(store, catalog, version_id="v1", key="orpc", variables=[])
    with pytest.raises(RecordNotFound):
        configure_integration(store, catalog, version_id="v1", key="postgresql", variables=["DATABASE_URL"])


def test_requeue_failed_moves_error_aside(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    enqueue_integrations(store, default_catalog(), version_id="v1", keys=["orpc"])
    (record,) = store.find_records("v1", "orpc")
    store.update_record_status(record.integration_id, "v1", InstallationStatus.INSTALLING)
    store.update_record_status(record.integration_id, "v1", InstallationStatus.FAILED, {"error": "timeout"})

    requeued = requeue_failed(store, version_id="v1", key="orpc")

    assert requeued.status == InstallationStatus.QUEUED
    assert requeued.metadata == {"previous_error": "timeout"}


def test_requeue_rejects_records_that_did_not_fail(store: FileInstallationStore) -> None:
    store.create_version("v1", "proj-1")
    enqueue_integrations(store, default_catalog(), version_id="v1", keys=["orpc"])

    with pytest.raises(ValueError, match="Only failed integrations can be retried"):
        requeue_failed(store, version_id="v1", key="orpc")


def test_failed_record_insert_leaves_no_orphan_integrations(
    store: FileInstallationStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.create_version("v1", "proj-1")

    def fail_add_records(version_id, records):
        raise ValueError("version v1 changed underneath")

    monkeypatch.setattr(store, "add_records", fail_add_records)

    with pytest.raises(ValueError, match="changed underneath"):
        enqueue_integrations(store, default_catalog(), version_id="v1", keys=["orpc", "postgresql"])

    assert store.read_project_integrations("proj-1").integrations == {}

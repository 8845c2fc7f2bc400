"""Creating, configuring and resetting installation records before the queue runs."""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Mapping

from pydantic import TypeAdapter

from .catalog import IntegrationCatalog
from .errors import RecordNotFound
from .models import (
    EnqueueReport,
    InstallationRecord,
    InstallationStatus,
    Integration,
    IntegrationDefinition,
    IntegrationOptions,
)
from .resolver import DependencyResolver
from .state_store import FileInstallationStore

logger = logging.getLogger(__name__)

_OPTIONS_ADAPTER: TypeAdapter[IntegrationOptions] = TypeAdapter(IntegrationOptions)


def new_integration_id() -> str:
    return f"INT-{uuid.uuid4().hex[:12]}"


def _missing_variables(definition: IntegrationDefinition, configured: Iterable[str]) -> list[str]:
    return sorted(definition.required_variables - set(configured))


def _parse_options(key: str, raw: Mapping[str, object] | None) -> IntegrationOptions | None:
    if raw is None:
        return None
    payload = dict(raw)
    payload.setdefault("key", key)
    options = _OPTIONS_ADAPTER.validate_python(payload)
    if options.key != key:
        raise ValueError(f"options for {options.key} cannot configure integration {key}")
    return options


def _installed_in_lineage(store: FileInstallationStore, version_ids: list[str], integration_id: str) -> str | None:
    for version_id in version_ids:
        records = store.read_version(version_id).records
        record = records.get(integration_id)
        if record is not None and record.status == InstallationStatus.INSTALLED:
            return version_id
    return None


def block_unsatisfied(store: FileInstallationStore, catalog: IntegrationCatalog, version_id: str) -> list[str]:
    """Mark queued records whose dependency categories are not yet installed as blocked.

    Returns the keys that were blocked.
    """
    resolver = DependencyResolver(catalog)
    queued = [record for record in store.list_records(version_id) if record.status == InstallationStatus.QUEUED]
    classification = resolver.classify(queued, store.load_completed_categories(version_id))
    blocked: list[str] = []
    by_id = {record.integration_id: record for record in queued}
    for integration_id in classification.become_blocked:
        record = by_id[integration_id]
        store.update_record_status(integration_id, version_id, InstallationStatus.BLOCKED)
        missing = ", ".join(sorted(classification.missing[integration_id]))
        logger.info("Blocked %s - missing: %s", record.key, missing)
        blocked.append(record.key)
    return blocked


def enqueue_integrations(
    store: FileInstallationStore,
    catalog: IntegrationCatalog,
    *,
    version_id: str,
    keys: Iterable[str],
    variables: Iterable[str] = (),
    options: Mapping[str, Mapping[str, object]] | None = None,
) -> EnqueueReport:
    """Request integrations for a version.

    Args:
        store: Store holding the version and project integrations.
        catalog: Catalog used to resolve keys.
        version_id: Target version; must already exist.
        keys: Integration keys in request order. Duplicates are ignored.
        variables: Names of user variables already configured. Values are
            managed elsewhere and never stored here.
        options: Optional per-key option payloads, validated against the
            options union for that key.

    Returns:
        What was created, reused and skipped.

    Raises:
        UnknownIntegration: If any key is not in the catalog. Nothing is
            written in that case.
        ValueError: If options do not match their key.
    """
    requested = list(dict.fromkeys(keys))
    definitions = {key: catalog.definition(key) for key in requested}
    parsed_options = {key: _parse_options(key, (options or {}).get(key)) for key in requested}
    configured = sorted(set(variables))

    version = store.read_version(version_id)
    lineage = store.version_lineage(version_id)
    report = EnqueueReport(version_id=version_id)
    new_records: list[InstallationRecord] = []
    new_integrations: list[Integration] = []

    for key in requested:
        definition = definitions[key]
        existing = store.find_integrations(version.project_id, key)

        if existing and not definition.allow_multiple:
            integration = existing[0]
            if integration.id in version.records:
                logger.info("Integration %s already has a record in version %s, skipping", key, version_id)
                report.skipped.append(key)
                continue
            installed_in = _installed_in_lineage(store, lineage, integration.id)
            if installed_in is not None:
                logger.info("Integration %s already installed in ancestor version %s, skipping", key, installed_in)
                report.skipped.append(key)
                continue
            report.reused.append(key)
        else:
            integration = Integration(
                id=new_integration_id(),
                key=key,
                category=definition.category,
                project_id=version.project_id,
                options=parsed_options[key],
            )
            new_integrations.append(integration)
            report.created.append(key)

        missing = _missing_variables(definition, configured)
        status = InstallationStatus.AWAITING_CONFIG if missing else InstallationStatus.QUEUED
        metadata: dict[str, object] = {"configured_variables": configured}
        if missing:
            metadata["missing_variables"] = missing
        new_records.append(
            InstallationRecord(integration=integration, version_id=version_id, status=status, metadata=metadata)
        )
        logger.info("Created installation record for %s with status %s", key, status.value)

    if new_records:
        store.add_records(version_id, new_records)
        for integration in new_integrations:
            store.save_integration(integration)
        block_unsatisfied(store, catalog, version_id)

    created_ids = {record.integration_id for record in new_records}
    report.records = [record for record in store.list_records(version_id) if record.integration_id in created_ids]
    return report


def _single_record(store: FileInstallationStore, version_id: str, key: str) -> InstallationRecord:
    records = store.find_records(version_id, key)
    if not records:
        raise RecordNotFound(key, version_id)
    if len(records) > 1:
        raise ValueError(f"Version {version_id} holds {len(records)} records for {key}; address one by integration id")
    return records[0]


def configure_integration(
    store: FileInstallationStore,
    catalog: IntegrationCatalog,
    *,
    version_id: str,
    key: str,
    variables: Iterable[str],
) -> InstallationRecord:
    """Supply user variables for an ``awaiting_config`` record and queue it.

    Raises:
        ValueError: If the record is not awaiting configuration or required
            variables are still missing.
    """
    record = _single_record(store, version_id, key)
    if record.status != InstallationStatus.AWAITING_CONFIG:
        raise ValueError(f"Integration {key} is {record.status.value}, not awaiting configuration")

    previously = record.metadata.get("configured_variables", [])
    configured = sorted(set(previously) | set(variables))
    missing = _missing_variables(catalog.definition(key), configured)
    if missing:
        raise ValueError(f"Integration {key} is missing required variables: {', '.join(missing)}")

    updated = store.update_record_status(
        record.integration_id,
        version_id,
        InstallationStatus.QUEUED,
        metadata={"configured_variables": configured},
    )
    logger.info("Configured %s; queued for installation", key)
    block_unsatisfied(store, catalog, version_id)
    return store.get_record(version_id, updated.integration_id)


def requeue_failed(store: FileInstallationStore, *, version_id: str, key: str) -> InstallationRecord:
    """Reset a failed record to queued so the next run retries it.

    Raises:
        ValueError: If the record did not fail.
    """
    record = _single_record(store, version_id, key)
    if record.status != InstallationStatus.FAILED:
        raise ValueError(f"Only failed integrations can be retried; {key} is {record.status.value}")

    metadata = {name: value for name, value in record.metadata.items() if name != "error"}
    if "error" in record.metadata:
        metadata["previous_error"] = record.metadata["error"]
    logger.info("Requeued failed integration %s in version %s", key, version_id)
    return store.update_record_status(record.integration_id, version_id, InstallationStatus.QUEUED, metadata=metadata)

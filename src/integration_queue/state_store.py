from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol

from pydantic import ValidationError

from .errors import IllegalStatusTransition, RecordNotFound, VersionLocked
from .models import (
    INSTALLATION_STATUS_TRANSITIONS,
    NON_TERMINAL_STATUSES,
    InstallationRecord,
    InstallationStatus,
    Integration,
    ProjectIntegrations,
    VersionState,
)
from .utils import atomic_write_text, locked_file, read_store_document, sanitize_identifier

logger = logging.getLogger(__name__)


class InstallationStateStore(Protocol):
    """Persistence contract consumed by the orchestrator.

    Implementations must make ``update_record_status`` atomic per record.
    """

    def load_non_terminal_records(self, version_id: str) -> list[InstallationRecord]:
        ...

    def load_completed_categories(self, version_id: str) -> frozenset[str]:
        ...

    def update_record_status(
        self,
        integration_id: str,
        version_id: str,
        status: InstallationStatus,
        metadata: dict[str, Any] | None = None,
    ) -> InstallationRecord:
        ...


def _record_order(record: InstallationRecord) -> tuple[datetime, str]:
    return (record.created_at, record.integration_id)


# ---------------------------------------------------------------------------
# FileInstallationStore
# ---------------------------------------------------------------------------


class FileInstallationStore:
    """JSON file store for versions, their installation records and project integrations.

    Layout under *root*::

        versions/<version_id>.json                 VersionState
        projects/<project_id>/integrations.json    ProjectIntegrations

    Every read-modify-write happens under an ``fcntl`` lock on a sidecar file
    and lands through an atomic rename.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.versions_dir = self.root / "versions"
        self.projects_dir = self.root / "projects"
        self.ensure_structure()

    def ensure_structure(self) -> None:
        for directory in (self.root, self.versions_dir, self.projects_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def version_path(self, version_id: str) -> Path:
        return self.versions_dir / f"{sanitize_identifier(version_id, label='version_id')}.json"

    def project_integrations_path(self, project_id: str) -> Path:
        return self.projects_dir / sanitize_identifier(project_id, label="project_id") / "integrations.json"

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def has_version(self, version_id: str) -> bool:
        return self.version_path(version_id).is_file()

    def create_version(self, version_id: str, project_id: str, *, parent_version_id: str | None = None) -> VersionState:
        """Register an empty version.

        Raises:
            ValueError: If the version exists, or the parent belongs to another project.
            FileNotFoundError: If the parent version does not exist.
        """
        if parent_version_id is not None:
            parent = self.read_version(parent_version_id)
            if parent.project_id != project_id:
                raise ValueError(
                    f"Parent version {parent_version_id} belongs to project {parent.project_id}, not {project_id}"
                )

        path = self.version_path(version_id)
        with locked_file(path):
            if path.exists():
                raise ValueError(f"Version already exists: {version_id}")
            state = VersionState(version_id=version_id, project_id=project_id, parent_version_id=parent_version_id)
            atomic_write_text(path, state.model_dump_json(indent=2))
        logger.info("Created version %s for project %s (parent=%s)", version_id, project_id, parent_version_id)
        return state

    def read_version(self, version_id: str) -> VersionState:
        """Read one version under its lock.

        Raises:
            FileNotFoundError: If the version does not exist.
            ValueError: If the file is corrupt or fails validation.
        """
        path = self.version_path(version_id)
        if not path.is_file():
            raise FileNotFoundError(f"version not found: {version_id}")
        with locked_file(path):
            return self._read_version_unlocked(path)

    def _read_version_unlocked(self, path: Path) -> VersionState:
        text = read_store_document(path, "version state")
        try:
            return VersionState.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"version state at {path} failed validation: {exc}") from exc

    def _write_version_unlocked(self, path: Path, state: VersionState) -> None:
        state.updated_at = datetime.now(UTC)
        atomic_write_text(path, state.model_dump_json(indent=2))

    def version_lineage(self, version_id: str) -> list[str]:
        """Ancestor version ids, nearest parent first."""
        lineage: list[str] = []
        seen = {version_id}
        current = self.read_version(version_id).parent_version_id
        while current is not None:
            if current in seen:
                raise ValueError(f"Version lineage of {version_id} loops at {current}")
            seen.add(current)
            lineage.append(current)
            current = self.read_version(current).parent_version_id
        return lineage

    @contextmanager
    def version_lock(self, version_id: str) -> Iterator[None]:
        """Exclusive run lock for one version's installation queue.

        Separate from the per-write lock so a holder can still read and
        update records.

        Raises:
            VersionLocked: If another holder already has the lock.
        """
        run_path = self.version_path(version_id).with_suffix(".run")
        try:
            with locked_file(run_path, blocking=False):
                yield
        except BlockingIOError as exc:
            raise VersionLocked(version_id) from exc

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def list_records(self, version_id: str) -> list[InstallationRecord]:
        return sorted(self.read_version(version_id).records.values(), key=_record_order)

    def get_record(self, version_id: str, integration_id: str) -> InstallationRecord:
        records = self.read_version(version_id).records
        if integration_id not in records:
            raise RecordNotFound(integration_id, version_id)
        return records[integration_id]

    def find_records(self, version_id: str, key: str) -> list[InstallationRecord]:
        return [record for record in self.list_records(version_id) if record.key == key]

    def add_records(self, version_id: str, records: Iterable[InstallationRecord]) -> list[InstallationRecord]:
        """Insert new records into a version.

        Raises:
            ValueError: If a record already exists for the integration, or
                belongs to another version.
        """
        path = self.version_path(version_id)
        if not path.is_file():
            raise FileNotFoundError(f"version not found: {version_id}")
        added: list[InstallationRecord] = []
        with locked_file(path):
            state = self._read_version_unlocked(path)
            for record in records:
                if record.version_id != version_id:
                    raise ValueError(f"Record for {record.integration_id} targets version {record.version_id}")
                if record.integration_id in state.records:
                    raise ValueError(
                        f"Integration {record.integration_id} already has a record in version {version_id}"
                    )
                state.records[record.integration_id] = record
                added.append(record)
            self._write_version_unlocked(path, state)
        return added

    def load_non_terminal_records(self, version_id: str) -> list[InstallationRecord]:
        return [record for record in self.list_records(version_id) if record.status in NON_TERMINAL_STATUSES]

    def load_completed_categories(self, version_id: str) -> frozenset[str]:
        """Categories with an installed record in the version or any of its ancestors.

        Intake skips integrations already installed upstream, so a child
        version inherits the categories its ancestors completed.
        """
        completed: set[str] = set()
        for lineage_id in [version_id, *self.version_lineage(version_id)]:
            completed.update(
                record.category
                for record in self.read_version(lineage_id).records.values()
                if record.status == InstallationStatus.INSTALLED
            )
        return frozenset(completed)

    def update_record_status(
        self,
        integration_id: str,
        version_id: str,
        status: InstallationStatus,
        metadata: dict[str, Any] | None = None,
    ) -> InstallationRecord:
        """Transition one record under the version lock.

        *metadata*, when given, replaces the stored metadata.

        Raises:
            RecordNotFound: If the version has no record for the integration.
            IllegalStatusTransition: If the move is not allowed.
        """
        path = self.version_path(version_id)
        if not path.is_file():
            raise FileNotFoundError(f"version not found: {version_id}")
        with locked_file(path):
            state = self._read_version_unlocked(path)
            record = state.records.get(integration_id)
            if record is None:
                raise RecordNotFound(integration_id, version_id)
            if status not in INSTALLATION_STATUS_TRANSITIONS[record.status]:
                raise IllegalStatusTransition(integration_id, record.status.value, status.value)

            now = datetime.now(UTC)
            record.status = status
            record.updated_at = now
            if status == InstallationStatus.INSTALLED:
                record.installed_at = now
            if metadata is not None:
                record.metadata = dict(metadata)
            self._write_version_unlocked(path, state)
        return record

    # ------------------------------------------------------------------
    # Project integrations
    # ------------------------------------------------------------------

    def read_project_integrations(self, project_id: str) -> ProjectIntegrations:
        path = self.project_integrations_path(project_id)
        with locked_file(path):
            return self._read_project_unlocked(path, project_id)

    def _read_project_unlocked(self, path: Path, project_id: str) -> ProjectIntegrations:
        if not path.is_file():
            return ProjectIntegrations(project_id=project_id)
        text = read_store_document(path, "project integrations")
        try:
            return ProjectIntegrations.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"project integrations at {path} failed validation: {exc}") from exc

    def find_integrations(self, project_id: str, key: str) -> list[Integration]:
        integrations = self.read_project_integrations(project_id).integrations.values()
        return sorted(
            (integration for integration in integrations if integration.key == key),
            key=lambda item: (item.created_at, item.id),
        )

    def save_integration(self, integration: Integration) -> Integration:
        """Persist a new integration instance for its project.

        Raises:
            ValueError: If the id is already taken or the stored file is corrupt.
        """
        path = self.project_integrations_path(integration.project_id)
        with locked_file(path):
            project = self._read_project_unlocked(path, integration.project_id)
            if integration.id in project.integrations:
                raise ValueError(f"Integration already exists: {integration.id}")
            project.integrations[integration.id] = integration
            project.updated_at = datetime.now(UTC)
            atomic_write_text(path, project.model_dump_json(indent=2))
        return integration

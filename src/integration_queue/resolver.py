from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .catalog import IntegrationCatalog
from .errors import CatalogError
from .models import DependencyReport, InstallationRecord, InstallationStatus

logger = logging.getLogger(__name__)

_CLASSIFIABLE = frozenset({InstallationStatus.QUEUED, InstallationStatus.BLOCKED})


@dataclass(frozen=True)
class Classification:
    """Partition of queued/blocked record ids for one round."""

    become_eligible: tuple[str, ...] = ()
    become_blocked: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    missing: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.become_eligible or self.become_blocked)


def completed_categories(records: Iterable[InstallationRecord]) -> frozenset[str]:
    """Categories with at least one installed record."""
    return frozenset(record.category for record in records if record.status == InstallationStatus.INSTALLED)


class DependencyResolver:
    """Decides which queued or blocked records may install given completed categories."""

    def __init__(self, catalog: IntegrationCatalog) -> None:
        self.catalog = catalog

    def missing_dependencies(self, category: str, completed: frozenset[str] | set[str]) -> frozenset[str]:
        return self.catalog.graph.dependencies_of(category) - frozenset(completed)

    def classify(
        self,
        records: Iterable[InstallationRecord],
        completed: frozenset[str] | set[str],
    ) -> Classification:
        eligible: list[str] = []
        blocked: list[str] = []
        unchanged: list[str] = []
        missing_by_id: dict[str, frozenset[str]] = {}

        for record in sorted(records, key=lambda item: item.integration_id):
            if record.status not in _CLASSIFIABLE:
                raise ValueError(
                    f"Only queued or blocked records can be classified; "
                    f"{record.integration_id} is {record.status.value}"
                )
            missing = self.missing_dependencies(record.category, completed)
            if not missing:
                if record.status == InstallationStatus.BLOCKED:
                    eligible.append(record.integration_id)
                else:
                    unchanged.append(record.integration_id)
                continue

            missing_by_id[record.integration_id] = missing
            if record.status == InstallationStatus.QUEUED:
                blocked.append(record.integration_id)
            else:
                unchanged.append(record.integration_id)

        return Classification(
            become_eligible=tuple(eligible),
            become_blocked=tuple(blocked),
            unchanged=tuple(unchanged),
            missing=missing_by_id,
        )

    def validate_dependencies(self, keys: Iterable[str], completed: frozenset[str] | set[str]) -> DependencyReport:
        """Check whether requesting *keys* would leave any dependency category unsatisfied.

        Categories provided by the requested keys themselves count as
        satisfied. Unknown keys are reported as errors instead of raised.
        """
        errors: list[str] = []
        provided = set(completed)
        required: set[str] = set()

        for key in keys:
            try:
                definition = self.catalog.definition(key)
                dependencies = self.catalog.graph.dependencies_of(definition.category)
            except CatalogError as exc:
                errors.append(str(exc))
                continue
            provided.add(definition.category)
            required |= dependencies

        missing = sorted(required - provided)
        if missing:
            errors.append(f"Missing required integrations for categories: {', '.join(missing)}")
        return DependencyReport(is_valid=not errors, missing_dependencies=missing, errors=errors)

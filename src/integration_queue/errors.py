from __future__ import annotations


class CatalogError(ValueError):
    """The integration catalog or its category graph is misconfigured.

    Catalog errors are setup faults. They propagate to the caller unmodified
    and are never converted into a queue result.
    """


class UnknownIntegration(CatalogError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Integration {key} not found")
        self.key = key


class UnknownCategory(CatalogError):
    def __init__(self, key: str, *, referenced_by: str | None = None) -> None:
        message = f"Integration category {key} not found"
        if referenced_by is not None:
            message = f"{message} (referenced by {referenced_by})"
        super().__init__(message)
        self.key = key
        self.referenced_by = referenced_by


class CycleDetected(CatalogError):
    def __init__(self, categories: list[str]) -> None:
        super().__init__(f"Category dependency graph contains a cycle among: {', '.join(categories)}")
        self.categories = categories


class IllegalStatusTransition(ValueError):
    def __init__(self, integration_id: str, current: str, target: str) -> None:
        super().__init__(f"Illegal installation status transition for {integration_id}: {current} -> {target}")
        self.integration_id = integration_id
        self.current = current
        self.target = target


class RecordNotFound(LookupError):
    def __init__(self, integration_id: str, version_id: str) -> None:
        super().__init__(f"No installation record for integration {integration_id} in version {version_id}")
        self.integration_id = integration_id
        self.version_id = version_id


class VersionLocked(RuntimeError):
    """Another process already holds the run lock for a version."""

    def __init__(self, version_id: str) -> None:
        super().__init__(f"Installation queue for version {version_id} is already running")
        self.version_id = version_id

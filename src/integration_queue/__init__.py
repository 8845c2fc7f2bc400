from importlib.metadata import version

from .catalog import CatalogDocument, IntegrationCatalog, default_catalog, load_catalog
from .errors import (
    CatalogError,
    CycleDetected,
    IllegalStatusTransition,
    RecordNotFound,
    UnknownCategory,
    UnknownIntegration,
    VersionLocked,
)
from .graph import CategoryGraph
from .installer import HookInstaller, Installer, IntegrationHooks, load_hooks
from .intake import configure_integration, enqueue_integrations, requeue_failed
from .models import (
    INSTALLATION_STATUS_TRANSITIONS,
    Category,
    DependencyReport,
    EnqueueReport,
    InstallationRecord,
    InstallationStatus,
    InstallContext,
    InstallerResult,
    Integration,
    IntegrationDefinition,
    IntegrationVariable,
    QueueCompleted,
    QueueFailed,
    QueueResult,
    VariableSource,
)
from .notifications import CompositeNotifier, JsonlEventNotifier, LoggingNotifier, StatusNotifier
from .orchestrator import InstallationOrchestrator
from .resolver import Classification, DependencyResolver
from .settings import RuntimeSettings
from .state_store import FileInstallationStore, InstallationStateStore


def get_version() -> str:
    try:
        return version("integration-queue")
    except Exception:
        return "0.0.0"


__all__ = [
    "CatalogDocument",
    "CatalogError",
    "Category",
    "CategoryGraph",
    "Classification",
    "CompositeNotifier",
    "CycleDetected",
    "DependencyReport",
    "DependencyResolver",
    "EnqueueReport",
    "FileInstallationStore",
    "HookInstaller",
    "IllegalStatusTransition",
    "InstallContext",
    "InstallationOrchestrator",
    "InstallationRecord",
    "InstallationStateStore",
    "InstallationStatus",
    "Installer",
    "InstallerResult",
    "Integration",
    "IntegrationCatalog",
    "IntegrationDefinition",
    "IntegrationHooks",
    "IntegrationVariable",
    "JsonlEventNotifier",
    "LoggingNotifier",
    "QueueCompleted",
    "QueueFailed",
    "QueueResult",
    "RecordNotFound",
    "RuntimeSettings",
    "StatusNotifier",
    "UnknownCategory",
    "UnknownIntegration",
    "VariableSource",
    "VersionLocked",
    "INSTALLATION_STATUS_TRANSITIONS",
    "configure_integration",
    "default_catalog",
    "enqueue_integrations",
    "load_catalog",
    "load_hooks",
    "requeue_failed",
]

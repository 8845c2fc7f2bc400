from __future__ import annotations

import logging
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph

from .catalog import IntegrationCatalog
from .errors import CatalogError
from .installer import Installer
from .models import (
    InstallContext,
    InstallationRecord,
    InstallationStatus,
    InstallerResult,
    QueueCompleted,
    QueueFailed,
    QueueResult,
)
from .notifications import StatusNotifier
from .resolver import DependencyResolver
from .settings import RuntimeSettings
from .state_store import InstallationStateStore

logger = logging.getLogger(__name__)


class QueueGraphState(TypedDict, total=False):
    version_id: str
    round_number: int
    install_rounds: int
    installed: list[str]
    eligible: list[dict[str, Any]]
    outcome: str | None
    failed_key: str | None
    message: str | None


class InstallationOrchestrator:
    """Installs a version's queued integrations in dependency order, round by round.

    Each round re-evaluates blocking, installs every eligible record
    sequentially and stops the whole run at the first installer failure.
    Installed records are never rolled back. The orchestrator keeps no
    per-run state on the instance, so one orchestrator may serve several
    versions concurrently; callers must not run the same version twice at
    once.
    """

    def __init__(
        self,
        catalog: IntegrationCatalog,
        store: InstallationStateStore,
        installer: Installer,
        *,
        notifier: StatusNotifier | None = None,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.catalog = catalog
        self.store = store
        self.installer = installer
        self.notifier = notifier
        self.resolver = DependencyResolver(catalog)
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(QueueGraphState)
        graph.add_node("validate", self._validate_node)
        graph.add_node("resolve_round", self._resolve_round_node)
        graph.add_node("install_round", self._install_round_node)

        graph.add_edge(START, "validate")
        graph.add_edge("validate", "resolve_round")
        graph.add_conditional_edges(
            "resolve_round",
            self._outcome_route,
            {
                "continue": "install_round",
                "end": END,
            },
        )
        graph.add_conditional_edges(
            "install_round",
            self._outcome_route,
            {
                "continue": "resolve_round",
                "end": END,
            },
        )
        return graph

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _validate_node(self, state: QueueGraphState) -> dict[str, Any]:
        version_id = state["version_id"]
        for record in self.store.load_non_terminal_records(version_id):
            definition = self.catalog.definition(record.key)
            if definition.category != record.category:
                raise CatalogError(
                    f"Integration {record.key} is recorded under category {record.category} "
                    f"but the catalog places it in {definition.category}"
                )
            if record.status == InstallationStatus.INSTALLING:
                logger.warning(
                    "Integration %s in version %s was interrupted while installing; leaving it untouched",
                    record.key,
                    version_id,
                )
        return {"round_number": state["round_number"]}

    async def _resolve_round_node(self, state: QueueGraphState) -> dict[str, Any]:
        version_id = state["version_id"]
        round_number = state["round_number"] + 1
        records = self.store.load_non_terminal_records(version_id)
        if not records:
            logger.info("Installation round %d: no queued integrations for version %s", round_number, version_id)
            return {"round_number": round_number, "eligible": [], "outcome": "completed"}

        completed = self.store.load_completed_categories(version_id)
        pending = [
            record
            for record in records
            if record.status in (InstallationStatus.QUEUED, InstallationStatus.BLOCKED)
        ]
        classification = self.resolver.classify(pending, completed)
        by_id = {record.integration_id: record for record in pending}

        for integration_id in classification.become_blocked:
            record = by_id[integration_id]
            self._transition(record, InstallationStatus.BLOCKED)
            missing = ", ".join(sorted(classification.missing[integration_id]))
            logger.info("Blocked %s - missing: %s", record.key, missing)
        for integration_id in classification.become_eligible:
            record = by_id[integration_id]
            self._transition(record, InstallationStatus.QUEUED)
            logger.info("Unblocked %s - dependencies now satisfied", record.key)

        queued = [record for record in pending if record.status == InstallationStatus.QUEUED]
        if not queued:
            logger.info(
                "Installation round %d: nothing eligible in version %s, %d integration(s) waiting",
                round_number,
                version_id,
                len(records),
            )
            return {"round_number": round_number, "eligible": [], "outcome": "completed"}

        ordered = self._order(queued)
        logger.info(
            "Installation round %d: found %d eligible integration(s): %s",
            round_number,
            len(ordered),
            ", ".join(record.key for record in ordered),
        )
        return {
            "round_number": round_number,
            "eligible": [record.model_dump(mode="json") for record in ordered],
            "outcome": None,
        }

    async def _install_round_node(self, state: QueueGraphState) -> dict[str, Any]:
        version_id = state["version_id"]
        round_number = state["round_number"]
        installed = list(state["installed"])
        installed_in_round = 0

        for payload in state["eligible"]:
            record = InstallationRecord.model_validate(payload)
            self._transition(record, InstallationStatus.INSTALLING)
            logger.info("Started installing %s", record.key)

            context = InstallContext(
                project_id=record.integration.project_id,
                version_id=version_id,
                round_number=round_number,
            )
            result = await self._invoke_installer(record, context)

            if not result.success:
                message = result.error or "Unknown error"
                self._transition(record, InstallationStatus.FAILED, metadata={**result.metadata, "error": message})
                logger.error("Failed to install %s: %s", record.key, message)
                return {
                    "installed": installed,
                    "install_rounds": state["install_rounds"] + 1,
                    "outcome": "error",
                    "failed_key": record.key,
                    "message": message,
                }

            self._transition(record, InstallationStatus.INSTALLED, metadata=result.metadata)
            logger.info("Successfully installed %s", record.key)
            installed.append(record.key)
            installed_in_round += 1

        logger.info("Installation round %d: installed %d integration(s)", round_number, installed_in_round)
        return {
            "installed": installed,
            "install_rounds": state["install_rounds"] + 1,
            "outcome": None if installed_in_round else "completed",
        }

    @staticmethod
    def _outcome_route(state: QueueGraphState) -> str:
        if state.get("outcome"):
            return "end"
        return "continue"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _order(self, records: list[InstallationRecord]) -> list[InstallationRecord]:
        order = self.catalog.graph.installation_order({record.category for record in records})
        rank = {category: index for index, category in enumerate(order)}
        return sorted(records, key=lambda record: (rank[record.category], record.created_at, record.integration_id))

    async def _invoke_installer(self, record: InstallationRecord, context: InstallContext) -> InstallerResult:
        try:
            return await self.installer.install(record.integration, context)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Installer raised while installing %s", record.key)
            return InstallerResult.failed(str(exc) or type(exc).__name__)

    def _transition(
        self,
        record: InstallationRecord,
        status: InstallationStatus,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.store.update_record_status(record.integration_id, record.version_id, status, metadata)
        record.status = status
        if self.notifier is None:
            return
        try:
            self.notifier.on_status_changed(record.integration_id, record.version_id, status)
        except Exception:  # noqa: BLE001
            logger.exception("Status notification failed for %s (%s)", record.key, status.value)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run_installation_queue(self, version_id: str) -> QueueResult:
        """Drive the version's queue until it drains, stalls or fails.

        Returns ``QueueFailed`` for the first installer failure. Catalog
        errors are raised before anything is installed.
        """
        logger.info("Starting installation of queued integrations for version %s", version_id)
        initial_state: QueueGraphState = {
            "version_id": version_id,
            "round_number": 0,
            "install_rounds": 0,
            "installed": [],
            "eligible": [],
            "outcome": None,
            "failed_key": None,
            "message": None,
        }
        result = await self.graph.ainvoke(
            initial_state,
            config={"recursion_limit": self.settings.recursion_limit},
        )

        installed = list(result.get("installed", []))
        if result.get("outcome") == "error":
            return QueueFailed(
                failed_key=str(result["failed_key"]),
                message=str(result["message"]),
                installed=installed,
            )

        blocked = [
            record.key
            for record in self.store.load_non_terminal_records(version_id)
            if record.status == InstallationStatus.BLOCKED
        ]
        if blocked:
            logger.warning(
                "Installation completed but %d integration(s) remain blocked: %s",
                len(blocked),
                ", ".join(blocked),
            )
        rounds = int(result.get("install_rounds", 0))
        logger.info("Installed %d integration(s) across %d round(s)", len(installed), rounds)
        return QueueCompleted(installed=installed, blocked=blocked, rounds=rounds)

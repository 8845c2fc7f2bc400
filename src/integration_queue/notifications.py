from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .canonical import to_canonical_json
from .models import InstallationStatus

logger = logging.getLogger(__name__)


class StatusNotifier(Protocol):
    def on_status_changed(self, integration_id: str, version_id: str, status: InstallationStatus) -> None:
        ...


class LoggingNotifier:
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def on_status_changed(self, integration_id: str, version_id: str, status: InstallationStatus) -> None:
        logger.log(self.level, "Integration %s in version %s is now %s", integration_id, version_id, status.value)


class JsonlEventNotifier:
    """Appends one canonical JSON line per status change to *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def on_status_changed(self, integration_id: str, version_id: str, status: InstallationStatus) -> None:
        event = {
            "event": "status_changed",
            "integration_id": integration_id,
            "version_id": version_id,
            "status": status,
            "at": datetime.now(UTC),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(to_canonical_json(event) + "\n")


class CompositeNotifier:
    def __init__(self, *notifiers: StatusNotifier) -> None:
        self.notifiers = notifiers

    def on_status_changed(self, integration_id: str, version_id: str, status: InstallationStatus) -> None:
        for notifier in self.notifiers:
            notifier.on_status_changed(integration_id, version_id, status)

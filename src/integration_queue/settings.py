from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    state_store_root: str = "state_store"
    catalog_path: str = ""
    recursion_limit: int = 1_000
    events_log: str = ""
    log_level: str = "INFO"
    hooks: str = ""

    @classmethod
    def from_env(cls, *, dotenv_path: Path | None = None) -> "RuntimeSettings":
        """Build settings from ``INTEGRATIONS_*`` variables.

        A ``.env`` file is loaded first; variables already present in the
        environment win over it.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)
        return cls(
            state_store_root=os.getenv("INTEGRATIONS_STATE_STORE_ROOT", "state_store"),
            catalog_path=os.getenv("INTEGRATIONS_CATALOG_PATH", ""),
            recursion_limit=_get_env_int("INTEGRATIONS_RECURSION_LIMIT", default=1_000, minimum=10),
            events_log=os.getenv("INTEGRATIONS_EVENTS_LOG", ""),
            log_level=os.getenv("INTEGRATIONS_LOG_LEVEL", "INFO"),
            hooks=os.getenv("INTEGRATIONS_HOOKS", ""),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        if not self.state_store_root.strip():
            raise ValueError("INTEGRATIONS_STATE_STORE_ROOT must be non-empty")
        if self.recursion_limit < 10:
            raise ValueError(f"INTEGRATIONS_RECURSION_LIMIT must be >= 10, got: {self.recursion_limit}")
        if self.recursion_limit > 100_000:
            raise ValueError(f"INTEGRATIONS_RECURSION_LIMIT must be <= 100000, got: {self.recursion_limit}")

        log_level = self.log_level.strip().upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(f"INTEGRATIONS_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}")

        return RuntimeSettings(
            state_store_root=self.state_store_root.strip(),
            catalog_path=self.catalog_path.strip(),
            recursion_limit=self.recursion_limit,
            events_log=self.events_log.strip(),
            log_level=log_level,
            hooks=self.hooks.strip(),
        )

    def state_store_path(self, base: Path) -> Path:
        path = Path(self.state_store_root)
        return path if path.is_absolute() else base / path

    def catalog_file(self, base: Path) -> Path | None:
        if not self.catalog_path:
            return None
        path = Path(self.catalog_path)
        return path if path.is_absolute() else base / path

    def events_log_file(self, base: Path) -> Path | None:
        if not self.events_log:
            return None
        path = Path(self.events_log)
        return path if path.is_absolute() else base / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


class InstallationStatus(str, Enum):
    AWAITING_CONFIG = "awaiting_config"
    QUEUED = "queued"
    BLOCKED = "blocked"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


# Statuses the orchestrator owns. AWAITING_CONFIG records wait on intake, not on the queue.
NON_TERMINAL_STATUSES = frozenset(
    {InstallationStatus.QUEUED, InstallationStatus.BLOCKED, InstallationStatus.INSTALLING}
)

INSTALLATION_STATUS_TRANSITIONS: dict[InstallationStatus, frozenset[InstallationStatus]] = {
    InstallationStatus.AWAITING_CONFIG: frozenset({InstallationStatus.QUEUED}),
    InstallationStatus.QUEUED: frozenset({InstallationStatus.BLOCKED, InstallationStatus.INSTALLING}),
    InstallationStatus.BLOCKED: frozenset({InstallationStatus.QUEUED}),
    InstallationStatus.INSTALLING: frozenset({InstallationStatus.INSTALLED, InstallationStatus.FAILED}),
    InstallationStatus.INSTALLED: frozenset(),
    InstallationStatus.FAILED: frozenset({InstallationStatus.QUEUED}),
}


class VariableSource(str, Enum):
    USER = "user"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Category(BaseModel):
    """Integration category with its dependency categories and tie-break priority."""

    model_config = ConfigDict(frozen=True)

    key: str
    dependencies: frozenset[str] = frozenset()
    priority: int = 0

    @field_validator("key")
    @classmethod
    def _key_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("category key must be non-empty")
        return value


class IntegrationVariable(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: VariableSource = VariableSource.USER
    is_required: bool = True


class IntegrationDefinition(BaseModel):
    """Immutable catalog entry for one integration key."""

    model_config = ConfigDict(frozen=True)

    key: str
    category: str
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    allow_multiple: bool = False
    variables: tuple[IntegrationVariable, ...] = ()

    @field_validator("key", "category")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("integration key and category must be non-empty")
        return value

    @property
    def required_variables(self) -> frozenset[str]:
        """Names the user must supply before the integration can be queued.

        System-sourced variables are produced during installation and never
        hold a record back.
        """
        return frozenset(
            variable.name
            for variable in self.variables
            if variable.is_required and variable.source == VariableSource.USER
        )


# ---------------------------------------------------------------------------
# Per-key integration options
# ---------------------------------------------------------------------------


class OrpcOptions(BaseModel):
    key: Literal["orpc"] = "orpc"
    openapi: bool = True


class TanstackStartOptions(BaseModel):
    key: Literal["tanstack-start"] = "tanstack-start"
    ssr: bool = True


class PostgresqlOptions(BaseModel):
    key: Literal["postgresql"] = "postgresql"
    schema_name: str = "public"


class BetterAuthOptions(BaseModel):
    key: Literal["better-auth"] = "better-auth"
    social_providers: list[Literal["github", "google", "microsoft"]] = Field(default_factory=list)
    plugins: list[Literal["admin", "oAuthProxy", "openAPI", "organization", "stripe"]] = Field(default_factory=list)
    email_and_password: bool = True
    email_verification: bool = False


IntegrationOptions = Annotated[
    Union[OrpcOptions, TanstackStartOptions, PostgresqlOptions, BetterAuthOptions],
    Field(discriminator="key"),
]


# ---------------------------------------------------------------------------
# Project state
# ---------------------------------------------------------------------------


class Integration(BaseModel):
    """An integration instance attached to a project."""

    id: str
    key: str
    category: str
    project_id: str
    options: IntegrationOptions | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _options_match_key(self) -> "Integration":
        if self.options is not None and self.options.key != self.key:
            raise ValueError(f"options for {self.options.key} cannot configure integration {self.key}")
        return self


class InstallationRecord(BaseModel):
    """Installation state of one integration for one version."""

    integration: Integration
    version_id: str
    status: InstallationStatus
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    installed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def integration_id(self) -> str:
        return self.integration.id

    @property
    def key(self) -> str:
        return self.integration.key

    @property
    def category(self) -> str:
        return self.integration.category


class VersionState(BaseModel):
    version_id: str
    project_id: str
    parent_version_id: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)
    records: dict[str, InstallationRecord] = Field(default_factory=dict)


class ProjectIntegrations(BaseModel):
    project_id: str
    updated_at: datetime = Field(default_factory=utc_now)
    integrations: dict[str, Integration] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Installer exchange
# ---------------------------------------------------------------------------


class InstallContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    version_id: str
    round_number: int


class InstallerResult(BaseModel):
    success: bool
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @model_validator(mode="after")
    def _failure_has_error(self) -> "InstallerResult":
        if not self.success and not (self.error or "").strip():
            raise ValueError("failed installer result requires an error message")
        return self

    @classmethod
    def ok(cls, metadata: dict[str, Any] | None = None) -> "InstallerResult":
        return cls(success=True, metadata=metadata or {})

    @classmethod
    def failed(cls, error: str, metadata: dict[str, Any] | None = None) -> "InstallerResult":
        return cls(success=False, error=error, metadata=metadata or {})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class QueueCompleted(BaseModel):
    status: Literal["completed"] = "completed"
    installed: list[str] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list)
    rounds: int = 0


class QueueFailed(BaseModel):
    status: Literal["error"] = "error"
    failed_key: str
    message: str
    installed: list[str] = Field(default_factory=list)


QueueResult = Annotated[Union[QueueCompleted, QueueFailed], Field(discriminator="status")]


class DependencyReport(BaseModel):
    is_valid: bool
    missing_dependencies: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class EnqueueReport(BaseModel):
    version_id: str
    created: list[str] = Field(default_factory=list)
    reused: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    records: list[InstallationRecord] = Field(default_factory=list)

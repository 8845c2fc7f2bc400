from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from pydantic import BaseModel, Field, ValidationError

from .canonical import to_canonical_json
from .errors import UnknownIntegration
from .graph import CategoryGraph
from .models import Category, IntegrationDefinition, IntegrationVariable, VariableSource
from .utils import read_store_document

logger = logging.getLogger(__name__)


class CatalogDocument(BaseModel):
    """Serialized catalog: the shape read by ``load_catalog``."""

    categories: list[Category] = Field(default_factory=list)
    integrations: list[IntegrationDefinition] = Field(default_factory=list)


class IntegrationCatalog:
    """Immutable lookup from integration key to definition and category.

    Built explicitly and passed to the resolver and orchestrator; there is no
    process-wide registry.
    """

    def __init__(self, categories: Iterable[Category], definitions: Iterable[IntegrationDefinition]) -> None:
        self.graph = CategoryGraph(categories)
        by_key: dict[str, IntegrationDefinition] = {}
        for definition in definitions:
            if definition.key in by_key:
                raise ValueError(f"Duplicate integration key: {definition.key}")
            self.graph.category(definition.category)
            by_key[definition.key] = definition
        self._definitions: Mapping[str, IntegrationDefinition] = MappingProxyType(by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def keys(self) -> list[str]:
        return sorted(self._definitions)

    def definition(self, key: str) -> IntegrationDefinition:
        try:
            return self._definitions[key]
        except KeyError:
            raise UnknownIntegration(key) from None

    def category_of(self, key: str) -> str:
        return self.definition(key).category

    def definitions_in(self, category: str) -> list[IntegrationDefinition]:
        self.graph.category(category)
        return [definition for key, definition in sorted(self._definitions.items()) if definition.category == category]

    def to_document(self) -> CatalogDocument:
        return CatalogDocument(
            categories=[self.graph.category(key) for key in sorted(self.graph.keys)],
            integrations=[self._definitions[key] for key in sorted(self._definitions)],
        )

    @classmethod
    def from_document(cls, document: CatalogDocument) -> "IntegrationCatalog":
        return cls(document.categories, document.integrations)

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(to_canonical_json(self.to_document()).encode("utf-8")).hexdigest()


def load_catalog(path: Path) -> IntegrationCatalog:
    """Read a catalog from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file fails validation.
        CatalogError: If the categories or definitions are inconsistent.
    """
    text = read_store_document(path, "integration catalog")
    try:
        document = CatalogDocument.model_validate_json(text)
    except ValidationError as exc:
        raise ValueError(f"integration catalog at {path} failed validation: {exc}") from exc
    catalog = IntegrationCatalog.from_document(document)
    logger.info("Loaded integration catalog %s (%d integrations, fingerprint %s)", path, len(catalog), catalog.fingerprint[:12])
    return catalog


def default_catalog() -> IntegrationCatalog:
    """Built-in catalog shipped with the platform."""
    categories = [
        Category(key="backend", priority=0),
        Category(key="frontend", priority=10),
        Category(key="database", dependencies=frozenset({"backend"}), priority=100),
        Category(key="authentication", dependencies=frozenset({"backend", "database"}), priority=0),
    ]
    definitions = [
        IntegrationDefinition(
            key="orpc",
            category="backend",
            name="oRPC",
            description="Type-safe server API layer.",
        ),
        IntegrationDefinition(
            key="tanstack-start",
            category="frontend",
            name="TanStack Start",
            description="Client-side application framework.",
        ),
        IntegrationDefinition(
            key="postgresql",
            category="database",
            name="PostgreSQL",
            description="Relational database for data persistence.",
            allow_multiple=True,
            variables=(IntegrationVariable(name="DATABASE_URL", source=VariableSource.USER),),
        ),
        IntegrationDefinition(
            key="better-auth",
            category="authentication",
            name="Better-Auth",
            description="Self-hosted authentication with sessions and social logins.",
            variables=(IntegrationVariable(name="BETTER_AUTH_SECRET", source=VariableSource.SYSTEM),),
        ),
    ]
    return IntegrationCatalog(categories, definitions)

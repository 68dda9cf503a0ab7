"""Identifier whitelist for every table and column touched dynamically.

Inverse operations and tracked mutations only ever address tables and
columns through the ``EntitySpec`` objects held here. Names read from stored
snapshots are checked against the whitelist before they reach SQL.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column, Table

from services.state.change_log.errors import (
    InvalidLogShapeError,
    UnknownEntityError,
    UnknownFieldError,
)


@dataclass(frozen=True)
class EntitySpec:
    """Whitelisted table, identity column and restorable fields for one type."""

    entity_type: str
    table: Table
    identity_column: str
    fields: frozenset[str]

    def __post_init__(self) -> None:
        if self.entity_type.strip() == "":
            raise ValueError("entity_type is required")
        columns = set(self.table.c.keys())
        if self.identity_column not in columns:
            raise ValueError(
                f"{self.entity_type}: identity column {self.identity_column} "
                f"is not a column of {self.table.name}"
            )
        if self.identity_column in self.fields:
            raise ValueError(
                f"{self.entity_type}: identity column cannot be a restorable field"
            )
        missing = self.fields - columns
        if missing:
            raise ValueError(
                f"{self.entity_type}: fields not in {self.table.name}: "
                f"{', '.join(sorted(missing))}"
            )

    @classmethod
    def from_table(
        cls,
        entity_type: str,
        table: Table,
        *,
        identity_column: str = "id",
        exclude: Iterable[str] = (),
    ) -> "EntitySpec":
        """Whitelist every column of ``table`` except identity and ``exclude``."""
        excluded = {identity_column, *exclude}
        return cls(
            entity_type=entity_type,
            table=table,
            identity_column=identity_column,
            fields=frozenset(name for name in table.c.keys() if name not in excluded),
        )

    @property
    def identity(self) -> Column[Any]:
        return self.table.c[self.identity_column]

    def column(self, name: str) -> Column[Any]:
        """Return one whitelisted column by name."""
        if name not in self.fields:
            raise UnknownFieldError(self.entity_type, [name])
        return self.table.c[name]


class SchemaGuard:
    """Fixed mapping of entity type to its whitelisted ``EntitySpec``."""

    def __init__(self, specs: Iterable[EntitySpec]) -> None:
        registry: dict[str, EntitySpec] = {}
        for spec in specs:
            if spec.entity_type in registry:
                raise ValueError(f"duplicate entity type: {spec.entity_type}")
            registry[spec.entity_type] = spec
        self._specs = registry

    @property
    def entity_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._specs))

    def entity(self, entity_type: str) -> EntitySpec:
        """Return the registered ``EntitySpec`` or raise ``UnknownEntityError``."""
        spec = self._specs.get(entity_type)
        if spec is None:
            raise UnknownEntityError(entity_type)
        return spec

    def require_fields(self, entity_type: str, names: Iterable[str]) -> EntitySpec:
        """Validate every name against the entity's whitelisted fields."""
        spec = self.entity(entity_type)
        unknown = {name for name in names if name not in spec.fields}
        if unknown:
            raise UnknownFieldError(entity_type, unknown)
        return spec

    def coerce_entity_id(self, entity_type: str, entity_id: object) -> Any:
        """Convert a stored or caller-supplied id to the identity column's type."""
        spec = self.entity(entity_type)
        if entity_id is None or str(entity_id).strip() == "":
            raise InvalidLogShapeError(
                "entity_id is required", metadata={"entity_type": entity_type}
            )
        try:
            python_type = spec.identity.type.python_type
        except NotImplementedError:
            return entity_id
        if isinstance(entity_id, python_type):
            return entity_id
        try:
            return python_type(str(entity_id).strip())
        except (TypeError, ValueError):
            raise InvalidLogShapeError(
                f"entity_id is not a valid {python_type.__name__}",
                metadata={"entity_type": entity_type, "entity_id": entity_id},
            ) from None

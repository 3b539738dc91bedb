"""Catalog of corrupted entity tables, dependent tables and uniqueness scopes.

The catalog is the only place that knows the store's shape. Everything
downstream (detector, mapper, classifier, rewriter, purger) is driven by it:

  - EntitySpec: a table keyed by a surrogate id whose natural key must be
    unique. Natural-key columns that hold ids of another entity make that
    entity an upstream dependency.
  - TableSpec: any table read by the engine, with its row key, the columns
    that reference corrupted entities, and its uniqueness scopes.

Entities form a DAG ("my natural key embeds ids of"). Catalog.entity_order is
a deterministic topological order of that DAG (heap-ordered Kahn's algorithm,
ties broken by name).
"""

from __future__ import annotations

from dataclasses import dataclass
from heapq import heapify, heappop, heappush

import polars as pl

# alf_prop_value.persisted_type for values whose long_value is a string id
PERSISTED_TYPE_STRING = 3


@dataclass(frozen=True)
class Reference:
    """A column storing ids of ``target`` entity rows.

    When ``when_column`` is set, the column only holds such ids on rows where
    ``when_column`` is one of ``when_values`` (e.g. a long_value that is a
    string id only for string-persisted values).
    """

    column: str
    target: str
    when_column: str | None = None
    when_values: tuple = ()

    def applies(self) -> pl.Expr:
        if self.when_column is None:
            return pl.lit(True)
        return pl.col(self.when_column).is_in(list(self.when_values))


@dataclass(frozen=True)
class UniquenessScope:
    """Columns a table's unique index forbids from repeating."""

    name: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class Normalization:
    """Derived column that must equal a normalized form of itself."""

    column: str
    transform: str = "lower"

    def expr(self) -> pl.Expr:
        if self.transform == "lower":
            return pl.col(self.column).str.to_lowercase()
        raise ValueError(f"Unsupported normalization: {self.transform}")


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: dict[str, pl.DataType]
    key_columns: tuple[str, ...] = ("id",)
    references: tuple[Reference, ...] = ()
    scopes: tuple[UniquenessScope, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.columns)
        used = set(self.key_columns)
        for ref in self.references:
            used.add(ref.column)
            if ref.when_column:
                used.add(ref.when_column)
        for scope in self.scopes:
            used.update(scope.columns)
        missing = used - known
        if missing:
            raise ValueError(f"Table {self.name} uses undeclared columns: {sorted(missing)}")

    @property
    def reference_columns(self) -> list[str]:
        return [ref.column for ref in self.references]


@dataclass(frozen=True)
class EntitySpec:
    name: str
    table: TableSpec
    natural_key: tuple[str, ...]
    id_column: str = "id"
    normalizations: tuple[Normalization, ...] = ()

    def __post_init__(self) -> None:
        if self.table.key_columns != (self.id_column,):
            raise ValueError(
                f"Entity {self.name}: table {self.table.name} must be keyed by "
                f"its surrogate id column {self.id_column!r}"
            )
        missing = set(self.natural_key) - set(self.table.columns)
        if missing:
            raise ValueError(f"Entity {self.name}: unknown natural key columns {sorted(missing)}")

    @property
    def key_references(self) -> tuple[Reference, ...]:
        """References stored in natural-key columns (resolved before grouping)."""
        return tuple(r for r in self.table.references if r.column in self.natural_key)

    @property
    def upstream(self) -> tuple[str, ...]:
        return tuple(sorted({r.target for r in self.key_references}))


class Catalog:
    """Validated set of entities plus dependent-only tables."""

    def __init__(
        self,
        entities: list[EntitySpec],
        dependents: list[TableSpec] | None = None,
    ) -> None:
        self._entities = {e.name: e for e in entities}
        if len(self._entities) != len(entities):
            raise ValueError("Duplicate entity names in catalog")
        self._dependents = list(dependents or [])

        table_names = [e.table.name for e in entities] + [t.name for t in self._dependents]
        if len(set(table_names)) != len(table_names):
            raise ValueError("A table may appear only once in a catalog")

        for table in self._all_tables():
            for ref in table.references:
                if ref.target not in self._entities:
                    raise ValueError(
                        f"Table {table.name}.{ref.column} references unknown entity {ref.target!r}"
                    )

        self._order = self._topological_order()
        self._rank = {name: i for i, name in enumerate(self._order)}

    def _all_tables(self) -> list[TableSpec]:
        return [e.table for e in self._entities.values()] + self._dependents

    def _topological_order(self) -> tuple[str, ...]:
        children: dict[str, set[str]] = {name: set() for name in self._entities}
        indegree: dict[str, int] = {}
        for name, entity in self._entities.items():
            indegree[name] = len(entity.upstream)
            for parent in entity.upstream:
                children[parent].add(name)

        ready = [name for name, degree in indegree.items() if degree == 0]
        heapify(ready)
        order: list[str] = []
        while ready:
            name = heappop(ready)
            order.append(name)
            for child in sorted(children[name]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, child)

        if len(order) != len(self._entities):
            stuck = sorted(set(self._entities) - set(order))
            raise ValueError(f"Entity dependency cycle among: {stuck}")
        return tuple(order)

    @property
    def entity_order(self) -> tuple[str, ...]:
        return self._order

    def entity(self, name: str) -> EntitySpec:
        return self._entities[name]

    def entities(self) -> list[EntitySpec]:
        """Entities in dependency order."""
        return [self._entities[name] for name in self._order]

    def owner(self, table_name: str) -> EntitySpec | None:
        for entity in self._entities.values():
            if entity.table.name == table_name:
                return entity
        return None

    def tables(self) -> list[TableSpec]:
        """Every table in dependency order: entity tables, then dependents.

        Dependent tables sort after the last entity they reference.
        """
        dependents = sorted(
            self._dependents,
            key=lambda t: (max((self._rank[r.target] for r in t.references), default=-1), t.name),
        )
        return [e.table for e in self.entities()] + dependents

    def referencing_tables(self) -> list[TableSpec]:
        return [t for t in self.tables() if t.references]


def build_default_catalog() -> Catalog:
    """Property and audit tables damaged by the CRC normalization change."""
    prop_class = EntitySpec(
        name="class",
        table=TableSpec(
            name="alf_prop_class",
            columns={
                "id": pl.Int64,
                "java_class_name": pl.Utf8,
                "java_class_name_short": pl.Utf8,
                "java_class_name_crc": pl.Int64,
            },
            scopes=(
                UniquenessScope("idx_alf_propc_crc", ("java_class_name_crc", "java_class_name_short")),
            ),
        ),
        natural_key=("java_class_name",),
    )

    string_value = EntitySpec(
        name="string",
        table=TableSpec(
            name="alf_prop_string_value",
            columns={
                "id": pl.Int64,
                "string_value": pl.Utf8,
                "string_end_lower": pl.Utf8,
                "string_crc": pl.Int64,
            },
            scopes=(UniquenessScope("idx_alf_props_str", ("string_end_lower", "string_crc")),),
        ),
        natural_key=("string_value", "string_crc"),
        normalizations=(Normalization("string_end_lower", "lower"),),
    )

    prop_value = EntitySpec(
        name="value",
        table=TableSpec(
            name="alf_prop_value",
            columns={
                "id": pl.Int64,
                "actual_type_id": pl.Int64,
                "persisted_type": pl.Int64,
                "long_value": pl.Int64,
            },
            references=(
                Reference("actual_type_id", "class"),
                Reference(
                    "long_value", "string",
                    when_column="persisted_type",
                    when_values=(PERSISTED_TYPE_STRING,),
                ),
            ),
            scopes=(UniquenessScope("idx_alf_propv_act", ("actual_type_id", "long_value")),),
        ),
        natural_key=("actual_type_id", "long_value"),
    )

    unique_ctx_columns = ("value1_prop_id", "value2_prop_id", "value3_prop_id")
    unique_ctx = EntitySpec(
        name="unique_ctx",
        table=TableSpec(
            name="alf_prop_unique_ctx",
            columns={
                "id": pl.Int64,
                "value1_prop_id": pl.Int64,
                "value2_prop_id": pl.Int64,
                "value3_prop_id": pl.Int64,
                "prop1_id": pl.Int64,
            },
            references=tuple(Reference(c, "value") for c in unique_ctx_columns),
            scopes=(UniquenessScope("idx_alf_propuctx", unique_ctx_columns),),
        ),
        natural_key=unique_ctx_columns,
    )

    audit_app = EntitySpec(
        name="audit_app",
        table=TableSpec(
            name="alf_audit_app",
            columns={"id": pl.Int64, "app_name_id": pl.Int64},
            references=(Reference("app_name_id", "value"),),
            scopes=(UniquenessScope("idx_alf_aud_app_nm", ("app_name_id",)),),
        ),
        natural_key=("app_name_id",),
    )

    prop_link = TableSpec(
        name="alf_prop_link",
        columns={
            "root_prop_id": pl.Int64,
            "contained_in": pl.Int64,
            "prop_index": pl.Int64,
            "key_prop_id": pl.Int64,
            "value_prop_id": pl.Int64,
        },
        key_columns=("root_prop_id", "contained_in", "prop_index"),
        references=(
            Reference("key_prop_id", "value"),
            Reference("value_prop_id", "value"),
        ),
    )

    audit_entry = TableSpec(
        name="alf_audit_entry",
        columns={"id": pl.Int64, "audit_app_id": pl.Int64, "audit_user_id": pl.Int64},
        references=(
            Reference("audit_app_id", "audit_app"),
            Reference("audit_user_id", "value"),
        ),
    )

    return Catalog(
        entities=[prop_class, string_value, prop_value, unique_ctx, audit_app],
        dependents=[prop_link, audit_entry],
    )


DEFAULT_CATALOG = build_default_catalog()

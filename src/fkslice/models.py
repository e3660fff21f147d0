from dataclasses import dataclass, field
from typing import Any


def qualified_name(schema: str | None, table: str) -> str:
    """Join a schema and table into the ``schema.table`` key used by the graph."""
    if schema:
        return f"{schema}.{table}"
    return table


@dataclass(frozen=True)
class Dependency:
    """
    One row of flat FK metadata as reported by a data source.

    A dependency without ``source_columns`` only registers its source table,
    so tables that reference nothing still show up in the graph.
    """

    source_schema: str
    source_table: str
    source_columns: tuple[str, ...] | None = None
    referenced_schema: str | None = None
    referenced_table: str | None = None
    referenced_columns: tuple[str, ...] | None = None
    name: str | None = None

    @property
    def source(self) -> str:
        """Qualified name of the referencing table."""
        return qualified_name(self.source_schema, self.source_table)

    @property
    def referenced(self) -> str | None:
        """Qualified name of the referenced table, if any."""
        if self.referenced_table is None:
            return None
        return qualified_name(self.referenced_schema, self.referenced_table)


@dataclass(frozen=True)
class DependencyEdge:
    """A directed FK edge between two qualified tables."""

    source_table: str
    source_columns: tuple[str, ...]
    target_table: str
    target_columns: tuple[str, ...]
    name: str | None = None

    def as_edge(self) -> tuple[str, str]:
        """Return as directed edge (child -> parent)."""
        return (self.source_table, self.target_table)

    @property
    def is_self_referential(self) -> bool:
        """Check if this FK references the same table."""
        return self.source_table == self.target_table

    def column_mapping(self) -> list[tuple[str, str]]:
        """Pair each source column with the referenced column at the same position."""
        return list(zip(self.source_columns, self.target_columns))

    def referenced_values(self, data: dict[str, Any]) -> dict[str, Any] | None:
        """
        Map a source row onto the referenced table's key columns.

        Returns None when any source column is NULL (or absent), in which
        case the reference does not need resolving.
        """
        values: dict[str, Any] = {}
        for source_col, target_col in self.column_mapping():
            value = data.get(source_col)
            if value is None:
                return None
            values[target_col] = value
        return values

    def describe(self) -> str:
        """Human-readable representation."""
        return (
            f"{self.source_table}({', '.join(self.source_columns)}) -> "
            f"{self.target_table}({', '.join(self.target_columns)})"
        )


@dataclass
class DependencyGraph:
    """Tables keyed by qualified name, each with its outgoing FK edges."""

    nodes: dict[str, list[DependencyEdge]] = field(default_factory=dict)

    def add_table(self, table: str) -> None:
        """Register a table; registering twice is a no-op."""
        self.nodes.setdefault(table, [])

    def add_edge(self, edge: DependencyEdge) -> None:
        """Add an outgoing edge to its source table."""
        self.add_table(edge.source_table)
        self.nodes[edge.source_table].append(edge)

    def tables(self) -> list[str]:
        """Get all table names in registration order."""
        return list(self.nodes.keys())

    def has_table(self, table: str) -> bool:
        """Check if a table exists."""
        return table in self.nodes

    def edges_from(self, table: str) -> list[DependencyEdge]:
        """Get the FK edges leaving a table (tables it depends on)."""
        return self.nodes.get(table, [])

    def edges_to(self, table: str) -> list[DependencyEdge]:
        """Get the FK edges pointing at a table (tables that depend on it)."""
        return [
            edge for edges in self.nodes.values() for edge in edges if edge.target_table == table
        ]

    def edge_count(self) -> int:
        """Get the total number of edges."""
        return sum(len(edges) for edges in self.nodes.values())

    def self_referencing_tables(self) -> list[str]:
        """Get tables with at least one FK pointing back at themselves."""
        return [
            table
            for table, edges in self.nodes.items()
            if any(edge.is_self_referential for edge in edges)
        ]


@dataclass
class RowRecord:
    """A single row drawn from the data source."""

    table: str
    data: dict[str, Any]

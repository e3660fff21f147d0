import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Any

from fkslice.models import Dependency, RowRecord


class DataSource(ABC):
    """
    Abstract base class for the data sources the sampler reads from.

    A data source supplies everything the resolver needs:
    - Row streams for seed sampling
    - Point lookups for FK resolution
    - Content hashes for deduplication
    - Flat FK metadata for building the dependency graph

    Production sources also manage a connection and a snapshot so that
    every read in one run sees the same database state.
    """

    def connect(self, url: str) -> None:
        """
        Establish a connection to the source.

        Sources that need no connection (in-memory fixtures) keep the default.

        Raises:
            ConnectionError: If connection fails
        """

    def close(self) -> None:
        """Release the connection."""

    @abstractmethod
    def rows_of(self, table: str) -> AbstractContextManager[Iterator[RowRecord]]:
        """
        Open a single forward pass over every row of a table.

        Usage:
            with source.rows_of("public.users") as rows:
                for row in rows:
                    ...

        The returned context manager must release any cursor it holds when
        the block exits, including on error or cancellation. Ordering is
        source-defined and the stream is not guaranteed to be restartable.

        Raises:
            SourceError: If the rows cannot be read
        """
        pass

    @abstractmethod
    def lookup_row(self, table: str, column_values: dict[str, Any]) -> RowRecord | None:
        """
        Find the row matching every supplied column/value pair.

        Args:
            table: Qualified table name
            column_values: Columns and the values they must all equal

        Returns:
            The matching row, or None if no row matches

        Raises:
            SourceError: If the lookup fails
        """
        pass

    @abstractmethod
    def list_dependencies(self, excluded_schemas: set[str] | None = None) -> list[Dependency]:
        """
        List FK metadata for every table outside the excluded schemas.

        Tables without foreign keys are reported with ``source_columns=None``
        so they still become graph nodes.

        Raises:
            SchemaIntrospectionError: If the metadata cannot be read
        """
        pass

    def hash_of(self, row: RowRecord) -> str:
        """
        Stable content-derived identifier of a row, for equality only.

        The default hashes the canonical JSON of the row data. Values JSON
        cannot encode natively (dates, decimals, UUIDs) hash by ``str()``.
        """
        payload = json.dumps(row.data, sort_keys=True, default=str, separators=(",", ":"))
        return hashlib.sha256(f"{row.table}\x00{payload}".encode()).hexdigest()

    def excluded_schemas(self) -> set[str]:
        """Schemas this source skips unless told otherwise."""
        return set()

    def begin_snapshot(self) -> None:
        """Begin a snapshot transaction for consistent reads."""

    def end_snapshot(self) -> None:
        """End the snapshot transaction."""

    @contextmanager
    def snapshot_transaction(self):
        """
        Context manager for consistent snapshot reads.

        Usage:
            with source.snapshot_transaction():
                result = resolver.find_all_dependencies(graph)
        """
        self.begin_snapshot()
        try:
            yield
        finally:
            self.end_snapshot()

    def __enter__(self):
        """Support using the source as a context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close connection when exiting context."""
        self.close()
        return False

    def quote_identifier(self, name: str) -> str:
        """
        Quote an identifier for safe SQL.

        Qualified names are split on the first dot and each part is quoted.
        Embedded double quotes are doubled.
        """
        return ".".join(self.quote_column(part) for part in name.split(".", 1))

    def quote_column(self, name: str) -> str:
        """Quote a single identifier as-is; dots stay part of the name."""
        return '"' + name.replace('"', '""') + '"'

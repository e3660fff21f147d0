from collections.abc import Iterator
from contextlib import contextmanager
from itertools import count
from typing import Any

import psycopg2
import psycopg2.extras

from fkslice.adapters.base import DataSource
from fkslice.config import DatabaseType
from fkslice.constants import (
    DEFAULT_CURSOR_ITERSIZE,
    SUPABASE_EXCLUDED_SCHEMAS,
    SYSTEM_SCHEMAS,
)
from fkslice.exceptions import ConnectionError, SchemaIntrospectionError, SourceError
from fkslice.logging import get_logger, log_query
from fkslice.models import Dependency, RowRecord
from fkslice.utils.connection import parse_database_url

logger = get_logger(__name__)

_cursor_ids = count()


class PostgreSQLSource(DataSource):
    """PostgreSQL data source backed by psycopg2."""

    def __init__(self, itersize: int | None = None):
        self._conn: Any = None
        self._is_supabase = False
        self.itersize = itersize or DEFAULT_CURSOR_ITERSIZE

    def connect(self, url: str) -> None:
        """Establish PostgreSQL connection."""
        config = parse_database_url(url)

        if config.db_type != DatabaseType.POSTGRESQL:
            raise ConnectionError(url, f"Expected PostgreSQL URL, got {config.db_type.value}")

        logger.debug(
            "Connecting to PostgreSQL",
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
        )

        try:
            self._conn = psycopg2.connect(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                dbname=config.database,
                **{k: v for k, v in config.options.items()},
            )
            # Use autocommit for reads by default
            self._conn.autocommit = True
            self._is_supabase = config.is_supabase

            logger.info(
                "PostgreSQL connection established",
                database=config.database,
                supabase=self._is_supabase,
            )
        except psycopg2.Error as e:
            logger.error("PostgreSQL connection failed", error=str(e), exc_info=True)
            raise ConnectionError(url, str(e))

    def close(self) -> None:
        """Close PostgreSQL connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.debug("PostgreSQL connection closed")

    def excluded_schemas(self) -> set[str]:
        """Supabase platform schemas hold no application data worth sampling."""
        if self._is_supabase:
            return set(SUPABASE_EXCLUDED_SCHEMAS)
        return set()

    def list_dependencies(self, excluded_schemas: set[str] | None = None) -> list[Dependency]:
        """
        Read FK constraints and base tables from the system catalogs.

        Uses pg_constraint rather than information_schema so composite FKs
        keep their column pairing instead of producing a cross product.
        """
        excluded = sorted(SYSTEM_SCHEMAS | set(excluded_schemas or ()))
        logger.info("Listing dependencies", excluded_schemas=excluded)

        try:
            dependencies = self._fetch_table_nodes(excluded)
            dependencies.extend(self._fetch_foreign_keys(excluded))
        except psycopg2.Error as e:
            logger.error("Dependency listing failed", error=str(e), exc_info=True)
            raise SchemaIntrospectionError(str(e))

        logger.info(
            "Dependencies listed",
            dependency_count=len(dependencies),
        )
        return dependencies

    def _fetch_table_nodes(self, excluded: list[str]) -> list[Dependency]:
        """Register every base table, including those with no FKs."""
        query = """
            SELECT n.nspname, c.relname
            FROM pg_class c
            JOIN pg_namespace n ON c.relnamespace = n.oid
            WHERE c.relkind IN ('r', 'p')
              AND NOT c.relispartition
              AND n.nspname <> ALL(%s)
              AND n.nspname NOT LIKE 'pg_temp_%%'
            ORDER BY n.nspname, c.relname
        """
        with self._conn.cursor() as cur:
            log_query(logger, query, (excluded,))
            cur.execute(query, (excluded,))
            return [
                Dependency(source_schema=schema, source_table=table)
                for schema, table in cur.fetchall()
            ]

    def _fetch_foreign_keys(self, excluded: list[str]) -> list[Dependency]:
        """Fetch every FK constraint, one Dependency per constraint."""
        query = """
            SELECT
                c.oid,
                c.conname,
                source_ns.nspname AS source_schema,
                source_cls.relname AS source_table,
                a_source.attname AS source_column,
                target_ns.nspname AS target_schema,
                target_cls.relname AS target_table,
                a_target.attname AS target_column
            FROM pg_constraint c
            JOIN pg_class source_cls ON c.conrelid = source_cls.oid
            JOIN pg_namespace source_ns ON source_cls.relnamespace = source_ns.oid
            JOIN pg_class target_cls ON c.confrelid = target_cls.oid
            JOIN pg_namespace target_ns ON target_cls.relnamespace = target_ns.oid
            CROSS JOIN LATERAL unnest(c.conkey, c.confkey)
                WITH ORDINALITY AS u(source_attnum, target_attnum, ord)
            JOIN pg_attribute a_source
                ON a_source.attrelid = c.conrelid
                AND a_source.attnum = u.source_attnum
            JOIN pg_attribute a_target
                ON a_target.attrelid = c.confrelid
                AND a_target.attnum = u.target_attnum
            WHERE c.contype = 'f'
              AND source_ns.nspname <> ALL(%s)
              AND target_ns.nspname <> ALL(%s)
            ORDER BY source_ns.nspname, source_cls.relname, c.conname, u.ord
        """
        # Group by constraint for multi-column FKs
        fk_data: dict[int, dict[str, Any]] = {}
        with self._conn.cursor() as cur:
            log_query(logger, query, (excluded, excluded))
            cur.execute(query, (excluded, excluded))
            for row in cur.fetchall():
                (
                    oid,
                    name,
                    source_schema,
                    source_table,
                    source_col,
                    target_schema,
                    target_table,
                    target_col,
                ) = row
                if oid not in fk_data:
                    fk_data[oid] = {
                        "name": name,
                        "source_schema": source_schema,
                        "source_table": source_table,
                        "source_columns": [],
                        "referenced_schema": target_schema,
                        "referenced_table": target_table,
                        "referenced_columns": [],
                    }
                fk_data[oid]["source_columns"].append(source_col)
                fk_data[oid]["referenced_columns"].append(target_col)

        return [
            Dependency(
                source_schema=data["source_schema"],
                source_table=data["source_table"],
                source_columns=tuple(data["source_columns"]),
                referenced_schema=data["referenced_schema"],
                referenced_table=data["referenced_table"],
                referenced_columns=tuple(data["referenced_columns"]),
                name=data["name"],
            )
            for data in fk_data.values()
        ]

    @contextmanager
    def rows_of(self, table: str) -> Iterator[Iterator[RowRecord]]:
        """
        Stream a table through a named server-side cursor.

        The cursor is closed when the block exits, whether the stream was
        exhausted, abandoned early, or interrupted by an error.
        """
        query = f"SELECT * FROM {self.quote_identifier(table)}"
        cursor_name = f"fkslice_rows_{next(_cursor_ids)}"
        log_query(logger, query, ())

        try:
            # Outside a snapshot the connection is in autocommit mode, where a
            # named cursor only survives if declared WITH HOLD
            cur = self._conn.cursor(
                name=cursor_name,
                cursor_factory=psycopg2.extras.RealDictCursor,
                withhold=self._conn.autocommit,
            )
        except psycopg2.Error as e:
            raise SourceError(f"Failed to open cursor: {e}", table=table) from e

        def stream() -> Iterator[RowRecord]:
            try:
                cur.itersize = self.itersize
                cur.execute(query)
                for row in cur:
                    yield RowRecord(table=table, data=dict(row))
            except psycopg2.Error as e:
                raise SourceError(f"Failed to read rows: {e}", table=table) from e

        rows = stream()
        try:
            yield rows
        finally:
            rows.close()
            try:
                cur.close()
            except psycopg2.Error as e:
                logger.warning("Failed to close row cursor", table=table, error=str(e))

    def lookup_row(self, table: str, column_values: dict[str, Any]) -> RowRecord | None:
        """Fetch one row whose columns equal all of the given values."""
        if not column_values:
            return None

        conditions = " AND ".join(f"{self.quote_column(col)} = %s" for col in column_values)
        query = f"SELECT * FROM {self.quote_identifier(table)} WHERE {conditions} LIMIT 1"
        params = tuple(column_values.values())
        log_query(logger, query, params)

        try:
            with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise SourceError(f"Failed to look up row: {e}", table=table) from e

        if row is None:
            return None
        return RowRecord(table=table, data=dict(row))

    def begin_snapshot(self) -> None:
        """Begin a snapshot transaction with REPEATABLE READ isolation."""
        if self._conn:
            self._conn.autocommit = False
            with self._conn.cursor() as cur:
                cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")

    def end_snapshot(self) -> None:
        """End the snapshot transaction."""
        if self._conn:
            self._conn.rollback()  # Read-only, so rollback is fine
            self._conn.autocommit = True

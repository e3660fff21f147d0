import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from fkslice.adapters.base import DataSource
from fkslice.config import ResolutionOrder, SamplingConfig
from fkslice.core.sampling import select_seed_rows
from fkslice.exceptions import MaxIterationsReachedError, SamplingCancelledError
from fkslice.logging import ContextLogger, get_logger, log_sampling_complete
from fkslice.models import DependencyEdge, DependencyGraph, RowRecord

logger = get_logger(__name__)


class CancellationSignal(Protocol):
    """Anything with ``is_set()``, such as ``threading.Event``."""

    def is_set(self) -> bool: ...


class RowState(Enum):
    """Lifecycle of a (table, row hash) pair during one resolution."""

    UNVISITED = "unvisited"
    QUEUED = "queued"
    RESOLVED = "resolved"


class AppendOutcome(Enum):
    """What happened when a row was offered to a table's accumulator."""

    ADDED = "added"
    DUPLICATE = "duplicate"
    FULL = "full"


class NoticeKind(Enum):
    """Why a foreign key reference was left unresolved."""

    DANGLING_BY_BUDGET = "dangling_by_budget"
    DANGLING_BY_MISSING_DATA = "dangling_by_missing_data"


@dataclass
class ResolutionNotice:
    """A reference that could not be satisfied. Informational, never an error."""

    kind: NoticeKind
    table: str
    referenced_table: str
    column_values: dict[str, Any]
    fk_name: str | None = None

    def __str__(self) -> str:
        values = ", ".join(f"{col}={val!r}" for col, val in self.column_values.items())
        via = f" via FK '{self.fk_name}'" if self.fk_name else ""
        if self.kind == NoticeKind.DANGLING_BY_BUDGET:
            reason = "table is at max_rows"
        else:
            reason = "no matching row in source"
        return f"{self.table} -> {self.referenced_table}({values}){via}: {reason}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "table": self.table,
            "referenced_table": self.referenced_table,
            "column_values": self.column_values,
            "fk_name": self.fk_name,
        }


class TableAccumulator:
    """
    Ordered, deduplicated, budget-capped row list for one table.

    The duplicate check, the budget check and the append happen under one
    lock, so concurrent writers can neither overshoot ``max_rows`` nor insert
    the same hash twice.
    """

    def __init__(self, table: str, max_rows: int):
        self.table = table
        self.max_rows = max_rows
        self.rows: list[RowRecord] = []
        self._hashes: set[str] = set()
        self._lock = threading.Lock()

    def try_append(self, row: RowRecord, row_hash: str) -> AppendOutcome:
        with self._lock:
            if row_hash in self._hashes:
                return AppendOutcome.DUPLICATE
            if len(self.rows) >= self.max_rows:
                return AppendOutcome.FULL
            self.rows.append(row)
            self._hashes.add(row_hash)
            return AppendOutcome.ADDED

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_full(self) -> bool:
        return len(self.rows) >= self.max_rows


@dataclass
class DependencyResult:
    """Sampled rows per qualified table, in discovery order."""

    items: dict[str, list[RowRecord]] = field(default_factory=dict)
    notices: list[ResolutionNotice] = field(default_factory=list)
    resolved_rows: int = 0

    def sampled_records(self) -> dict[str, int]:
        """Row count per table."""
        return {table: len(rows) for table, rows in self.items.items()}

    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.items.values())

    def table_count(self) -> int:
        return len(self.items)

    def as_data(self) -> dict[str, list[dict[str, Any]]]:
        """Strip the row records down to their column data."""
        return {table: [row.data for row in rows] for table, rows in self.items.items()}


class _ResolutionState:
    """Mutable bookkeeping owned by a single find_all_dependencies call."""

    def __init__(self, max_rows: int):
        self.max_rows = max_rows
        self.accumulators: dict[str, TableAccumulator] = {}
        self.states: dict[tuple[str, str], RowState] = {}
        self.queue: deque[RowRecord] = deque()
        self.notices: list[ResolutionNotice] = []
        self.resolved = 0
        self._lock = threading.Lock()

    def accumulator(self, table: str) -> TableAccumulator:
        with self._lock:
            acc = self.accumulators.get(table)
            if acc is None:
                acc = TableAccumulator(table, self.max_rows)
                self.accumulators[table] = acc
            return acc

    def state_of(self, table: str, row_hash: str) -> RowState:
        return self.states.get((table, row_hash), RowState.UNVISITED)


class DependencyResolver:
    """
    Samples every table and pulls in the rows their foreign keys reference.

    Flow:
    1. Seed: draw up to ``required_rows`` rows from each table's row stream
    2. Resolve: walk a FIFO queue of included rows, looking up each non-null
       FK reference and appending the referenced row if its table has room
    3. Assemble: return per-table rows in the order they were discovered

    Each (table, row hash) is resolved at most once, so self-references and
    FK cycles terminate. ``max_rows`` is enforced on every append.
    """

    def __init__(self, source: DataSource, config: SamplingConfig):
        config.validate()
        self.source = source
        self.config = config

    def find_all_dependencies(
        self,
        graph: DependencyGraph,
        cancel: CancellationSignal | None = None,
    ) -> DependencyResult:
        """
        Build the referentially-consistent sample for every table in the graph.

        Args:
            graph: Dependency graph from ``build_graph``
            cancel: Optional signal checked between seed draws and row resolutions

        Returns:
            DependencyResult with rows per table and notices for dangling references

        Raises:
            SamplingCancelledError: If ``cancel`` is set mid-run
            MaxIterationsReachedError: If more rows than ``max_iterations`` are resolved
            SourceError: Propagated unchanged from the data source
        """
        start_time = time.time()
        state = _ResolutionState(self.config.max_rows)

        logger.info(
            "Starting dependency resolution",
            table_count=len(graph.nodes),
            edge_count=graph.edge_count(),
            required_rows=self.config.required_rows,
            max_rows=self.config.max_rows,
            order=self.config.order.value,
            strategy=self.config.strategy.value,
        )

        if self.config.order == ResolutionOrder.INTERLEAVED:
            for table in graph.tables():
                self._check_cancelled(cancel, state)
                self._seed_table(table, state)
                self._drain(graph, state, cancel)
        else:
            for table in graph.tables():
                self._check_cancelled(cancel, state)
                self._seed_table(table, state)
            self._drain(graph, state, cancel)

        result = DependencyResult(
            items={table: acc.rows for table, acc in state.accumulators.items() if acc.rows},
            notices=state.notices,
            resolved_rows=state.resolved,
        )

        if result.notices:
            logger.warning(
                "Some foreign key references were left unresolved",
                notice_count=len(result.notices),
            )

        log_sampling_complete(
            logger,
            total_rows=result.total_rows(),
            table_count=result.table_count(),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return result

    def _seed_table(self, table: str, state: _ResolutionState) -> None:
        """Draw the seed sample for one table and queue the rows that were added."""
        table_logger = logger.with_context(table=table)
        acc = state.accumulator(table)
        wanted = self.config.required_rows - len(acc)
        if wanted <= 0:
            table_logger.debug("Table already satisfied by FK pulls, skipping draw")
            return

        with self.source.rows_of(table) as rows:
            seed_rows = select_seed_rows(
                rows,
                wanted,
                self.config.seed,
                table,
                self.config.strategy,
            )

        added = 0
        for row in seed_rows:
            if self._include(row, state):
                added += 1

        table_logger.debug("Seeded table", drawn=len(seed_rows), added=added)

    def _include(self, row: RowRecord, state: _ResolutionState) -> bool:
        """Append a row to its table and queue it for resolution."""
        row_hash = self.source.hash_of(row)
        outcome = state.accumulator(row.table).try_append(row, row_hash)
        if outcome != AppendOutcome.ADDED:
            return False
        state.states[(row.table, row_hash)] = RowState.QUEUED
        state.queue.append(row)
        return True

    def _drain(
        self,
        graph: DependencyGraph,
        state: _ResolutionState,
        cancel: CancellationSignal | None,
    ) -> None:
        while state.queue:
            self._check_cancelled(cancel, state)
            row = state.queue.popleft()
            row_hash = self.source.hash_of(row)
            key = (row.table, row_hash)
            if state.state_of(*key) == RowState.RESOLVED:
                continue

            state.resolved += 1
            table_logger = logger.with_context(table=row.table)
            max_iterations = self.config.max_iterations
            if max_iterations is not None and state.resolved > max_iterations:
                table_logger.error(
                    "Max resolution iterations reached", max_iterations=max_iterations
                )
                raise MaxIterationsReachedError(max_iterations)

            state.states[key] = RowState.RESOLVED
            for edge in graph.edges_from(row.table):
                self._resolve_edge(row, edge, state, table_logger)

    def _resolve_edge(
        self,
        row: RowRecord,
        edge: DependencyEdge,
        state: _ResolutionState,
        table_logger: ContextLogger,
    ) -> None:
        """Follow one FK from a row to the row it references."""
        values = edge.referenced_values(row.data)
        if values is None:
            return

        referenced = self.source.lookup_row(edge.target_table, values)
        if referenced is None:
            self._notice(NoticeKind.DANGLING_BY_MISSING_DATA, edge, values, state, table_logger)
            return

        referenced_hash = self.source.hash_of(referenced)
        outcome = state.accumulator(edge.target_table).try_append(referenced, referenced_hash)
        if outcome == AppendOutcome.ADDED:
            state.states[(referenced.table, referenced_hash)] = RowState.QUEUED
            state.queue.append(referenced)
            table_logger.debug(
                "Pulled referenced row", to_table=edge.target_table, fk_name=edge.name
            )
        elif outcome == AppendOutcome.FULL:
            self._notice(NoticeKind.DANGLING_BY_BUDGET, edge, values, state, table_logger)

    def _notice(
        self,
        kind: NoticeKind,
        edge: DependencyEdge,
        values: dict[str, Any],
        state: _ResolutionState,
        table_logger: ContextLogger,
    ) -> None:
        notice = ResolutionNotice(
            kind=kind,
            table=edge.source_table,
            referenced_table=edge.target_table,
            column_values=values,
            fk_name=edge.name,
        )
        state.notices.append(notice)
        table_logger.debug("Unresolved reference", kind=kind.value, reference=str(notice))

    @staticmethod
    def _check_cancelled(cancel: CancellationSignal | None, state: _ResolutionState) -> None:
        if cancel is not None and cancel.is_set():
            logger.warning("Dependency resolution cancelled", resolved_rows=state.resolved)
            raise SamplingCancelledError(state.resolved)

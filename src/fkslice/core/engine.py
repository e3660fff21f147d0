import time
from collections.abc import Callable
from dataclasses import dataclass

from fkslice.adapters.base import DataSource
from fkslice.config import SubsetConfig
from fkslice.core.graph import build_graph
from fkslice.core.resolver import CancellationSignal, DependencyResolver, DependencyResult
from fkslice.exceptions import SubsetValidationError, TableNotFoundError
from fkslice.logging import get_logger
from fkslice.models import Dependency, DependencyGraph
from fkslice.utils.connection import get_source_for_url, parse_database_url
from fkslice.validation import SubsetValidator, ValidationResult

logger = get_logger(__name__)

# Progress callbacks receive (stage, message, current, total); current and
# total are 0 when the stage has no meaningful count.
ProgressCallback = Callable[[str, str, int, int], None]


@dataclass
class SubsetRun:
    """Everything one sampling run produced."""

    result: DependencyResult
    graph: DependencyGraph
    validation_result: ValidationResult | None = None


class SubsetEngine:
    """
    Orchestrates a sampling run against a live data source.

    Flow:
    1. Connect to the source
    2. List FK metadata (config exclusions plus source-specific ones)
    3. Append virtual dependencies and build the graph
    4. Resolve the sample inside a snapshot transaction
    5. Optionally re-validate the sample in memory
    """

    def __init__(
        self,
        config: SubsetConfig,
        progress_callback: ProgressCallback | None = None,
        source: DataSource | None = None,
    ):
        self.config = config
        self.progress_callback = progress_callback
        self.source = source

    def _log(self, stage: str, message: str, current: int = 0, total: int = 0) -> None:
        """Send progress update to callback if configured."""
        if self.progress_callback:
            self.progress_callback(stage, message, current, total)

    def run(self, cancel: CancellationSignal | None = None) -> SubsetRun:
        """
        Perform the sampling run.

        Args:
            cancel: Optional cancellation signal passed through to the resolver

        Returns:
            SubsetRun with the sampled rows, the graph and the validation result
        """
        start_time = time.time()
        self.config.sampling.validate()

        db_config = parse_database_url(self.config.database_url)
        logger.info(
            "Starting sampling run",
            database=db_config.database,
            db_type=db_config.db_type.value,
            required_rows=self.config.sampling.required_rows,
            max_rows=self.config.sampling.max_rows,
            seed=self.config.sampling.seed,
        )

        if self.source is None:
            self.source = get_source_for_url(self.config.database_url)

        try:
            with logger.timed_operation("database_connection", database=db_config.database):
                self.source.connect(self.config.database_url)
            self._log("connect", "Connected successfully")

            with self.source.snapshot_transaction():
                graph = self.load_graph()
                result = self._resolve(graph, cancel)

            validation_result = None
            if self.config.validate:
                self._log("validate", "Validating sample...")
                validator = SubsetValidator(graph, self.config.sampling.max_rows)
                with logger.timed_operation("validation", table_count=result.table_count()):
                    validation_result = validator.validate(result.items, result.notices)

                if not validation_result.is_valid and self.config.fail_on_validation_error:
                    raise SubsetValidationError(validation_result.format_report())

            logger.info(
                "Sampling run completed successfully",
                total_rows=result.total_rows(),
                table_count=result.table_count(),
                notice_count=len(result.notices),
                duration_ms=int((time.time() - start_time) * 1000),
            )
            return SubsetRun(result=result, graph=graph, validation_result=validation_result)
        except Exception as e:
            logger.error(
                "Sampling run failed",
                error=str(e),
                duration_ms=int((time.time() - start_time) * 1000),
                exc_info=True,
            )
            raise
        finally:
            self.source.close()
            logger.debug("Data source closed")

    def load_graph(self) -> DependencyGraph:
        """List dependencies from the connected source and build the graph."""
        assert self.source is not None

        excluded = set(self.config.excluded_schemas) | self.source.excluded_schemas()
        self._log("schema", "Listing foreign key dependencies...")
        with logger.timed_operation("list_dependencies", excluded_schema_count=len(excluded)):
            dependencies = list(self.source.list_dependencies(excluded))

        graph = build_graph(dependencies)
        if self.config.virtual_dependencies:
            self._check_virtual_dependencies(graph, self.config.virtual_dependencies)
            graph = build_graph(dependencies + list(self.config.virtual_dependencies))

        logger.info(
            "Dependency graph ready",
            table_count=len(graph.nodes),
            edge_count=graph.edge_count(),
            virtual_count=len(self.config.virtual_dependencies),
        )
        self._log(
            "schema",
            f"Found {len(graph.nodes)} tables, {graph.edge_count()} foreign keys"
            + (
                f" ({len(self.config.virtual_dependencies)} virtual)"
                if self.config.virtual_dependencies
                else ""
            ),
        )
        return graph

    def _check_virtual_dependencies(
        self, graph: DependencyGraph, virtual: list[Dependency]
    ) -> None:
        """Virtual dependencies must point at tables the source actually has."""
        available = graph.tables()
        for dependency in virtual:
            for table in (dependency.source, dependency.referenced):
                if table is not None and not graph.has_table(table):
                    raise TableNotFoundError(table, available)

    def _resolve(
        self, graph: DependencyGraph, cancel: CancellationSignal | None
    ) -> DependencyResult:
        self._log("sample", f"Sampling {len(graph.nodes)} tables...")
        resolver = DependencyResolver(self.source, self.config.sampling)
        with logger.timed_operation("dependency_resolution", table_count=len(graph.nodes)):
            result = resolver.find_all_dependencies(graph, cancel=cancel)

        self._log(
            "sample",
            f"Sampled {result.total_rows()} rows across {result.table_count()} tables",
        )
        if result.notices:
            self._log("sample", f"{len(result.notices)} reference(s) left unresolved")
        return result

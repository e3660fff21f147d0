from collections.abc import Iterable

from fkslice.exceptions import MalformedDependencyError
from fkslice.logging import get_logger
from fkslice.models import Dependency, DependencyEdge, DependencyGraph

logger = get_logger(__name__)


def build_graph(dependencies: Iterable[Dependency]) -> DependencyGraph:
    """
    Turn flat FK metadata into a dependency graph.

    Every dependency registers its source table as a node. Dependencies that
    name a referenced table also add a directed edge whose columns pair up
    positionally. Parallel edges between the same two tables stay distinct,
    and self-references are kept as-is.

    Table names are compared exactly; no case folding or quoting is applied.

    Args:
        dependencies: FK metadata, typically from ``DataSource.list_dependencies``

    Returns:
        DependencyGraph keyed by qualified table name

    Raises:
        MalformedDependencyError: If an FK's column lists are missing or differ in length
    """
    graph = DependencyGraph()

    for dependency in dependencies:
        source = dependency.source
        graph.add_table(source)

        referenced = dependency.referenced
        if referenced is None:
            continue

        source_columns = dependency.source_columns
        referenced_columns = dependency.referenced_columns
        if not source_columns or not referenced_columns:
            raise MalformedDependencyError(source, referenced, "FK has no column mapping")

        if len(source_columns) != len(referenced_columns):
            raise MalformedDependencyError(
                source,
                referenced,
                f"{len(source_columns)} source column(s) but "
                f"{len(referenced_columns)} referenced column(s)",
            )

        graph.add_edge(
            DependencyEdge(
                source_table=source,
                source_columns=tuple(source_columns),
                target_table=referenced,
                target_columns=tuple(referenced_columns),
                name=dependency.name,
            )
        )

    logger.debug(
        "Dependency graph built",
        table_count=len(graph.nodes),
        edge_count=graph.edge_count(),
        self_referencing=len(graph.self_referencing_tables()),
    )

    return graph

"""Post-sampling validation of a subset.

Re-checks a finished sample in memory: every non-null FK reference points to
an included row (unless the referenced table is at its budget, or the source
had no such row), no table exceeds ``max_rows``, and no table holds the same
row twice.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from fkslice.logging import get_logger
from fkslice.models import DependencyEdge, DependencyGraph, RowRecord

logger = get_logger(__name__)


def _freeze(values: dict[str, Any]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((col, json.dumps(val, default=str)) for col, val in values.items()))


@dataclass
class DanglingReference:
    """A sampled row whose referenced row is not in the sample."""

    table: str
    fk_name: str | None
    fk_columns: tuple[str, ...]
    fk_values: tuple[Any, ...]
    referenced_table: str

    def __str__(self) -> str:
        fk_str = ", ".join(f"{col}={val}" for col, val in zip(self.fk_columns, self.fk_values))
        via = f" via FK '{self.fk_name}'" if self.fk_name else ""
        return (
            f"{self.table}({fk_str}) -> {self.referenced_table}{via}"
            " - referenced row not included"
        )


@dataclass
class ValidationResult:
    """
    Result of subset validation.

    Dangling references whose target table is already at ``max_rows``, or
    which the resolver reported as missing from the source, are expected
    and counted separately; they do not make the sample invalid.
    """

    is_valid: bool = True
    dangling: list[DanglingReference] = field(default_factory=list)
    over_budget: dict[str, int] = field(default_factory=dict)
    duplicates: dict[str, int] = field(default_factory=dict)
    expected_dangling: int = 0
    total_records_checked: int = 0
    total_fk_checks: int = 0

    def add_dangling(self, reference: DanglingReference) -> None:
        self.dangling.append(reference)
        self.is_valid = False

    def add_over_budget(self, table: str, row_count: int) -> None:
        self.over_budget[table] = row_count
        self.is_valid = False

    def add_duplicates(self, table: str, duplicate_count: int) -> None:
        self.duplicates[table] = duplicate_count
        self.is_valid = False

    def format_report(self) -> str:
        """
        Format a human-readable validation report.

        Returns:
            Multi-line string with validation results
        """
        lines = []
        lines.append("=" * 80)
        lines.append("SUBSET VALIDATION REPORT")
        lines.append("=" * 80)
        lines.append("")

        lines.append(f"Records checked: {self.total_records_checked}")
        lines.append(f"Foreign key checks performed: {self.total_fk_checks}")
        if self.expected_dangling:
            lines.append(
                f"References left unresolved by budget or missing data: {self.expected_dangling}"
            )
        lines.append("")

        if self.is_valid:
            lines.append("Status: VALID")
            lines.append("All foreign key references point to included records.")
        else:
            lines.append("Status: INVALID")

            for table, row_count in sorted(self.over_budget.items()):
                lines.append(f"Table {table} exceeds max_rows with {row_count} rows")
            for table, duplicate_count in sorted(self.duplicates.items()):
                lines.append(f"Table {table} contains {duplicate_count} duplicate row(s)")

            if self.dangling:
                lines.append(f"Found {len(self.dangling)} dangling reference(s):")
                lines.append("")

                by_table: dict[str, list[DanglingReference]] = {}
                for reference in self.dangling:
                    by_table.setdefault(reference.table, []).append(reference)

                for table, references in sorted(by_table.items()):
                    lines.append(f"Table: {table} ({len(references)} dangling)")
                    for reference in references:
                        lines.append(f"  - {reference}")
                    lines.append("")

        lines.append("=" * 80)
        return "\n".join(lines)


class SubsetValidator:
    """
    Validates a sampled subset for referential integrity and budgets.

    Works purely on the sampled rows and the dependency graph; no source
    access is needed.
    """

    def __init__(self, graph: DependencyGraph, max_rows: int):
        self.graph = graph
        self.max_rows = max_rows

    def validate(
        self,
        items: dict[str, list[RowRecord]],
        missing: Iterable[Any] = (),
    ) -> ValidationResult:
        """
        Validate a sample.

        Args:
            items: Sampled rows by qualified table name
            missing: Resolver notices for references the source could not satisfy

        Returns:
            ValidationResult with detailed information about any issues found
        """
        logger.info("Starting subset validation", table_count=len(items))

        result = ValidationResult()
        known_missing = {
            (notice.table, notice.referenced_table, _freeze(notice.column_values))
            for notice in missing
        }

        for table, rows in items.items():
            if len(rows) > self.max_rows:
                result.add_over_budget(table, len(rows))
                logger.warning("Table exceeds max_rows", table=table, row_count=len(rows))

            seen: set[str] = set()
            duplicate_count = 0
            for row in rows:
                key = json.dumps(row.data, sort_keys=True, default=str)
                if key in seen:
                    duplicate_count += 1
                seen.add(key)
            if duplicate_count:
                result.add_duplicates(table, duplicate_count)
                logger.warning("Duplicate rows in sample", table=table, count=duplicate_count)

        for table, rows in items.items():
            result.total_records_checked += len(rows)
            for edge in self.graph.edges_from(table):
                for row in rows:
                    values = edge.referenced_values(row.data)
                    if values is None:
                        continue

                    result.total_fk_checks += 1
                    if self._is_included(edge, values, items):
                        continue

                    target_count = len(items.get(edge.target_table, []))
                    explained = (
                        target_count >= self.max_rows
                        or (table, edge.target_table, _freeze(values)) in known_missing
                    )
                    if explained:
                        result.expected_dangling += 1
                        continue

                    reference = DanglingReference(
                        table=table,
                        fk_name=edge.name,
                        fk_columns=edge.source_columns,
                        fk_values=tuple(row.data.get(col) for col in edge.source_columns),
                        referenced_table=edge.target_table,
                    )
                    result.add_dangling(reference)
                    logger.warning(
                        "Dangling reference detected",
                        table=table,
                        referenced_table=edge.target_table,
                        fk_name=edge.name,
                        fk_values=reference.fk_values,
                    )

        logger.info(
            "Validation complete",
            is_valid=result.is_valid,
            dangling_count=len(result.dangling),
            expected_dangling=result.expected_dangling,
            records_checked=result.total_records_checked,
            fk_checks=result.total_fk_checks,
        )

        return result

    @staticmethod
    def _is_included(
        edge: DependencyEdge,
        values: dict[str, Any],
        items: dict[str, list[RowRecord]],
    ) -> bool:
        """Check if any sampled row of the target table carries these key values."""
        for candidate in items.get(edge.target_table, []):
            if all(candidate.data.get(col) == val for col, val in values.items()):
                return True
        return False

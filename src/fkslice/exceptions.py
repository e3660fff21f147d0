from fkslice.constants import MAX_SIMILAR_SUGGESTIONS

__all__ = [
    "FksliceError",
    "ConnectionError",
    "InvalidURLError",
    "UnsupportedDatabaseError",
    "SchemaIntrospectionError",
    "SourceError",
    "TableNotFoundError",
    "MalformedDependencyError",
    "InvalidSamplingConfigError",
    "SamplingCancelledError",
    "MaxIterationsReachedError",
    "SubsetValidationError",
]


class FksliceError(Exception):
    """Base exception for all fkslice errors."""

    pass


class ConnectionError(FksliceError):
    """Failed to connect to database."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        masked_url = self._mask_password(url)
        super().__init__(f"Cannot connect to {masked_url}: {reason}")

    @staticmethod
    def _mask_password(url: str) -> str:
        """Mask password in database URL for safe display."""
        import re

        # Match password in URL: ://user:password@host
        # Use a greedy match for password up to the LAST @ before the host
        return re.sub(r"(://[^:]+:)(.+)(@[^@]+)$", r"\1****\3", url)


class InvalidURLError(FksliceError):
    """Database URL is malformed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid database URL: {reason}")


class UnsupportedDatabaseError(FksliceError):
    """Database type is not supported."""

    def __init__(self, db_type: str):
        self.db_type = db_type
        super().__init__(f"Unsupported database type: '{db_type}'. Supported types: postgresql")


class SchemaIntrospectionError(FksliceError):
    """Failed to read foreign key metadata from the source."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to introspect schema: {reason}")


class SourceError(FksliceError):
    """A row draw or lookup against the data source failed."""

    def __init__(self, reason: str, table: str | None = None):
        self.reason = reason
        self.table = table
        msg = f"Data source error: {reason}"
        if table:
            msg = f"Data source error on table '{table}': {reason}"
        super().__init__(msg)


class TableNotFoundError(FksliceError):
    """Referenced table does not exist in the dependency graph."""

    def __init__(self, table: str, available_tables: list[str] | None = None):
        self.table = table
        self.available_tables = available_tables
        msg = f"Table '{table}' not found in dependency graph"
        if available_tables:
            suggestions = self._find_similar(table, available_tables)
            if suggestions:
                msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(msg)

    @staticmethod
    def _find_similar(
        target: str, candidates: list[str], max_results: int = MAX_SIMILAR_SUGGESTIONS
    ) -> list[str]:
        """Find similar table names using simple substring matching."""
        target_lower = target.lower()
        similar = []
        for name in candidates:
            name_lower = name.lower()
            if target_lower in name_lower or name_lower in target_lower:
                similar.append(name)
        return similar[:max_results]


class MalformedDependencyError(FksliceError):
    """FK metadata cannot be turned into a graph edge."""

    def __init__(self, source_table: str, referenced_table: str | None, reason: str):
        self.source_table = source_table
        self.referenced_table = referenced_table
        self.reason = reason
        super().__init__(
            f"Malformed dependency {source_table} -> {referenced_table or '?'}: {reason}"
        )


class InvalidSamplingConfigError(FksliceError):
    """Sampling configuration values are out of range."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid sampling configuration: {reason}")


class SamplingCancelledError(FksliceError):
    """The caller cancelled an in-flight resolution."""

    def __init__(self, resolved_rows: int):
        self.resolved_rows = resolved_rows
        super().__init__(f"Sampling cancelled after resolving {resolved_rows} row(s)")


class MaxIterationsReachedError(FksliceError):
    """Resolution processed more rows than the configured safety cap."""

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"Max resolution iterations reached: {max_iterations}")


class SubsetValidationError(FksliceError):
    """The finished sample failed validation and the run was asked to fail on it."""

    def __init__(self, report: str):
        self.report = report
        super().__init__(f"Sample validation failed\n\n{report}")

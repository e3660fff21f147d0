from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fkslice.config import (
    ResolutionOrder,
    SamplingConfig,
    SamplingStrategy,
    SubsetConfig,
    parse_order,
    parse_strategy,
)
from fkslice.constants import (
    DEFAULT_MAX_ROWS,
    DEFAULT_REQUIRED_ROWS,
    DEFAULT_SCHEMA,
    DEFAULT_SEED,
)
from fkslice.exceptions import FksliceError, InvalidSamplingConfigError
from fkslice.logging import get_logger
from fkslice.models import Dependency

logger = get_logger(__name__)

__all__ = [
    "FksliceConfig",
    "DatabaseConfig",
    "SamplingSection",
    "VirtualDependencyConfig",
    "ConfigFileError",
    "load_config",
    "split_table_name",
]


class ConfigFileError(FksliceError):
    """Error loading or parsing configuration file."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config from '{path}': {reason}")


def split_table_name(name: str) -> tuple[str, str]:
    """Split ``schema.table``; bare names land in the default schema."""
    if "." in name:
        schema, table = name.split(".", 1)
        if not schema or not table:
            raise ValueError(f"Invalid table name '{name}'")
        return schema, table
    return DEFAULT_SCHEMA, name


@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str | None = None
    """Database connection URL (can be overridden by CLI)."""


@dataclass
class SamplingSection:
    """Row budgets and sampling behavior."""

    required_rows: int = DEFAULT_REQUIRED_ROWS
    """Rows to seed-sample from every table."""

    max_rows: int = DEFAULT_MAX_ROWS
    """Hard ceiling on rows per table, FK pulls included."""

    seed: int | str = DEFAULT_SEED
    """Randomness key; same seed over the same data gives the same sample."""

    strategy: str = SamplingStrategy.FIRST.value
    """Seed selection: 'first' (default) or 'reservoir'."""

    order: str = ResolutionOrder.TWO_PHASE.value
    """Resolution order: 'two_phase' or 'interleaved'."""

    max_iterations: int | None = None
    """Safety cap on resolved rows (None = unlimited)."""


@dataclass
class VirtualDependencyConfig:
    """A foreign key the database does not declare."""

    source_table: str
    source_columns: list[str]
    referenced_table: str
    referenced_columns: list[str]
    name: str | None = None

    def to_dependency(self) -> Dependency:
        source_schema, source_table = split_table_name(self.source_table)
        referenced_schema, referenced_table = split_table_name(self.referenced_table)
        return Dependency(
            source_schema=source_schema,
            source_table=source_table,
            source_columns=tuple(self.source_columns),
            referenced_schema=referenced_schema,
            referenced_table=referenced_table,
            referenced_columns=tuple(self.referenced_columns),
            name=self.name or f"virtual_{source_table}_{referenced_table}",
        )


@dataclass
class FksliceConfig:
    """
    Complete fkslice configuration loaded from YAML file.

    This configuration can be loaded from a YAML file and merged with
    CLI arguments, with CLI arguments taking precedence.
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sampling: SamplingSection = field(default_factory=SamplingSection)
    excluded_schemas: list[str] = field(default_factory=list)
    virtual_dependencies: list[VirtualDependencyConfig] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "FksliceConfig":
        """
        Load configuration from a YAML file.

        Raises:
            ConfigFileError: If file cannot be read or parsed
        """
        path = Path(path)

        if not path.exists():
            raise ConfigFileError(str(path), "File does not exist")

        if not path.is_file():
            raise ConfigFileError(str(path), "Path is not a file")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigFileError(str(path), f"Invalid YAML: {e}")
        except OSError as e:
            raise ConfigFileError(str(path), f"Cannot read file: {e}")

        if data is None:
            data = {}

        if not isinstance(data, dict):
            raise ConfigFileError(str(path), "Config file must contain a YAML mapping (dictionary)")

        logger.info("Loaded config file", path=str(path))

        try:
            return cls._from_dict(data)
        except (ValueError, TypeError) as e:
            raise ConfigFileError(str(path), f"Invalid configuration: {e}")

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "FksliceConfig":
        database_data = data.get("database") or {}
        if not isinstance(database_data, dict):
            raise ValueError("'database' section must be a mapping")

        database = DatabaseConfig(url=database_data.get("url"))

        sampling_data = data.get("sampling") or {}
        if not isinstance(sampling_data, dict):
            raise ValueError("'sampling' section must be a mapping")

        sampling = SamplingSection(
            required_rows=sampling_data.get("required_rows", DEFAULT_REQUIRED_ROWS),
            max_rows=sampling_data.get("max_rows", DEFAULT_MAX_ROWS),
            seed=sampling_data.get("seed", DEFAULT_SEED),
            strategy=sampling_data.get("strategy", SamplingStrategy.FIRST.value),
            order=sampling_data.get("order", ResolutionOrder.TWO_PHASE.value),
            max_iterations=sampling_data.get("max_iterations"),
        )

        for key in ("required_rows", "max_rows"):
            value = getattr(sampling, key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"'sampling.{key}' must be a positive integer")

        if sampling.max_iterations is not None and (
            isinstance(sampling.max_iterations, bool)
            or not isinstance(sampling.max_iterations, int)
            or sampling.max_iterations < 1
        ):
            raise ValueError("'sampling.max_iterations' must be a positive integer")

        if isinstance(sampling.seed, bool) or not isinstance(sampling.seed, (int, str)):
            raise ValueError("'sampling.seed' must be an integer or a string")

        try:
            parse_strategy(str(sampling.strategy))
            parse_order(str(sampling.order))
        except InvalidSamplingConfigError as e:
            raise ValueError(e.reason)

        excluded_schemas = data.get("excluded_schemas") or []
        if not isinstance(excluded_schemas, list):
            raise ValueError("'excluded_schemas' must be a list")

        vdep_data = data.get("virtual_dependencies") or []
        if not isinstance(vdep_data, list):
            raise ValueError("'virtual_dependencies' section must be a list")

        virtual_dependencies = []
        for i, vdep in enumerate(vdep_data):
            if not isinstance(vdep, dict):
                raise ValueError(f"Virtual dependency #{i + 1} must be a mapping")

            for key in ("source_table", "source_columns", "referenced_table", "referenced_columns"):
                if key not in vdep:
                    raise ValueError(f"Virtual dependency #{i + 1}: '{key}' is required")

            for key in ("source_columns", "referenced_columns"):
                if not isinstance(vdep[key], list) or not vdep[key]:
                    raise ValueError(
                        f"Virtual dependency #{i + 1}: '{key}' must be a non-empty list "
                        "of column names"
                    )

            if len(vdep["source_columns"]) != len(vdep["referenced_columns"]):
                raise ValueError(
                    f"Virtual dependency #{i + 1}: 'source_columns' and 'referenced_columns' "
                    "must have the same length"
                )

            split_table_name(vdep["source_table"])
            split_table_name(vdep["referenced_table"])

            virtual_dependencies.append(
                VirtualDependencyConfig(
                    source_table=vdep["source_table"],
                    source_columns=[str(col) for col in vdep["source_columns"]],
                    referenced_table=vdep["referenced_table"],
                    referenced_columns=[str(col) for col in vdep["referenced_columns"]],
                    name=vdep.get("name"),
                )
            )

        return cls(
            database=database,
            sampling=sampling,
            excluded_schemas=[str(schema) for schema in excluded_schemas],
            virtual_dependencies=virtual_dependencies,
        )

    def to_subset_config(
        self,
        database_url: str | None = None,
        required_rows: int | None = None,
        max_rows: int | None = None,
        seed: int | str | None = None,
        strategy: SamplingStrategy | None = None,
        order: ResolutionOrder | None = None,
        max_iterations: int | None = None,
        excluded_schemas: list[str] | None = None,
        output_file: str | None = None,
        validate: bool = True,
        fail_on_validation_error: bool = False,
        verbose: bool = False,
        no_progress: bool = False,
    ) -> SubsetConfig:
        """
        Convert to SubsetConfig for use by the subset engine.

        CLI arguments override config file values. Excluded schemas given on
        the CLI are added to those in the file rather than replacing them.

        Raises:
            ValueError: If no database URL is available
        """
        final_url = database_url or self.database.url
        if not final_url:
            raise ValueError(
                "Database URL is required. Provide it as an argument or in config file "
                "under 'database.url'"
            )

        sampling = SamplingConfig(
            required_rows=(
                required_rows if required_rows is not None else self.sampling.required_rows
            ),
            max_rows=max_rows if max_rows is not None else self.sampling.max_rows,
            seed=seed if seed is not None else self.sampling.seed,
            strategy=strategy or parse_strategy(str(self.sampling.strategy)),
            order=order or parse_order(str(self.sampling.order)),
            max_iterations=(
                max_iterations if max_iterations is not None else self.sampling.max_iterations
            ),
        )

        final_excluded = set(self.excluded_schemas)
        if excluded_schemas:
            final_excluded.update(excluded_schemas)

        logger.debug(
            "Merged config with CLI args",
            url_source="CLI" if database_url else "config",
            required_rows=sampling.required_rows,
            max_rows=sampling.max_rows,
            seed=sampling.seed,
        )

        return SubsetConfig(
            database_url=final_url,
            sampling=sampling,
            excluded_schemas=final_excluded,
            virtual_dependencies=[vdep.to_dependency() for vdep in self.virtual_dependencies],
            validate=validate,
            fail_on_validation_error=fail_on_validation_error,
            output_file=output_file,
            verbose=verbose,
            no_progress=no_progress,
        )


def load_config(path: str | Path) -> FksliceConfig:
    """
    Load configuration from a YAML file.

    Raises:
        ConfigFileError: If file cannot be read or parsed
    """
    return FksliceConfig.from_yaml(path)

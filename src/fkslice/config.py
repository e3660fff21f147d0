from dataclasses import dataclass, field
from enum import Enum

from fkslice.constants import (
    DEFAULT_MAX_ROWS,
    DEFAULT_REQUIRED_ROWS,
    DEFAULT_SEED,
    MAX_ROWS_HEADROOM,
)
from fkslice.exceptions import InvalidSamplingConfigError
from fkslice.logging import get_logger
from fkslice.models import Dependency

logger = get_logger(__name__)


class DatabaseType(Enum):
    """Supported database types."""

    POSTGRESQL = "postgresql"


class SamplingStrategy(Enum):
    """How the seed phase picks rows out of a table's row stream."""

    RESERVOIR = "reservoir"  # Seeded reservoir sampling over the whole stream (opt-in)
    FIRST = "first"  # First rows in source order (default)


class ResolutionOrder(Enum):
    """When FK resolution runs relative to seed sampling."""

    TWO_PHASE = "two_phase"  # Seed every table, then resolve
    INTERLEAVED = "interleaved"  # Seed a table, resolve it, then the next


@dataclass
class SamplingConfig:
    """Row budgets and randomness key for one sampling run."""

    required_rows: int = DEFAULT_REQUIRED_ROWS
    max_rows: int = DEFAULT_MAX_ROWS
    seed: int | str = DEFAULT_SEED
    strategy: SamplingStrategy = SamplingStrategy.FIRST
    order: ResolutionOrder = ResolutionOrder.TWO_PHASE
    max_iterations: int | None = None

    def validate(self) -> None:
        """
        Check budgets and warn about settings likely to leave dangling references.

        Raises:
            InvalidSamplingConfigError: If a budget is out of range
        """
        if isinstance(self.required_rows, bool) or not isinstance(self.required_rows, int):
            raise InvalidSamplingConfigError("required_rows must be an integer")
        if isinstance(self.max_rows, bool) or not isinstance(self.max_rows, int):
            raise InvalidSamplingConfigError("max_rows must be an integer")
        if self.required_rows <= 0:
            raise InvalidSamplingConfigError(
                f"required_rows must be positive, got {self.required_rows}"
            )
        if self.max_rows < self.required_rows:
            raise InvalidSamplingConfigError(
                f"max_rows ({self.max_rows}) must be >= required_rows ({self.required_rows})"
            )
        if self.max_iterations is not None and self.max_iterations <= 0:
            raise InvalidSamplingConfigError(
                f"max_iterations must be positive, got {self.max_iterations}"
            )
        if not isinstance(self.seed, (int, str)) or isinstance(self.seed, bool):
            raise InvalidSamplingConfigError("seed must be an integer or a string")

        if self.max_rows < self.required_rows + MAX_ROWS_HEADROOM:
            logger.warning(
                "max_rows is too low, this might cause problems with foreign keys",
                required_rows=self.required_rows,
                max_rows=self.max_rows,
            )


def parse_strategy(value: str) -> SamplingStrategy:
    """Parse a strategy name, raising InvalidSamplingConfigError on unknown values."""
    try:
        return SamplingStrategy(value)
    except ValueError:
        valid = ", ".join(s.value for s in SamplingStrategy)
        raise InvalidSamplingConfigError(f"strategy must be one of: {valid}, got '{value}'")


def parse_order(value: str) -> ResolutionOrder:
    """Parse a resolution order name, raising InvalidSamplingConfigError on unknown values."""
    try:
        return ResolutionOrder(value.replace("-", "_"))
    except ValueError:
        valid = ", ".join(o.value for o in ResolutionOrder)
        raise InvalidSamplingConfigError(f"order must be one of: {valid}, got '{value}'")


@dataclass
class SubsetConfig:
    """Configuration for a complete sampling run against a database."""

    database_url: str
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    excluded_schemas: set[str] = field(default_factory=set)
    virtual_dependencies: list[Dependency] = field(default_factory=list)
    validate: bool = True
    fail_on_validation_error: bool = False
    output_file: str | None = None
    verbose: bool = False
    no_progress: bool = False

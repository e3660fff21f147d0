import json
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

from fkslice.core.resolver import DependencyResult


class DatabaseTypeEncoder(json.JSONEncoder):
    """
    Custom JSON encoder that handles database-specific types.

    Supported type conversions:
    - datetime, date, time -> ISO 8601 string
    - timedelta -> total seconds (as float)
    - Decimal -> float
    - UUID -> string
    - bytes, memoryview -> hex string
    - set, frozenset -> list
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()

        if isinstance(obj, timedelta):
            return obj.total_seconds()

        if isinstance(obj, Decimal):
            return float(obj)

        if isinstance(obj, UUID):
            return str(obj)

        # psycopg2 returns bytea columns as memoryview
        if isinstance(obj, memoryview):
            return obj.tobytes().hex()

        if isinstance(obj, bytes):
            return obj.hex()

        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)

        return super().default(obj)


class JSONGenerator:
    """
    Serializes a sampling result.

    Format:
    {
        "items": {"schema.table": [row, ...], ...},
        "sampled_records": {"schema.table": N, ...},
        "notices": [{"kind": ..., "table": ..., ...}, ...]
    }

    Tables appear in discovery order and rows in the order they were sampled.
    """

    def __init__(self, pretty: bool = True, indent: int = 2):
        self.pretty = pretty
        self.indent = indent if pretty else None

    def build(self, result: DependencyResult) -> dict[str, Any]:
        """Build the JSON-ready document without serializing it."""
        return {
            "items": result.as_data(),
            "sampled_records": result.sampled_records(),
            "notices": [notice.to_dict() for notice in result.notices],
        }

    def generate(self, result: DependencyResult) -> str:
        return json.dumps(
            self.build(result),
            cls=DatabaseTypeEncoder,
            indent=self.indent,
            ensure_ascii=False,
        )

    def write_to_file(self, output: str, file_path: Path | str) -> None:
        """
        Write generated JSON to a file, creating parent directories.

        Raises:
            OSError: If file operations fail
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(output, encoding="utf-8")


def generate_json(result: DependencyResult, pretty: bool = True) -> str:
    """Convenience function to generate JSON output."""
    return JSONGenerator(pretty=pretty).generate(result)

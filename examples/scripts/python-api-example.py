#!/usr/bin/env python3
"""Example: Using fkslice as a Python library.

This script samples every table of a database, pulls in the rows their
foreign keys reference, and saves the result as JSON.

Usage:
    DATABASE_URL=postgres://localhost/myapp python python-api-example.py
    DATABASE_URL=postgres://localhost/myapp SEED=42 MAX_ROWS=50 python python-api-example.py
"""

import os
from pathlib import Path

from fkslice.config import SamplingConfig, SamplingStrategy, SubsetConfig
from fkslice.core.engine import SubsetEngine
from fkslice.output.json_out import JSONGenerator


def sample_database(database_url: str, seed: int, max_rows: int) -> str:
    """Sample a database and return the subset as JSON.

    Args:
        database_url: Database connection URL
        seed: Randomness key for the seed sample
        max_rows: Hard cap on rows per table

    Returns:
        JSON document as a string
    """
    config = SubsetConfig(
        database_url=database_url,
        sampling=SamplingConfig(
            required_rows=5,
            max_rows=max_rows,
            seed=seed,
            strategy=SamplingStrategy.RESERVOIR,
        ),
        excluded_schemas={"audit"},
    )

    run = SubsetEngine(config).run()
    result = run.result

    print(f"Sampled {result.total_rows()} rows from {result.table_count()} tables:")
    for table, count in result.sampled_records().items():
        print(f"  - {table}: {count} rows")

    if result.notices:
        print(f"{len(result.notices)} reference(s) left unresolved:")
        for notice in result.notices:
            print(f"  - {notice}")

    if run.validation_result and not run.validation_result.is_valid:
        print(run.validation_result.format_report())

    return JSONGenerator(pretty=True).generate(result)


def main():
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        print("Error: DATABASE_URL environment variable is required")
        print("")
        print("Example:")
        print("  DATABASE_URL=postgres://localhost/myapp python python-api-example.py")
        return

    seed = int(os.environ.get("SEED", "0"))
    max_rows = int(os.environ.get("MAX_ROWS", "20"))
    print(f"Sampling with seed {seed}...")
    print("")

    output = sample_database(database_url, seed, max_rows)

    output_path = Path(f"subset_seed_{seed}.json")
    output_path.write_text(output, encoding="utf-8")
    print("")
    print(f"Saved to {output_path}")


if __name__ == "__main__":
    main()

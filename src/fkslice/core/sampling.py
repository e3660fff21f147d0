"""Seed-phase row selection.

Both strategies are pure functions of the seed, the row stream and the
sample size, so re-running with the same seed over an unchanged source
draws the same rows in the same order.
"""

import random
from collections.abc import Iterable
from itertools import islice
from typing import TypeVar

from fkslice.config import SamplingStrategy

T = TypeVar("T")


def table_rng(seed: int | str, table: str) -> random.Random:
    """
    Build the random generator for one table's draw.

    Keying by table keeps each table's sample independent of how many rows
    other tables hold or the order tables are seeded in.
    """
    return random.Random(f"{seed}:{table}")


def reservoir_sample(rows: Iterable[T], k: int, rng: random.Random) -> list[T]:
    """
    Pick up to ``k`` items uniformly from a single pass over ``rows``.

    Algorithm R, with the kept items returned in the order they appeared
    in the stream rather than reservoir slot order.
    """
    if k <= 0:
        return []

    reservoir: list[tuple[int, T]] = []
    for index, row in enumerate(rows):
        if index < k:
            reservoir.append((index, row))
            continue
        slot = rng.randrange(index + 1)
        if slot < k:
            reservoir[slot] = (index, row)

    reservoir.sort(key=lambda item: item[0])
    return [row for _, row in reservoir]


def first_rows(rows: Iterable[T], k: int) -> list[T]:
    """Take the first ``k`` items in source order."""
    if k <= 0:
        return []
    return list(islice(rows, k))


def select_seed_rows(
    rows: Iterable[T],
    k: int,
    seed: int | str,
    table: str,
    strategy: SamplingStrategy = SamplingStrategy.FIRST,
) -> list[T]:
    """Draw the seed sample for one table with the configured strategy."""
    if strategy == SamplingStrategy.FIRST:
        return first_rows(rows, k)
    return reservoir_sample(rows, k, table_rng(seed, table))

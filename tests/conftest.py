"""Shared pytest fixtures for fkslice tests."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pytest

from fkslice.adapters.base import DataSource
from fkslice.exceptions import SourceError
from fkslice.models import Dependency, RowRecord


class MockSource(DataSource):
    """In-memory data source for testing without a real database."""

    def __init__(
        self,
        data: dict[str, list[dict[str, Any]]],
        dependencies: list[Dependency] | None = None,
        hash_key: str | None = None,
    ):
        self.data = data
        self.dependencies = dependencies or []
        self.hash_key = hash_key
        self.connected = False
        self.opened: list[str] = []
        self.released: list[str] = []
        self.lookups: list[tuple[str, dict[str, Any]]] = []
        self.excluded_requests: list[set[str]] = []
        self.fail_rows_of: set[str] = set()
        self.fail_lookup: set[str] = set()
        self.snapshot_active = False

    def connect(self, url: str) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    @contextmanager
    def rows_of(self, table: str) -> Iterator[Iterator[RowRecord]]:
        if table in self.fail_rows_of:
            raise SourceError("cursor exploded", table=table)
        self.opened.append(table)
        try:
            yield (RowRecord(table=table, data=dict(row)) for row in self.data.get(table, []))
        finally:
            self.released.append(table)

    def lookup_row(self, table: str, column_values: dict[str, Any]) -> RowRecord | None:
        self.lookups.append((table, dict(column_values)))
        if table in self.fail_lookup:
            raise SourceError("lookup exploded", table=table)
        for row in self.data.get(table, []):
            if all(row.get(col) == val for col, val in column_values.items()):
                return RowRecord(table=table, data=dict(row))
        return None

    def list_dependencies(self, excluded_schemas: set[str] | None = None) -> list[Dependency]:
        excluded = set(excluded_schemas or ())
        self.excluded_requests.append(excluded)
        return [dep for dep in self.dependencies if dep.source_schema not in excluded]

    def hash_of(self, row: RowRecord) -> str:
        if self.hash_key:
            return str(row.data[self.hash_key])
        return super().hash_of(row)

    def begin_snapshot(self) -> None:
        self.snapshot_active = True

    def end_snapshot(self) -> None:
        self.snapshot_active = False


def fk(
    source: str,
    columns: tuple[str, ...] | None = None,
    referenced: str | None = None,
    referenced_columns: tuple[str, ...] | None = None,
    name: str | None = None,
) -> Dependency:
    """Build a Dependency from qualified ``schema.table`` names."""
    source_schema, source_table = source.split(".", 1)
    referenced_schema = referenced_table = None
    if referenced:
        referenced_schema, referenced_table = referenced.split(".", 1)
    return Dependency(
        source_schema=source_schema,
        source_table=source_table,
        source_columns=columns,
        referenced_schema=referenced_schema,
        referenced_table=referenced_table,
        referenced_columns=referenced_columns,
        name=name,
    )


@pytest.fixture(autouse=True)
def reset_fkslice_logging() -> Iterator[None]:
    """CLI tests install a stderr handler; undo it so caplog keeps working."""
    yield
    root = logging.getLogger("fkslice")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def users_posts_dependencies() -> list[Dependency]:
    """posts.poster_id -> users.id, plus users registered on its own."""
    return [
        fk("public.posts", ("poster_id",), "public.users", ("id",), name="posts_poster_id_fkey"),
        fk("public.users"),
    ]


@pytest.fixture
def users_posts_source(users_posts_dependencies: list[Dependency]) -> MockSource:
    """Three users, two posts each pointing at a different user; rows hash by id."""
    data = {
        "public.users": [{"id": 0}, {"id": 1}, {"id": 2}],
        "public.posts": [{"id": 3, "poster_id": 0}, {"id": 4, "poster_id": 1}],
    }
    return MockSource(data, users_posts_dependencies, hash_key="id")


@pytest.fixture
def employees_dependencies() -> list[Dependency]:
    """Self-referential employees.manager_id -> employees.id."""
    return [
        fk(
            "public.employees",
            ("manager_id",),
            "public.employees",
            ("id",),
            name="employees_manager_id_fkey",
        ),
    ]


@pytest.fixture
def shop_dependencies() -> list[Dependency]:
    """A small shop schema with a composite FK and two parallel FKs."""
    return [
        fk("public.users"),
        fk("public.products"),
        fk("public.orders", ("user_id",), "public.users", ("id",), name="orders_user_id_fkey"),
        fk(
            "public.order_lines",
            ("order_id",),
            "public.orders",
            ("id",),
            name="order_lines_order_id_fkey",
        ),
        fk(
            "public.order_lines",
            ("product_id",),
            "public.products",
            ("id",),
            name="order_lines_product_id_fkey",
        ),
        fk(
            "public.shipments",
            ("order_id", "line_no"),
            "public.order_lines",
            ("order_id", "line_no"),
            name="shipments_line_fkey",
        ),
        fk(
            "public.messages",
            ("sender_id",),
            "public.users",
            ("id",),
            name="messages_sender_id_fkey",
        ),
        fk(
            "public.messages",
            ("recipient_id",),
            "public.users",
            ("id",),
            name="messages_recipient_id_fkey",
        ),
    ]


@pytest.fixture
def shop_source(shop_dependencies: list[Dependency]) -> MockSource:
    data = {
        "public.users": [
            {"id": 1, "email": "alice@example.com"},
            {"id": 2, "email": "bob@example.com"},
            {"id": 3, "email": "carol@example.com"},
            {"id": 4, "email": "dave@example.com"},
        ],
        "public.products": [
            {"id": 10, "sku": "WIDGET-001"},
            {"id": 11, "sku": "GADGET-001"},
            {"id": 12, "sku": "GIZMO-001"},
        ],
        "public.orders": [
            {"id": 100, "user_id": 3},
            {"id": 101, "user_id": 4},
            {"id": 102, "user_id": None},
        ],
        "public.order_lines": [
            {"order_id": 100, "line_no": 1, "product_id": 12},
            {"order_id": 100, "line_no": 2, "product_id": 11},
            {"order_id": 101, "line_no": 1, "product_id": 10},
        ],
        "public.shipments": [
            {"id": 500, "order_id": 100, "line_no": 2},
            {"id": 501, "order_id": 101, "line_no": 1},
        ],
        "public.messages": [
            {"id": 900, "sender_id": 4, "recipient_id": 3},
            {"id": 901, "sender_id": 1, "recipient_id": 2},
        ],
    }
    return MockSource(data, shop_dependencies)

"""Tests for seed sampling plus FK resolution."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from fkslice.config import ResolutionOrder, SamplingConfig, SamplingStrategy
from fkslice.core.graph import build_graph
from fkslice.core.resolver import (
    AppendOutcome,
    DependencyResolver,
    DependencyResult,
    NoticeKind,
    ResolutionNotice,
    TableAccumulator,
)
from fkslice.exceptions import (
    InvalidSamplingConfigError,
    MaxIterationsReachedError,
    SamplingCancelledError,
    SourceError,
)
from fkslice.models import RowRecord
from fkslice.validation import SubsetValidator
from tests.conftest import MockSource, fk


def first(required_rows=2, max_rows=8, **kwargs) -> SamplingConfig:
    return SamplingConfig(
        required_rows=required_rows,
        max_rows=max_rows,
        seed=0,
        strategy=SamplingStrategy.FIRST,
        **kwargs,
    )


def reservoir(required_rows=2, max_rows=8, seed=0, **kwargs) -> SamplingConfig:
    return SamplingConfig(
        required_rows=required_rows,
        max_rows=max_rows,
        seed=seed,
        strategy=SamplingStrategy.RESERVOIR,
        **kwargs,
    )


def resolve(source: MockSource, config: SamplingConfig, cancel=None) -> DependencyResult:
    graph = build_graph(source.list_dependencies())
    return DependencyResolver(source, config).find_all_dependencies(graph, cancel=cancel)


class CountdownSignal:
    """Reports cancellation from the n-th check onwards."""

    def __init__(self, n: int):
        self.n = n
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls >= self.n


class TestTableAccumulator:
    def row(self, value: int) -> RowRecord:
        return RowRecord(table="public.t", data={"id": value})

    def test_append(self):
        acc = TableAccumulator("public.t", max_rows=2)
        assert acc.try_append(self.row(1), "1") == AppendOutcome.ADDED
        assert len(acc) == 1
        assert not acc.is_full

    def test_duplicate(self):
        acc = TableAccumulator("public.t", max_rows=2)
        acc.try_append(self.row(1), "1")
        assert acc.try_append(self.row(1), "1") == AppendOutcome.DUPLICATE
        assert len(acc) == 1

    def test_full(self):
        acc = TableAccumulator("public.t", max_rows=1)
        acc.try_append(self.row(1), "1")
        assert acc.try_append(self.row(2), "2") == AppendOutcome.FULL
        assert acc.is_full

    def test_duplicate_reported_even_when_full(self):
        acc = TableAccumulator("public.t", max_rows=1)
        acc.try_append(self.row(1), "1")
        assert acc.try_append(self.row(1), "1") == AppendOutcome.DUPLICATE

    def test_concurrent_appends_respect_budget(self):
        acc = TableAccumulator("public.t", max_rows=10)
        rows = [self.row(i % 50) for i in range(200)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(lambda r: acc.try_append(r, str(r.data["id"])), rows))

        assert len(acc) == 10
        assert outcomes.count(AppendOutcome.ADDED) == 10
        assert len({r.data["id"] for r in acc.rows}) == 10


class TestUsersPostsScenario:
    """Two users referenced by two posts, sampled two rows at a time."""

    def test_two_phase(self, users_posts_source):
        result = resolve(users_posts_source, first(required_rows=2, max_rows=8))

        assert result.as_data() == {
            "public.posts": [{"id": 3, "poster_id": 0}, {"id": 4, "poster_id": 1}],
            "public.users": [{"id": 0}, {"id": 1}],
        }
        assert result.sampled_records() == {"public.posts": 2, "public.users": 2}
        assert result.notices == []

    def test_default_config(self, users_posts_source):
        result = resolve(users_posts_source, SamplingConfig(required_rows=2, max_rows=8, seed=0))

        assert result.as_data() == {
            "public.posts": [{"id": 3, "poster_id": 0}, {"id": 4, "poster_id": 1}],
            "public.users": [{"id": 0}, {"id": 1}],
        }
        assert result.notices == []

    def test_interleaved_gives_same_result(self, users_posts_source):
        config = first(required_rows=2, max_rows=8, order=ResolutionOrder.INTERLEAVED)
        result = resolve(users_posts_source, config)

        assert result.as_data() == {
            "public.posts": [{"id": 3, "poster_id": 0}, {"id": 4, "poster_id": 1}],
            "public.users": [{"id": 0}, {"id": 1}],
        }
        # FK pulls already satisfied users, so no draw was needed
        assert "public.users" not in users_posts_source.opened

    def test_lookups_issued_per_reference(self, users_posts_source):
        resolve(users_posts_source, first())
        assert users_posts_source.lookups == [
            ("public.users", {"id": 0}),
            ("public.users", {"id": 1}),
        ]

    def test_cursors_released(self, users_posts_source):
        resolve(users_posts_source, first())
        assert users_posts_source.opened == ["public.posts", "public.users"]
        assert users_posts_source.released == users_posts_source.opened


class TestClosure:
    def test_shop_closure(self, shop_source):
        result = resolve(shop_source, first(required_rows=1, max_rows=8))
        data = result.as_data()

        assert [u["id"] for u in data["public.users"]] == [1, 3, 4]
        assert [p["id"] for p in data["public.products"]] == [10, 12, 11]
        assert [o["id"] for o in data["public.orders"]] == [100]
        assert data["public.shipments"] == [{"id": 500, "order_id": 100, "line_no": 2}]
        assert result.notices == []

    def test_composite_lookup_matches_all_columns(self, shop_source):
        result = resolve(shop_source, first(required_rows=1, max_rows=8))

        assert ("public.order_lines", {"order_id": 100, "line_no": 2}) in shop_source.lookups
        lines = result.as_data()["public.order_lines"]
        assert {"order_id": 100, "line_no": 2, "product_id": 11} in lines

    def test_parallel_edges_both_followed(self, shop_source):
        resolve(shop_source, first(required_rows=1, max_rows=8))
        assert ("public.users", {"id": 4}) in shop_source.lookups
        assert ("public.users", {"id": 3}) in shop_source.lookups

    def test_null_fk_not_followed(self, shop_source):
        result = resolve(shop_source, first(required_rows=3, max_rows=8))

        assert {"id": 102, "user_id": None} in result.as_data()["public.orders"]
        assert all(None not in values.values() for _, values in shop_source.lookups)

    def test_isolated_node_sampled(self):
        source = MockSource(
            {"public.settings": [{"key": "a"}, {"key": "b"}, {"key": "c"}]},
            [fk("public.settings")],
        )
        result = resolve(source, first(required_rows=2))
        assert result.as_data() == {"public.settings": [{"key": "a"}, {"key": "b"}]}

    def test_empty_table_omitted(self):
        source = MockSource({"public.empty": []}, [fk("public.empty")])
        result = resolve(source, first())
        assert result.items == {}
        assert result.total_rows() == 0

    def test_reservoir_sample_validates(self, shop_source):
        config = reservoir(required_rows=2, max_rows=8, seed=7)
        result = resolve(shop_source, config)
        graph = build_graph(shop_source.dependencies)

        validation = SubsetValidator(graph, max_rows=8).validate(result.items, result.notices)
        assert validation.is_valid
        assert all(count <= 8 for count in result.sampled_records().values())


class TestCycles:
    def test_mutual_references_terminate(self):
        source = MockSource(
            {
                "public.a": [{"id": 1, "b_id": 1}, {"id": 2, "b_id": 2}],
                "public.b": [{"id": 1, "a_id": 2}, {"id": 2, "a_id": 1}],
            },
            [
                fk("public.a", ("b_id",), "public.b", ("id",)),
                fk("public.b", ("a_id",), "public.a", ("id",)),
            ],
        )
        result = resolve(source, first(required_rows=1))

        assert [r["id"] for r in result.as_data()["public.a"]] == [1, 2]
        assert [r["id"] for r in result.as_data()["public.b"]] == [1, 2]

    def test_self_reference_chain(self, employees_dependencies):
        source = MockSource(
            {
                "public.employees": [
                    {"id": 4, "manager_id": 3},
                    {"id": 3, "manager_id": 2},
                    {"id": 2, "manager_id": 1},
                    {"id": 1, "manager_id": None},
                ]
            },
            employees_dependencies,
        )
        result = resolve(source, first(required_rows=1))
        assert [r["id"] for r in result.as_data()["public.employees"]] == [4, 3, 2, 1]

    def test_row_referencing_itself(self, employees_dependencies):
        source = MockSource(
            {"public.employees": [{"id": 1, "manager_id": 1}]},
            employees_dependencies,
        )
        result = resolve(source, first(required_rows=1))

        assert result.as_data() == {"public.employees": [{"id": 1, "manager_id": 1}]}
        assert len(source.lookups) == 1


class TestBudget:
    def make_source(self) -> MockSource:
        return MockSource(
            {
                "public.users": [{"id": i} for i in range(10)],
                "public.posts": [{"id": 100 + i, "poster_id": 9 - i} for i in range(10)],
            },
            [
                fk("public.posts", ("poster_id",), "public.users", ("id",), name="posts_fk"),
                fk("public.users"),
            ],
        )

    def test_max_rows_caps_fk_pulls(self):
        result = resolve(self.make_source(), first(required_rows=2, max_rows=3))

        assert [u["id"] for u in result.as_data()["public.users"]] == [0, 1, 9]

    def test_dangling_by_budget_notice(self):
        result = resolve(self.make_source(), first(required_rows=2, max_rows=3))

        assert result.notices == [
            ResolutionNotice(
                kind=NoticeKind.DANGLING_BY_BUDGET,
                table="public.posts",
                referenced_table="public.users",
                column_values={"id": 8},
                fk_name="posts_fk",
            )
        ]

    def test_reservoir_never_exceeds_max_rows(self):
        source = MockSource(
            {
                "public.users": [{"id": i} for i in range(30)],
                "public.posts": [{"id": 100 + i, "poster_id": i} for i in range(30)],
            },
            [fk("public.posts", ("poster_id",), "public.users", ("id",)), fk("public.users")],
        )
        config = reservoir(required_rows=10, max_rows=12, seed=3)
        result = resolve(source, config)

        assert len(result.items["public.users"]) <= 12
        assert len(result.items["public.posts"]) == 10
        graph = build_graph(source.dependencies)
        assert SubsetValidator(graph, max_rows=12).validate(result.items).is_valid

    def test_dangling_by_missing_data_notice(self):
        source = MockSource(
            {"public.posts": [{"id": 1, "poster_id": 99}], "public.users": []},
            [fk("public.posts", ("poster_id",), "public.users", ("id",)), fk("public.users")],
        )
        result = resolve(source, first())

        assert result.as_data() == {"public.posts": [{"id": 1, "poster_id": 99}]}
        (notice,) = result.notices
        assert notice.kind == NoticeKind.DANGLING_BY_MISSING_DATA
        assert notice.column_values == {"id": 99}
        assert "no matching row" in str(notice)


class TestDeduplication:
    def test_identical_rows_kept_once(self):
        source = MockSource(
            {"public.tags": [{"name": "x"}, {"name": "x"}, {"name": "y"}]},
            [fk("public.tags")],
        )
        result = resolve(source, first(required_rows=3))
        assert result.as_data() == {"public.tags": [{"name": "x"}, {"name": "y"}]}

    def test_seeded_row_not_pulled_twice(self, users_posts_source):
        result = resolve(users_posts_source, first())
        ids = [u["id"] for u in result.as_data()["public.users"]]
        assert len(ids) == len(set(ids))


class TestOrder:
    def make_source(self) -> MockSource:
        return MockSource(
            {
                "public.users": [{"id": 0}, {"id": 1}, {"id": 2}],
                "public.posts": [{"id": 3, "poster_id": 2}],
            },
            [fk("public.posts", ("poster_id",), "public.users", ("id",)), fk("public.users")],
            hash_key="id",
        )

    def test_two_phase_seeds_before_resolving(self):
        result = resolve(self.make_source(), first(required_rows=2))
        assert [u["id"] for u in result.as_data()["public.users"]] == [0, 1, 2]

    def test_interleaved_tops_up_seed_draw(self):
        config = first(required_rows=2, order=ResolutionOrder.INTERLEAVED)
        result = resolve(self.make_source(), config)
        assert [u["id"] for u in result.as_data()["public.users"]] == [2, 0]


class TestReproducibility:
    def test_same_seed_same_result(self, shop_source):
        config = reservoir(required_rows=2, max_rows=5, seed=11)
        first_run = resolve(shop_source, config).as_data()
        second_run = resolve(shop_source, config).as_data()
        assert first_run == second_run

    def test_seed_sample_independent_of_other_tables(self):
        rows = {"public.a": [{"id": i} for i in range(50)], "public.b": [{"id": 1}]}
        config = reservoir(required_rows=3, max_rows=8, seed=5)

        alone = resolve(MockSource(rows, [fk("public.a")]), config)
        with_other = resolve(MockSource(rows, [fk("public.b"), fk("public.a")]), config)

        assert alone.as_data()["public.a"] == with_other.as_data()["public.a"]


class TestLogContext:
    """Seed and resolution records carry the table they concern."""

    def test_seed_records_tagged_with_table(self, users_posts_source, caplog):
        with caplog.at_level(logging.DEBUG, logger="fkslice"):
            resolve(users_posts_source, first())

        seeded = [r for r in caplog.records if r.getMessage() == "Seeded table"]
        assert [r.context["table"] for r in seeded] == ["public.posts", "public.users"]
        assert seeded[0].context["drawn"] == 2

    def test_pulled_row_tagged_with_referencing_table(self, caplog):
        source = MockSource(
            {
                "public.users": [{"id": 0}, {"id": 1}, {"id": 2}],
                "public.posts": [{"id": 3, "poster_id": 2}],
            },
            [fk("public.posts", ("poster_id",), "public.users", ("id",)), fk("public.users")],
            hash_key="id",
        )
        with caplog.at_level(logging.DEBUG, logger="fkslice"):
            resolve(source, first())

        (record,) = [r for r in caplog.records if r.getMessage() == "Pulled referenced row"]
        assert record.context["table"] == "public.posts"
        assert record.context["to_table"] == "public.users"

    def test_unresolved_reference_tagged(self, caplog):
        source = MockSource(
            {"public.posts": [{"id": 1, "poster_id": 99}], "public.users": []},
            [fk("public.posts", ("poster_id",), "public.users", ("id",)), fk("public.users")],
        )
        with caplog.at_level(logging.DEBUG, logger="fkslice"):
            resolve(source, first())

        (record,) = [r for r in caplog.records if r.getMessage() == "Unresolved reference"]
        assert record.context["table"] == "public.posts"
        assert record.context["kind"] == "dangling_by_missing_data"


class TestErrors:
    def test_invalid_config_rejected(self, users_posts_source):
        with pytest.raises(InvalidSamplingConfigError):
            DependencyResolver(users_posts_source, SamplingConfig(required_rows=0))

    def test_rows_of_error_propagates(self, users_posts_source):
        users_posts_source.fail_rows_of.add("public.users")
        with pytest.raises(SourceError) as exc_info:
            resolve(users_posts_source, first())
        assert exc_info.value.table == "public.users"

    def test_lookup_error_propagates(self, users_posts_source):
        users_posts_source.fail_lookup.add("public.users")
        with pytest.raises(SourceError):
            resolve(users_posts_source, first())
        assert users_posts_source.released == users_posts_source.opened

    def test_max_iterations(self, employees_dependencies):
        source = MockSource(
            {"public.employees": [{"id": i, "manager_id": i - 1 or None} for i in range(5, 0, -1)]},
            employees_dependencies,
        )
        with pytest.raises(MaxIterationsReachedError) as exc_info:
            resolve(source, first(required_rows=1, max_iterations=2))
        assert exc_info.value.max_iterations == 2

    def test_max_iterations_not_reached(self, users_posts_source):
        result = resolve(users_posts_source, first(max_iterations=4))
        assert result.resolved_rows == 4


class TestCancellation:
    def test_cancel_before_start(self, users_posts_source):
        event = threading.Event()
        event.set()

        with pytest.raises(SamplingCancelledError) as exc_info:
            resolve(users_posts_source, first(), cancel=event)

        assert exc_info.value.resolved_rows == 0
        assert users_posts_source.opened == []

    def test_cancel_mid_resolution(self, users_posts_source):
        # Two seed-draw checks, then one check per resolved row
        signal = CountdownSignal(4)

        with pytest.raises(SamplingCancelledError) as exc_info:
            resolve(users_posts_source, first(), cancel=signal)

        assert exc_info.value.resolved_rows == 1
        assert users_posts_source.released == users_posts_source.opened

    def test_unset_event_runs_to_completion(self, users_posts_source):
        result = resolve(users_posts_source, first(), cancel=threading.Event())
        assert result.total_rows() == 4


class TestDependencyResult:
    def test_counts(self):
        result = DependencyResult(
            items={
                "public.users": [RowRecord("public.users", {"id": 1})],
                "public.posts": [
                    RowRecord("public.posts", {"id": 2}),
                    RowRecord("public.posts", {"id": 3}),
                ],
            }
        )
        assert result.sampled_records() == {"public.users": 1, "public.posts": 2}
        assert result.total_rows() == 3
        assert result.table_count() == 2

    def test_notice_to_dict(self):
        notice = ResolutionNotice(
            kind=NoticeKind.DANGLING_BY_BUDGET,
            table="public.posts",
            referenced_table="public.users",
            column_values={"id": 8},
            fk_name="posts_fk",
        )
        assert notice.to_dict() == {
            "kind": "dangling_by_budget",
            "table": "public.posts",
            "referenced_table": "public.users",
            "column_values": {"id": 8},
            "fk_name": "posts_fk",
        }
        assert str(notice) == (
            "public.posts -> public.users(id=8) via FK 'posts_fk': table is at max_rows"
        )

"""
Tests for monthly grouping, tallying and the reactive dashboard.
"""

from datetime import UTC

import pytest

from skincare.domain.models import (
    CreateEvaluationInput,
    EvaluationEntry,
    EvaluationStatus,
    StatusCounts,
)
from skincare.services.aggregation import (
    MonthlyDashboard,
    format_month,
    group_by_month,
    status_breakdown,
    tally,
)
from skincare.services.entry_store import EntryStore
from skincare.services.local_storage import MemoryStorage

DONE = EvaluationStatus.DONE
NOT_DONE = EvaluationStatus.NOT_DONE
NA = EvaluationStatus.NOT_APPLICABLE


def _entry(
    entry_id: str, month: str, adpro: EvaluationStatus, vaseline: EvaluationStatus
) -> EvaluationEntry:
    return EvaluationEntry(
        id=entry_id,
        created_at=f"{month}-01T00:00:00.000Z",
        month_key=month,
        evaluator_name="Sato",
        status_adpro=adpro,
        status_vaseline=vaseline,
    )


@pytest.fixture
def example_entries() -> list[EvaluationEntry]:
    return [
        _entry("1", "2024-05", DONE, NA),
        _entry("2", "2024-05", NOT_DONE, DONE),
        _entry("3", "2024-04", DONE, DONE),
    ]


class TestGroupByMonth:
    def test_groups_ordered_newest_first(self, example_entries: list[EvaluationEntry]) -> None:
        groups = group_by_month(example_entries)

        assert [g.month_key for g in groups] == ["2024-05", "2024-04"]
        assert [e.id for e in groups[0].entries] == ["1", "2"]
        assert [e.id for e in groups[1].entries] == ["3"]

    def test_order_independent_of_input_order(self) -> None:
        entries = [
            _entry("a", "2023-12", DONE, DONE),
            _entry("b", "2024-10", DONE, DONE),
            _entry("c", "2024-02", DONE, DONE),
        ]
        assert [g.month_key for g in group_by_month(entries)] == ["2024-10", "2024-02", "2023-12"]

    def test_empty_input(self) -> None:
        assert group_by_month([]) == []


class TestTally:
    def test_worked_example(self, example_entries: list[EvaluationEntry]) -> None:
        may = group_by_month(example_entries)[0]

        result = tally(may.entries)

        assert result.adpro == StatusCounts(done=1, not_done=1, not_applicable=0)
        assert result.vaseline == StatusCounts(done=1, not_done=0, not_applicable=1)
        assert result.total == StatusCounts(done=2, not_done=1, not_applicable=1)
        assert result.target_count == 3
        assert result.entry_count == 2

    def test_all_not_applicable_contributes_nothing(self) -> None:
        result = tally([_entry("1", "2024-05", NA, NA)])
        assert result.target_count == 0
        assert result.total.not_applicable == 2

    def test_empty_month(self) -> None:
        result = tally([])
        assert result.target_count == 0
        assert result.entry_count == 0
        assert result.total == StatusCounts()

    def test_status_breakdown_skips_zero_counts(self) -> None:
        counts = StatusCounts(done=2, not_done=0, not_applicable=1)
        assert status_breakdown(counts) == [(DONE, 2), (NA, 1)]


class TestFormatMonth:
    @pytest.mark.parametrize(
        "key, label",
        [
            ("2024-05", "2024年05月"),
            ("2024-12", "2024年12月"),
            ("bad", "bad"),
            ("2024-00", "2024-00"),
            ("", ""),
        ],
    )
    def test_format_month(self, key: str, label: str) -> None:
        assert format_month(key) == label


class TestMonthlyDashboard:
    @pytest.fixture
    def store(self) -> EntryStore:
        return EntryStore(MemoryStorage(), tz=UTC)

    @staticmethod
    def _add(store: EntryStore, created_at: str, adpro: EvaluationStatus = DONE) -> EvaluationEntry:
        return store.add(
            CreateEvaluationInput(
                evaluator_name="Sato",
                status_adpro=adpro,
                status_vaseline=NA,
                created_at=created_at,
            )
        )

    def test_empty_store_has_no_selection(self, store: EntryStore) -> None:
        dashboard = MonthlyDashboard(store)
        assert dashboard.selected_month is None
        assert dashboard.monthly_entries == ()
        assert dashboard.summary.entry_count == 0

    def test_selects_newest_month_and_recomputes(self, store: EntryStore) -> None:
        dashboard = MonthlyDashboard(store)

        self._add(store, "2024-04-10T00:00:00Z")
        assert dashboard.selected_month == "2024-04"

        self._add(store, "2024-05-10T00:00:00Z", adpro=NOT_DONE)
        assert dashboard.month_keys == ["2024-05", "2024-04"]
        # The previous selection still exists, so it is kept
        assert dashboard.selected_month == "2024-04"

    def test_selection_falls_back_when_month_disappears(self, store: EntryStore) -> None:
        self._add(store, "2024-04-10T00:00:00Z")
        may = self._add(store, "2024-05-10T00:00:00Z")
        dashboard = MonthlyDashboard(store)
        assert dashboard.selected_month == "2024-05"

        store.remove(may.id)

        assert dashboard.selected_month == "2024-04"

    def test_select_and_summary(self, store: EntryStore) -> None:
        self._add(store, "2024-04-10T00:00:00Z")
        self._add(store, "2024-05-10T00:00:00Z", adpro=NOT_DONE)
        self._add(store, "2024-05-11T00:00:00Z")
        dashboard = MonthlyDashboard(store)

        assert dashboard.summary.entry_count == 2
        assert dashboard.summary.adpro.not_done == 1

        dashboard.select("2024-04")
        assert dashboard.summary.entry_count == 1
        assert dashboard.summary.target_count == 1

    def test_select_unknown_month_raises(self, store: EntryStore) -> None:
        dashboard = MonthlyDashboard(store)
        with pytest.raises(KeyError):
            dashboard.select("1999-01")

    def test_listeners_notified_and_close_detaches(self, store: EntryStore) -> None:
        dashboard = MonthlyDashboard(store)
        calls: list[str | None] = []
        dashboard.on_change(lambda d: calls.append(d.selected_month))

        self._add(store, "2024-04-10T00:00:00Z")
        dashboard.close()
        self._add(store, "2024-05-10T00:00:00Z")

        assert calls == ["2024-04"]
        assert dashboard.month_keys == ["2024-04"]

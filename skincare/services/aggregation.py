"""
Monthly aggregation of evaluation entries.

Everything here except ``MonthlyDashboard`` is a pure function of its input;
aggregates are recomputed from the full collection on every change, nothing
is cached incrementally.
"""

from collections.abc import Callable, Iterable

from skincare.domain.models import (
    ChecklistItem,
    EvaluationEntry,
    EvaluationStatus,
    MonthGroup,
    MonthlyTally,
    StatusCounts,
)
from skincare.services.base import logger
from skincare.services.entry_store import EntryStore


def group_by_month(entries: Iterable[EvaluationEntry]) -> list[MonthGroup]:
    """Group by exact month key, newest month first; entry order is preserved."""
    groups: dict[str, list[EvaluationEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.month_key, []).append(entry)

    return [
        MonthGroup(month_key=month_key, entries=tuple(groups[month_key]))
        for month_key in sorted(groups, reverse=True)
    ]


def tally(entries: Iterable[EvaluationEntry]) -> MonthlyTally:
    """Status counts per checklist item, their sum and the target count."""
    adpro = StatusCounts()
    vaseline = StatusCounts()
    target_count = 0
    entry_count = 0

    for entry in entries:
        adpro.add(entry.status_for(ChecklistItem.ADPRO))
        vaseline.add(entry.status_for(ChecklistItem.VASELINE))
        target_count += entry.actionable_items
        entry_count += 1

    return MonthlyTally(
        adpro=adpro,
        vaseline=vaseline,
        total=adpro + vaseline,
        target_count=target_count,
        entry_count=entry_count,
    )


def status_breakdown(counts: StatusCounts) -> list[tuple[EvaluationStatus, int]]:
    """Non-zero statuses in display order, as used for pie charts."""
    return [(status, counts.get(status)) for status in EvaluationStatus if counts.get(status) > 0]


def format_month(month_key: str) -> str:
    """``2024-05`` -> ``2024年05月``; anything unparsable is returned as is."""
    try:
        year, month = (int(part) for part in month_key.split("-"))
    except ValueError:
        return month_key
    if not year or not month:
        return month_key
    return f"{year}年{month:02d}月"


class MonthlyDashboard:
    """
    Reactive month-by-month view over an ``EntryStore``.

    Recomputes the month groups on every store change. The selected month is
    kept while it still has entries; otherwise the newest month is selected,
    or none when the store is empty.
    """

    def __init__(self, store: EntryStore) -> None:
        self.store = store
        self.months: list[MonthGroup] = []
        self.selected_month: str | None = None
        self._listeners: list[Callable[["MonthlyDashboard"], None]] = []
        self.logger = logger.bind(component="monthly_dashboard")

        self._recompute(store.entries)
        self._unsubscribe = store.subscribe(self._recompute)

    @property
    def month_keys(self) -> list[str]:
        return [group.month_key for group in self.months]

    @property
    def monthly_entries(self) -> tuple[EvaluationEntry, ...]:
        for group in self.months:
            if group.month_key == self.selected_month:
                return group.entries
        return ()

    @property
    def summary(self) -> MonthlyTally:
        return tally(self.monthly_entries)

    def select(self, month_key: str) -> None:
        if month_key not in self.month_keys:
            raise KeyError(f"No entries for month {month_key}")
        self.selected_month = month_key
        self._emit()

    def on_change(self, listener: Callable[["MonthlyDashboard"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        self._unsubscribe()
        self._listeners.clear()

    def _recompute(self, entries: tuple[EvaluationEntry, ...]) -> None:
        self.months = group_by_month(entries)
        keys = self.month_keys
        if not keys:
            self.selected_month = None
        elif self.selected_month not in keys:
            self.selected_month = keys[0]

        self.logger.debug(
            "dashboard_recomputed", months=len(keys), selected_month=self.selected_month
        )
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                self.logger.exception("dashboard_listener_failed", error=str(e))

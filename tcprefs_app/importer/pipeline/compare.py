"""
Cross-connection preference comparison.

A comparison aligns one primary connection against any number of secondary
connections over a fixed universe of preference names. Each column holds a
name -> values snapshot taken from the store, optionally refreshed by
re-importing that connection first. Column refreshes are independent: a
failing column records its own error and never aborts the others.
"""

from __future__ import annotations

import enum
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tcprefs_app.importer.adapters import PreferenceSource, create_teamcenter_client
from tcprefs_app.importer.metrics import record_compare_refresh
from tcprefs_app.importer.pipeline.reconcile import (
    ImportAlreadyRunning,
    LoginFailed,
    PreferenceImportError,
    import_all,
)
from tcprefs_app.models import Connection, Preference, as_utc, db, utcnow
from tcprefs_app.utils.logging_config import get_logger
from tcprefs_app.utils.text import locale_sort_key, matches_all_tokens, search_tokens

NAME_CHUNK_SIZE = 500

Snapshot = Dict[str, List[str]]


class RowStatus(str, enum.Enum):
    SAME = "same"
    DIFFERENT = "different"
    ONLY_PRIMARY = "only_primary"
    ONLY_SECONDARY = "only_secondary"


def classify(primary_values: Optional[Sequence[str]], secondary_values: Optional[Sequence[str]]) -> RowStatus:
    """Compare one name's values in the primary and one secondary column (order-sensitive)."""
    if primary_values is None and secondary_values is None:
        return RowStatus.SAME
    if primary_values is None:
        return RowStatus.ONLY_SECONDARY
    if secondary_values is None:
        return RowStatus.ONLY_PRIMARY
    if list(primary_values) == list(secondary_values):
        return RowStatus.SAME
    return RowStatus.DIFFERENT


def readable_refresh_error(error: BaseException) -> str:
    """Collapse a refresh failure into the message shown for a column."""
    if isinstance(error, ImportAlreadyRunning):
        return "Import already running"
    if isinstance(error, LoginFailed):
        return "Login failed"
    message = str(error).lower()
    if "login" in message or "auth" in message or "unauthoriz" in message:
        return "Login failed"
    return "Fetch data failed"


def _chunked(names: Sequence[str], size: int = NAME_CHUNK_SIZE) -> Iterator[Sequence[str]]:
    for start in range(0, len(names), size):
        yield names[start : start + size]


def snapshot_from_store(connection_id: str, names: Iterable[str], *, session: Session | None = None) -> Snapshot:
    """Map each stored preference name in ``names`` to its values (absent values become ``[]``)."""
    session = session or db.session
    unique_names = sorted(set(names))
    snapshot: Snapshot = {}
    for chunk in _chunked(unique_names):
        rows = session.execute(
            select(Preference.name, Preference.values)
            .where(Preference.connection_id == connection_id)
            .where(Preference.name.in_(chunk))
        )
        for name, values in rows:
            snapshot[name] = list(values or [])
    return snapshot


def snapshot_time(connection_id: str, names: Iterable[str], *, session: Session | None = None) -> datetime | None:
    """
    Newest ``last_imported_at`` among the universe's preferences in the
    connection, else the connection's last completed run.
    """
    session = session or db.session
    unique_names = sorted(set(names))
    newest: datetime | None = None
    for chunk in _chunked(unique_names):
        value = session.scalar(
            select(func.max(Preference.last_imported_at))
            .where(Preference.connection_id == connection_id)
            .where(Preference.name.in_(chunk))
        )
        value = as_utc(value)
        if value is not None and (newest is None or value > newest):
            newest = value
    if newest is not None:
        return newest
    completed = session.scalar(select(Connection.last_import_completed_at).where(Connection.id == connection_id))
    return as_utc(completed)


@dataclass
class ComparisonColumn:
    connection_id: str
    title: str
    snapshot: Snapshot = field(default_factory=dict)
    snapshot_at: datetime | None = None
    fresh: bool = False
    error: str | None = None


@dataclass(frozen=True)
class ComparisonRow:
    name: str
    category: str
    primary_values: Optional[Tuple[str, ...]]
    secondary_values: Tuple[Optional[Tuple[str, ...]], ...]
    statuses: Tuple[RowStatus, ...]

    @property
    def has_difference(self) -> bool:
        return any(status is not RowStatus.SAME for status in self.statuses)


def _default_adapter_factory(connection: Connection) -> PreferenceSource:
    return create_teamcenter_client()


class ComparisonEngine:
    """Align a primary connection's snapshot against secondary connections."""

    def __init__(
        self,
        primary_connection_id: str,
        secondary_connection_ids: Sequence[str],
        preference_names: Iterable[str],
        *,
        adapter_factory: Callable[[Connection], PreferenceSource] | None = None,
        batch_size: int | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.primary_connection_id = primary_connection_id
        self.secondary_connection_ids = list(secondary_connection_ids)
        self.preference_names = list(dict.fromkeys(preference_names))
        self.adapter_factory = adapter_factory or _default_adapter_factory
        self.batch_size = batch_size
        if max_workers is None:
            max_workers = int(current_app.config.get("PREFS_COMPARE_MAX_WORKERS", 1))
        self.max_workers = max(1, max_workers)
        self.logger = get_logger(__name__)

        self.primary: ComparisonColumn | None = None
        self.secondaries: List[ComparisonColumn] = []
        self._categories: Dict[Tuple[str, str], str] | None = None

    # Loading --------------------------------------------------------------------

    def load(self) -> "ComparisonEngine":
        """Build every column from the store; no column is marked fresh."""
        self.primary = self._stored_column(self.primary_connection_id)
        self.secondaries = [self._stored_column(connection_id) for connection_id in self.secondary_connection_ids]
        self._categories = None
        return self

    def _stored_column(self, connection_id: str) -> ComparisonColumn:
        connection = db.session.get(Connection, connection_id)
        if connection is None:
            raise ValueError(f"Unknown connection id: {connection_id}")
        return ComparisonColumn(
            connection_id=connection_id,
            title=connection.title,
            snapshot=snapshot_from_store(connection_id, self.preference_names),
            snapshot_at=snapshot_time(connection_id, self.preference_names),
        )

    def _ensure_loaded(self) -> None:
        if self.primary is None:
            self.load()

    # Refresh --------------------------------------------------------------------

    def refresh_primary(self) -> ComparisonColumn:
        self._ensure_loaded()
        self._refresh_sequential(self.primary)
        return self.primary

    def refresh_secondary(self, index: int) -> ComparisonColumn:
        self._ensure_loaded()
        if not 0 <= index < len(self.secondaries):
            raise IndexError(f"No secondary column at index {index}")
        self._refresh_sequential(self.secondaries[index])
        return self.secondaries[index]

    def refresh_all_secondaries(self) -> List[ComparisonColumn]:
        self._ensure_loaded()
        self.refresh_secondaries(range(len(self.secondaries)))
        return list(self.secondaries)

    def refresh_secondaries(self, indexes: Iterable[int]) -> None:
        """
        Refresh the given secondary columns, in parallel when ``max_workers`` > 1.

        Each connection is imported once; columns repeating a connection share
        that import's result.
        """
        self._ensure_loaded()
        groups: Dict[str, List[ComparisonColumn]] = {}
        for index in indexes:
            column = self.secondaries[index]
            groups.setdefault(column.connection_id, []).append(column)
        if self.max_workers == 1 or len(groups) <= 1:
            for connection_id, columns in groups.items():
                self._apply_refresh(columns, lambda: self._import_and_snapshot(connection_id))
            return

        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="tcprefs-compare") as pool:
            futures = [
                (columns, pool.submit(self._refresh_in_app_context, app, connection_id))
                for connection_id, columns in groups.items()
            ]
            # Column state is only mutated here, on the calling thread
            for columns, future in futures:
                self._apply_refresh(columns, future.result)

    def _refresh_sequential(self, column: ComparisonColumn) -> None:
        self._apply_refresh([column], lambda: self._import_and_snapshot(column.connection_id))

    def _apply_refresh(
        self,
        columns: Sequence[ComparisonColumn],
        produce: Callable[[], Tuple[Snapshot, datetime | None]],
    ) -> None:
        try:
            snapshot, taken_at = produce()
        except Exception as exc:
            for column in columns:
                self._mark_failed(column, exc)
        else:
            for column in columns:
                self._mark_fresh(column, dict(snapshot), taken_at)

    def _refresh_in_app_context(self, app, connection_id: str) -> Tuple[Snapshot, datetime | None]:
        with app.app_context():
            return self._import_and_snapshot(connection_id)

    def _import_and_snapshot(self, connection_id: str) -> Tuple[Snapshot, datetime | None]:
        connection = db.session.get(Connection, connection_id)
        if connection is None:
            raise PreferenceImportError(f"Unknown connection id: {connection_id}", connection_id=connection_id)
        import_all(connection, adapter=self.adapter_factory(connection), batch_size=self.batch_size)
        snapshot = snapshot_from_store(connection_id, self.preference_names)
        taken_at = snapshot_time(connection_id, self.preference_names) or utcnow()
        return snapshot, taken_at

    def _mark_fresh(self, column: ComparisonColumn, snapshot: Snapshot, taken_at: datetime | None) -> None:
        column.snapshot = snapshot
        column.snapshot_at = taken_at
        column.fresh = True
        column.error = None
        self._categories = None
        record_compare_refresh("success")

    def _mark_failed(self, column: ComparisonColumn, error: Exception) -> None:
        column.fresh = False
        column.error = readable_refresh_error(error)
        record_compare_refresh("failure")
        self.logger.warning(
            "Comparison column refresh failed",
            extra={
                "prefs_connection_id": column.connection_id,
                "prefs_column_title": column.title,
                "prefs_column_error": column.error,
                "prefs_error": str(error),
            },
        )

    # Classification -------------------------------------------------------------

    classify = staticmethod(classify)

    def row_statuses(self, name: str) -> Tuple[RowStatus, ...]:
        self._ensure_loaded()
        primary_values = self.primary.snapshot.get(name)
        return tuple(classify(primary_values, column.snapshot.get(name)) for column in self.secondaries)

    def row_has_any_diff(self, name: str) -> bool:
        return any(status is not RowStatus.SAME for status in self.row_statuses(name))

    def _category_map(self) -> Dict[Tuple[str, str], str]:
        if self._categories is None:
            connection_ids = [self.primary_connection_id, *self.secondary_connection_ids]
            categories: Dict[Tuple[str, str], str] = {}
            for chunk in _chunked(sorted(set(self.preference_names))):
                rows = db.session.execute(
                    select(Preference.connection_id, Preference.name, Preference.category)
                    .where(Preference.connection_id.in_(connection_ids))
                    .where(Preference.name.in_(chunk))
                )
                for connection_id, name, category in rows:
                    categories[(connection_id, name)] = category
            self._categories = categories
        return self._categories

    def category_for(self, name: str) -> str:
        """Category from the primary connection, else the first secondary that has the name."""
        categories = self._category_map()
        for connection_id in (self.primary_connection_id, *self.secondary_connection_ids):
            category = categories.get((connection_id, name))
            if category is not None:
                return category
        return ""

    def matches_search(self, name: str, text: str | None) -> bool:
        """All whitespace-separated tokens must occur in the name, category or any column's values."""
        tokens = search_tokens(text)
        if not tokens:
            return True
        self._ensure_loaded()
        haystack = [name, self.category_for(name), " ".join(self.primary.snapshot.get(name) or [])]
        haystack.extend(" ".join(column.snapshot.get(name) or []) for column in self.secondaries)
        return matches_all_tokens(tokens, haystack)

    def rows(self, *, only_differences: bool = False, search: str | None = None) -> List[ComparisonRow]:
        self._ensure_loaded()
        rows: List[ComparisonRow] = []
        for name in sorted(self.preference_names, key=locale_sort_key):
            primary_values = self.primary.snapshot.get(name)
            row = ComparisonRow(
                name=name,
                category=self.category_for(name),
                primary_values=tuple(primary_values) if primary_values is not None else None,
                secondary_values=tuple(
                    tuple(column.snapshot[name]) if name in column.snapshot else None
                    for column in self.secondaries
                ),
                statuses=self.row_statuses(name),
            )
            if only_differences and not row.has_difference:
                continue
            if search and not self.matches_search(name, search):
                continue
            rows.append(row)
        return rows


def build_comparison(
    primary_connection_id: str,
    secondary_connection_ids: Sequence[str],
    preference_names: Iterable[str],
    *,
    refresh_primary: bool = False,
    refresh_secondaries: bool | Iterable[int] = False,
    adapter_factory: Callable[[Connection], PreferenceSource] | None = None,
    batch_size: int | None = None,
    max_workers: int | None = None,
) -> ComparisonEngine:
    """
    Load a comparison and optionally re-import columns first.

    ``refresh_secondaries`` is either a flag for all secondary columns or the
    indexes of the ones to refresh.
    """
    engine = ComparisonEngine(
        primary_connection_id,
        secondary_connection_ids,
        preference_names,
        adapter_factory=adapter_factory,
        batch_size=batch_size,
        max_workers=max_workers,
    ).load()
    if refresh_primary:
        engine.refresh_primary()
    if refresh_secondaries is True:
        engine.refresh_all_secondaries()
    elif refresh_secondaries:
        engine.refresh_secondaries(refresh_secondaries)
    return engine

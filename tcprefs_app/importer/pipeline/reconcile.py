"""
Preference import and reconciliation.

Fetches every preference of a connection from Teamcenter, diffs it against the
local store by fingerprint and records creations, changes and revision history
in bounded batches. Committed batches stay committed when a later step fails;
a failed run can leave the store partially updated.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, List, NoReturn, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tcprefs_app.importer.adapters import (
    PreferenceSource,
    RawPreferenceEntry,
    TeamcenterAdapterError,
    create_teamcenter_client,
)
from tcprefs_app.importer.metrics import record_batch_flush, record_import_counts, record_import_run
from tcprefs_app.importer.pipeline.fingerprint import fingerprint_entry
from tcprefs_app.models import Connection, Preference, PreferenceRevision, as_utc, db, preference_key, utcnow
from tcprefs_app.utils.logging_config import get_logger
from tcprefs_app.utils.text import locale_sort_key

DEFAULT_BATCH_SIZE = 2000
WILDCARD_PATTERNS: Sequence[str] = ("*",)


class PreferenceImportError(RuntimeError):
    """Base error for a failed import run."""

    def __init__(self, message: str, *, connection_id: str | None = None) -> None:
        super().__init__(message)
        self.connection_id = connection_id


class LoginFailed(PreferenceImportError):
    """Teamcenter did not yield a valid session for the connection's credentials."""


class FetchFailed(PreferenceImportError):
    """Authenticated, but the preference listing could not be retrieved."""


class StoreWriteError(PreferenceImportError):
    """A batch flush or the final save failed."""


class ImportCancelled(PreferenceImportError):
    """The run was cancelled or timed out at a batch boundary."""


class ImportAlreadyRunning(PreferenceImportError):
    """Another import for the same connection is in progress in this process."""


@dataclass
class ImportSummary:
    connection_id: str
    processed: int = 0
    created: int = 0
    changed: int = 0
    unchanged: int = 0
    missing_keys: List[str] = field(default_factory=list)
    run_started_at: datetime | None = None
    run_completed_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "connection_id": self.connection_id,
            "processed": self.processed,
            "created": self.created,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "missing": len(self.missing_keys),
            "run_started_at": self.run_started_at.isoformat() if self.run_started_at else None,
            "run_completed_at": self.run_completed_at.isoformat() if self.run_completed_at else None,
        }


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


_locks_guard = threading.Lock()
_connection_locks: dict[str, _LockEntry] = {}


@contextmanager
def _connection_lock(connection_id: str) -> Iterator[threading.Lock]:
    """Yield the per-connection import lock; the entry is dropped once no caller uses it."""
    with _locks_guard:
        entry = _connection_locks.get(connection_id)
        if entry is None:
            entry = _connection_locks[connection_id] = _LockEntry()
        entry.users += 1
    try:
        yield entry.lock
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                _connection_locks.pop(connection_id, None)


def _config_value(name: str, default):
    try:
        from flask import current_app

        return current_app.config.get(name, default)
    except RuntimeError:
        # No Flask app context
        return default


class PreferenceImporter:
    """Reconcile one connection's remote preferences into the store."""

    def __init__(
        self,
        connection: Connection,
        *,
        adapter: PreferenceSource | None = None,
        batch_size: int | None = None,
        session: Session | None = None,
        clock: Callable[[], datetime] | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if batch_size is None:
            batch_size = int(_config_value("PREFS_IMPORT_BATCH_SIZE", DEFAULT_BATCH_SIZE))
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if timeout is None:
            timeout = float(_config_value("PREFS_IMPORT_TIMEOUT_SECONDS", 0) or 0)

        self.connection = connection
        self.connection_id = connection.id
        self.adapter = adapter or create_teamcenter_client()
        self.batch_size = batch_size
        self.session = session or db.session
        self.clock = clock or utcnow
        self.timeout = timeout if timeout and timeout > 0 else None
        self.cancel_event = cancel_event
        self.logger = get_logger(__name__)
        self._deadline: float | None = None

    def execute(self) -> ImportSummary:
        with _connection_lock(self.connection_id) as lock:
            if not lock.acquire(blocking=False):
                raise ImportAlreadyRunning(
                    f"An import for connection {self.connection_id} is already running.",
                    connection_id=self.connection_id,
                )
            try:
                return self._run()
            finally:
                lock.release()

    # Run stages -------------------------------------------------------------------

    def _run(self) -> ImportSummary:
        if self.timeout is not None:
            self._deadline = time.monotonic() + self.timeout

        run_start = self._now()
        summary = ImportSummary(connection_id=self.connection_id, run_started_at=run_start)
        self._stamp_run_start(run_start)
        self.logger.info("Preference import started", extra=self._log_context(batch_size=self.batch_size))

        entries = self._fetch_entries()
        entries.sort(key=lambda entry: locale_sort_key(entry.name))

        unseen_keys = set(
            self.session.scalars(select(Preference.key).where(Preference.connection_id == self.connection_id))
        )

        pending = 0
        for entry in entries:
            key = preference_key(self.connection_id, entry.name)
            unseen_keys.discard(key)
            action = self._apply_entry(key, entry)
            if action == "created":
                summary.created += 1
            elif action == "changed":
                summary.changed += 1
            else:
                summary.unchanged += 1

            summary.processed += 1
            pending += 1
            if pending >= self.batch_size:
                self._flush(summary, pending)
                pending = 0
                self._check_cancelled(summary)

        if pending > 0:
            self._flush(summary, pending)
            self._check_cancelled(summary)

        run_end = self._now()
        self._finish_run(run_start, run_end)

        summary.missing_keys = sorted(unseen_keys)
        summary.run_completed_at = run_end
        record_import_run("succeeded")
        record_import_counts(created=summary.created, changed=summary.changed, unchanged=summary.unchanged)
        self.logger.info(
            "Preference import completed",
            extra=self._log_context(
                processed=summary.processed,
                created=summary.created,
                changed=summary.changed,
                unchanged=summary.unchanged,
                missing=len(summary.missing_keys),
            ),
        )
        return summary

    def _stamp_run_start(self, run_start: datetime) -> None:
        self.connection.last_import_started_at = run_start
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            self.logger.warning(
                "Could not persist import start time; continuing",
                exc_info=True,
                extra=self._log_context(),
            )

    def _fetch_entries(self) -> list[RawPreferenceEntry]:
        connection = self.connection
        try:
            tc_session = self.adapter.login(connection.url, connection.username, connection.password)
        except TeamcenterAdapterError as exc:
            self._fail_login(str(exc))
        if tc_session is None:
            self._fail_login("Teamcenter returned no session")

        try:
            entries = self.adapter.fetch_preferences(tc_session, list(WILDCARD_PATTERNS), True)
        except TeamcenterAdapterError as exc:
            self._fail_fetch(str(exc))
        if entries is None:
            self._fail_fetch("Teamcenter returned no preference list")
        return list(entries)

    def _fail_login(self, reason: str) -> NoReturn:
        record_import_run("login_failed")
        self.logger.error("Teamcenter login failed", extra=self._log_context(reason=reason))
        raise LoginFailed(f"Login failed: {reason}", connection_id=self.connection_id)

    def _fail_fetch(self, reason: str) -> NoReturn:
        record_import_run("fetch_failed")
        self.logger.error("Teamcenter preference fetch failed", extra=self._log_context(reason=reason))
        raise FetchFailed(f"Fetch data failed: {reason}", connection_id=self.connection_id)

    def _apply_entry(self, key: str, entry: RawPreferenceEntry) -> str:
        new_fingerprint = fingerprint_entry(entry)
        preference = self.session.scalar(select(Preference).where(Preference.key == key))
        now = self._now()

        if preference is not None:
            preference.last_imported_at = now
            if preference.fingerprint == new_fingerprint:
                return "unchanged"
            self._assign_fields(preference, entry)
            preference.fingerprint = new_fingerprint
            preference.last_changed_at = now
            self.session.add(PreferenceRevision.capture(preference, now))
            return "changed"

        preference = Preference(
            key=key,
            connection_id=self.connection_id,
            comment=None,
            first_seen_at=now,
            last_imported_at=now,
            last_changed_at=now,
            fingerprint=new_fingerprint,
        )
        self._assign_fields(preference, entry)
        self.session.add(preference)
        self.session.add(PreferenceRevision.capture(preference, now))
        return "created"

    @staticmethod
    def _assign_fields(preference: Preference, entry: RawPreferenceEntry) -> None:
        definition = entry.definition
        values = entry.values
        preference.name = definition.name
        preference.category = definition.category
        preference.description = definition.description
        preference.type_code = definition.type
        preference.is_array = definition.is_array
        preference.is_disabled = definition.is_disabled
        preference.protection_scope = definition.protection_scope
        preference.is_env_enabled = definition.is_env_enabled
        preference.is_ootb_preference = definition.is_ootb_preference
        preference.value_origination = values.value_origination if values else None
        preference.values = list(values.values) if values else None

    def _flush(self, summary: ImportSummary, pending: int) -> None:
        started = time.perf_counter()
        self._commit("batch flush")
        duration = time.perf_counter() - started
        record_batch_flush(duration)
        self.logger.debug(
            "Preference batch flushed",
            extra=self._log_context(batch_records=pending, processed=summary.processed, duration_seconds=duration),
        )

    def _finish_run(self, run_start: datetime, run_end: datetime) -> None:
        self.connection.last_import_completed_at = run_end
        self.session.execute(
            update(Preference)
            .where(Preference.connection_id == self.connection_id)
            .where(Preference.last_imported_at >= run_start)
            .values(last_seen_at=run_end)
            .execution_options(synchronize_session=False)
        )
        self._commit("final save")

    def _commit(self, stage: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            record_import_run("store_failed")
            self.logger.error(
                "Preference store write failed",
                exc_info=True,
                extra=self._log_context(stage=stage),
            )
            raise StoreWriteError(f"Store write failed during {stage}: {exc}", connection_id=self.connection_id) from exc

    def _check_cancelled(self, summary: ImportSummary) -> None:
        reason = None
        if self.cancel_event is not None and self.cancel_event.is_set():
            reason = "cancelled"
        elif self._deadline is not None and time.monotonic() >= self._deadline:
            reason = "timed out"
        if reason is None:
            return
        record_import_run("cancelled")
        self.logger.warning(
            "Preference import stopped at batch boundary",
            extra=self._log_context(reason=reason, processed=summary.processed),
        )
        raise ImportCancelled(
            f"Import {reason} after {summary.processed} preferences.",
            connection_id=self.connection_id,
        )

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _log_context(self, **values) -> dict[str, object]:
        context = {"prefs_connection_id": self.connection_id, "prefs_connection_url": self.connection.url}
        context.update({f"prefs_{key}": value for key, value in values.items()})
        return context


def import_all(
    connection: Connection,
    *,
    adapter: PreferenceSource | None = None,
    batch_size: int | None = None,
    session: Session | None = None,
    clock: Callable[[], datetime] | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> ImportSummary:
    """
    Import every preference of ``connection`` and reconcile it with the store.

    ``batch_size`` defaults to ``PREFS_IMPORT_BATCH_SIZE`` (2000). Raises
    ``LoginFailed``, ``FetchFailed``, ``StoreWriteError``, ``ImportCancelled``
    or ``ImportAlreadyRunning``.
    """
    importer = PreferenceImporter(
        connection,
        adapter=adapter,
        batch_size=batch_size,
        session=session,
        clock=clock,
        timeout=timeout,
        cancel_event=cancel_event,
    )
    return importer.execute()

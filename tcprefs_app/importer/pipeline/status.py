"""
Derived preference status.

Status is computed on demand from the connection's most recent run window and
the preference's bookkeeping timestamps. It is never stored because every
import moves the run window.
"""

from __future__ import annotations

import enum
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable

from tcprefs_app.models import Connection, Preference, as_utc, utcnow

DEFAULT_RECENT_SECONDS = 300


class PreferenceStatus(str, enum.Enum):
    NEW = "new"
    CHANGED = "changed"
    STABLE = "stable"
    MISSING = "missing"
    UNKNOWN = "unknown"


def _recent_seconds() -> int:
    try:
        from flask import current_app

        return int(current_app.config.get("PREFS_STATUS_RECENT_SECONDS", DEFAULT_RECENT_SECONDS))
    except RuntimeError:
        # No Flask app context
        return DEFAULT_RECENT_SECONDS


def preference_status(
    preference: Preference,
    connection: Connection,
    *,
    now: datetime | None = None,
    recent_seconds: int | None = None,
) -> PreferenceStatus:
    """
    Classify ``preference`` against ``connection``'s last run window.

    Without a complete run window the classifier falls back to recency:
    ``STABLE`` when the preference was imported within the last few minutes,
    else ``UNKNOWN``. A preference that was not seen in the last run but was
    first seen during it is reported as ``NEW``.
    """
    run_start = as_utc(connection.last_import_started_at)
    run_end = as_utc(connection.last_import_completed_at)
    last_imported_at = as_utc(preference.last_imported_at)

    if run_start is None or run_end is None:
        now = as_utc(now) if now is not None else utcnow()
        window = timedelta(seconds=_recent_seconds() if recent_seconds is None else recent_seconds)
        if last_imported_at is not None and last_imported_at > now - window:
            return PreferenceStatus.STABLE
        return PreferenceStatus.UNKNOWN

    first_seen_at = as_utc(preference.first_seen_at)
    last_seen_at = as_utc(preference.last_seen_at)
    last_changed_at = as_utc(preference.last_changed_at)

    seen_this_run = last_seen_at is not None and last_seen_at >= run_end
    if not seen_this_run:
        if first_seen_at < run_start:
            return PreferenceStatus.MISSING
        return PreferenceStatus.NEW
    if first_seen_at >= run_start:
        return PreferenceStatus.NEW
    if last_changed_at is not None and last_changed_at >= run_start:
        return PreferenceStatus.CHANGED
    return PreferenceStatus.STABLE


def summarize_statuses(
    preferences: Iterable[Preference],
    connection: Connection,
    *,
    now: datetime | None = None,
) -> dict[PreferenceStatus, int]:
    """Count preferences per status; every status is present in the result."""
    counts = Counter(preference_status(preference, connection, now=now) for preference in preferences)
    return {status: counts.get(status, 0) for status in PreferenceStatus}

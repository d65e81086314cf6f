"""Prometheus metrics helpers for the preference importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_teamcenter_auth_attempts = Counter(
    "tcprefs_teamcenter_auth_attempts_total",
    "Teamcenter login attempts by outcome.",
    ["outcome"],
)
_import_runs = Counter(
    "tcprefs_import_runs_total",
    "Preference import runs by outcome.",
    ["outcome"],
)
_import_preferences = Counter(
    "tcprefs_import_preferences_total",
    "Preferences processed by reconciliation action.",
    ["action"],
)
_import_batch_duration = Histogram(
    "tcprefs_import_batch_duration_seconds",
    "Duration of preference batch flushes in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_compare_refreshes = Counter(
    "tcprefs_compare_column_refreshes_total",
    "Comparison column refreshes by outcome.",
    ["outcome"],
)


def record_teamcenter_auth_attempt(outcome: Literal["success", "failure"]) -> None:
    """Increment the Teamcenter authentication counter."""

    _teamcenter_auth_attempts.labels(outcome=outcome).inc()


def record_import_run(
    outcome: Literal["succeeded", "login_failed", "fetch_failed", "store_failed", "cancelled"],
) -> None:
    _import_runs.labels(outcome=outcome).inc()


def record_import_counts(*, created: int, changed: int, unchanged: int) -> None:
    """Capture per-action preference counts for a finished run."""

    if created:
        _import_preferences.labels(action="created").inc(created)
    if changed:
        _import_preferences.labels(action="changed").inc(changed)
    if unchanged:
        _import_preferences.labels(action="unchanged").inc(unchanged)


def record_batch_flush(duration_seconds: float) -> None:
    _import_batch_duration.observe(duration_seconds)


def record_compare_refresh(outcome: Literal["success", "failure"]) -> None:
    _compare_refreshes.labels(outcome=outcome).inc()

"""Importer pipeline: fingerprinting, reconciliation, status and comparison."""

from __future__ import annotations

from .compare import (
    ComparisonColumn,
    ComparisonEngine,
    ComparisonRow,
    RowStatus,
    build_comparison,
    classify,
    readable_refresh_error,
    snapshot_from_store,
    snapshot_time,
)
from .fingerprint import compute_fingerprint, fingerprint_entry, fingerprint_preference
from .reconcile import (
    FetchFailed,
    ImportAlreadyRunning,
    ImportCancelled,
    ImportSummary,
    LoginFailed,
    PreferenceImporter,
    PreferenceImportError,
    StoreWriteError,
    import_all,
)
from .status import PreferenceStatus, preference_status, summarize_statuses

__all__ = [
    "ComparisonColumn",
    "ComparisonEngine",
    "ComparisonRow",
    "RowStatus",
    "build_comparison",
    "classify",
    "readable_refresh_error",
    "snapshot_from_store",
    "snapshot_time",
    "compute_fingerprint",
    "fingerprint_entry",
    "fingerprint_preference",
    "FetchFailed",
    "ImportAlreadyRunning",
    "ImportCancelled",
    "ImportSummary",
    "LoginFailed",
    "PreferenceImporter",
    "PreferenceImportError",
    "StoreWriteError",
    "import_all",
    "PreferenceStatus",
    "preference_status",
    "summarize_statuses",
]

"""
Celery tasks for the preference import worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from tcprefs_app.importer.pipeline.reconcile import PreferenceImportError, import_all
from tcprefs_app.models import Connection, db


@shared_task(name="prefs.healthcheck", bind=True)
def prefs_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask prefs worker ping``."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="prefs.import_connection", bind=True)
def import_connection(self, *, connection_id: str, batch_size: int | None = None) -> dict[str, Any]:
    """Run a full preference import for one connection on the worker."""
    connection = db.session.get(Connection, connection_id)
    if connection is None:
        raise ValueError(f"Connection {connection_id} not found.")

    try:
        summary = import_all(connection, batch_size=batch_size)
    except PreferenceImportError:
        current_app.logger.exception(
            "Queued preference import failed",
            extra={"prefs_connection_id": connection_id, "prefs_task_id": self.request.id},
        )
        raise

    payload = summary.to_dict()
    current_app.logger.info(
        "Queued preference import completed",
        extra={"prefs_connection_id": connection_id, "prefs_task_id": self.request.id, "prefs_counts": payload},
    )
    return payload

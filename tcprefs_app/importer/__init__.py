"""
Preference import package.

Wires the ``flask prefs`` CLI and the optional Celery worker into a Flask app
and records the extension state in ``app.extensions['prefs']``.
"""

from __future__ import annotations

from flask import Flask

from .celery_app import ensure_celery_app, get_celery_app
from .cli import prefs_cli

PREFS_EXTENSION_KEY = "prefs"

__all__ = ["init_importer", "PREFS_EXTENSION_KEY", "get_celery_app"]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        PREFS_EXTENSION_KEY,
        {
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask) -> None:
    # Avoid duplicate registrations when running tests
    if prefs_cli.name in app.cli.commands:
        app.cli.commands.pop(prefs_cli.name)
    app.cli.add_command(prefs_cli)


def init_importer(app: Flask) -> None:
    """
    Register the preference CLI and, when ``PREFS_WORKER_ENABLED`` is set,
    build the Celery app eagerly so the worker shares its configuration.
    """
    state = _ensure_extension_state(app)
    worker_enabled = bool(app.config.get("PREFS_WORKER_ENABLED", False))
    state["worker_enabled"] = worker_enabled
    if worker_enabled:
        ensure_celery_app(app, state)
    _set_cli(app)
    app.logger.info(
        "Preference importer initialised",
        extra={"prefs_worker_enabled": worker_enabled},
    )

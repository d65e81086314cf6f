# tcprefs_app/utils/logging_config.py

"""
Logging setup for the preferences tracker.

Configures the Flask app logger with console and rotating file handlers in
either a readable text format or JSON lines. Fields passed through
``extra={...}`` are kept in the JSON output.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import current_app, has_app_context

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, app_name="tcprefs", app_version=None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "app": self.app_name,
        }
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return JSONFormatter(app.config.get("APP_NAME", "tcprefs"), app.config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(app):
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def setup_logging(app):
    """
    (Re)configure ``app.logger`` from the app config.

    Safe to call repeatedly; previously installed handlers are replaced so
    tests can re-run it after updating the config.
    """
    level = _resolve_level(app)
    formatter = _build_formatter(app)

    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        app.logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, app.config.get("LOG_FILE_NAME", "tcprefs.log")),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)

    app.logger.setLevel(level)
    # Module loggers under the package share the app's handlers
    package_logger = logging.getLogger("tcprefs_app")
    package_logger.setLevel(level)
    package_logger.handlers = list(app.logger.handlers)
    package_logger.propagate = False

    app.logger.debug(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "log_format": app.config.get("LOG_FORMAT")},
    )


def get_logger(name="tcprefs_app"):
    """Return the Flask app logger inside an app context, else a module logger."""
    if has_app_context():
        return current_app.logger
    return logging.getLogger(name)

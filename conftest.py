# conftest.py

import os
import shutil
import tempfile
from pathlib import Path

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig.
# Comparison refreshes run on worker threads, which need a file database rather
# than a per-connection in-memory one.
os.environ["FLASK_ENV"] = "testing"
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="tcprefs-tests-"))
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{(_TEST_ROOT / 'tcprefs_test.db').as_posix()}"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from tcprefs_app.models import db  # noqa: E402

_BASE_TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret-key-for-testing-only",
    "PREFS_IMPORT_BATCH_SIZE": 2000,
    "PREFS_IMPORT_TIMEOUT_SECONDS": 0,
    "PREFS_COMPARE_MAX_WORKERS": 1,
    "PREFS_STATUS_RECENT_SECONDS": 300,
    "PREFS_WORKER_ENABLED": False,
    "CELERY_BROKER_URL": None,
    "CELERY_RESULT_BACKEND": None,
    "CELERY_SQLITE_PATH": str(_TEST_ROOT / "celery.sqlite"),
    "CELERY_CONFIG": {"task_always_eager": True, "task_eager_propagates": True},
}


@pytest.fixture(scope="function")
def app():
    """Provide the application with freshly created tables for each test."""
    flask_app.config.update(_BASE_TEST_CONFIG)
    state = flask_app.extensions.get("prefs")
    if state is not None:
        state["celery_app"] = None
        state["worker_enabled"] = False

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


def pytest_configure(config):
    os.environ["FLASK_ENV"] = "testing"
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_unconfigure(config):
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)

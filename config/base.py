# config.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """
    Parse an integer environment value, falling back to ``default`` when the
    value is missing or malformed and clamping to ``minimum`` when provided.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return minimum
    return number


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Preference import configuration
    PREFS_IMPORT_BATCH_SIZE = _coerce_int(os.environ.get("PREFS_IMPORT_BATCH_SIZE"), 2000, minimum=1)
    # 0 disables the per-run deadline
    PREFS_IMPORT_TIMEOUT_SECONDS = _coerce_int(os.environ.get("PREFS_IMPORT_TIMEOUT_SECONDS"), 0, minimum=0)
    PREFS_HTTP_TIMEOUT_SECONDS = _coerce_int(os.environ.get("PREFS_HTTP_TIMEOUT_SECONDS"), 60, minimum=1)
    PREFS_COMPARE_MAX_WORKERS = _coerce_int(os.environ.get("PREFS_COMPARE_MAX_WORKERS"), 1, minimum=1)
    PREFS_STATUS_RECENT_SECONDS = _coerce_int(os.environ.get("PREFS_STATUS_RECENT_SECONDS"), 300, minimum=0)
    PREFS_VERIFY_TLS = _coerce_bool(os.environ.get("PREFS_VERIFY_TLS"), default=True)

    # Background worker (Celery) configuration
    PREFS_WORKER_ENABLED = _coerce_bool(os.environ.get("PREFS_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    PREFS_TASK_TIME_LIMIT = _coerce_int(os.environ.get("PREFS_TASK_TIME_LIMIT"), 30 * 60, minimum=60)
    PREFS_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("PREFS_TASK_SOFT_TIME_LIMIT"), 25 * 60, minimum=60)


class DevelopmentConfig(Config):
    DEBUG = True
    # Get the project root directory (parent of config directory)
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "tcprefs_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    # Set by the test suite to a temporary file database
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    PREFS_IMPORT_BATCH_SIZE = 2000
    PREFS_IMPORT_TIMEOUT_SECONDS = 0
    PREFS_COMPARE_MAX_WORKERS = 1


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False

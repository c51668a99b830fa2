#  Agent Watch - Configuration
#
#  Loads config.json and provides typed access to all settings.
#  Dot-notation path lookup: cfg("alerting.max_concurrent_dispatch")
#
#  Depends on: config.json
#  Used by:    all agentwatch modules

import json
import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = Path(os.environ.get("AGENTWATCH_CONFIG", PROJECT_ROOT / "config.json"))
DATA_DIR = PROJECT_ROOT / "data"

# ---------------------------------------------------------------------------
# Load config
# ---------------------------------------------------------------------------

_config: dict = {}


def _load_config(path: Path | None = None):
    """Load configuration from JSON file (internal, called once at import time).

    Module-level constants below are snapshots from _config.
    Do not call this function after import; constants won't update.
    """
    global _config
    config_path = path or CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. "
            "Copy config.example.json to config.json."
        )
    with open(config_path) as f:
        _config = json.load(f)


# Auto-load if config exists at import time
if CONFIG_PATH.exists():
    _load_config()


def cfg(path: str, default=None):
    """Get a config value by dot-notation path.

    Example: cfg("watcher.queue_size") -> 1000
    """
    keys = path.split(".")
    val = _config
    for key in keys:
        if isinstance(val, dict) and key in val:
            val = val[key]
        else:
            return default
    return val


# ---------------------------------------------------------------------------
# Convenience constants
# ---------------------------------------------------------------------------

HOST = cfg("server.host", "0.0.0.0")
PORT = cfg("server.port", 5300)
CORS_ORIGINS = cfg("server.cors_origins", [
    "http://localhost:5173",
    f"http://localhost:{PORT}",
    "http://127.0.0.1:5173",
    f"http://127.0.0.1:{PORT}",
])

# Database
DB_PATH = PROJECT_ROOT / cfg("database.path", str(DATA_DIR / "agentwatch.db"))

# Activity ledger
ACTIVE_WINDOW_HOURS = cfg("ledger.active_window_hours", 1)
RECENT_ACTIVITY_HOURS = cfg("ledger.recent_activity_hours", 24)
DEFAULT_EXPECTED_DURATION = cfg("ledger.default_expected_duration", 3600)

# Change analyzer
IGNORED_DIRS = cfg("analyzer.ignored_dirs", ["node_modules", ".git", "__pycache__", ".venv"])
MAX_FILE_BYTES = cfg("analyzer.max_file_bytes", 2_000_000)

# File watcher
WATCHER_QUEUE_SIZE = cfg("watcher.queue_size", 1000)
WATCHER_JOIN_TIMEOUT = cfg("watcher.join_timeout", 5.0)

# Alerting
MAX_CONCURRENT_DISPATCH = cfg("alerting.max_concurrent_dispatch", 4)
WEBHOOK_TIMEOUT = cfg("alerting.webhook_timeout", 10.0)
SETUP_DEFAULT_RULES = cfg("alerting.setup_defaults", True)
SMTP_HOST = cfg("alerting.smtp.host", "localhost")
SMTP_PORT = cfg("alerting.smtp.port", 25)
SMTP_USERNAME = cfg("alerting.smtp.username", "")
SMTP_PASSWORD = os.environ.get("AGENTWATCH_SMTP_PASSWORD", cfg("alerting.smtp.password", ""))
SMTP_USE_TLS = cfg("alerting.smtp.use_tls", False)
SMTP_FROM = cfg("alerting.smtp.from_address", "agentwatch@localhost")

# Reports
REPORTS_DIR_NAME = cfg("reports.directory_name", ".agentwatch-reports")
REPORTS_DEFAULT_ROOT = PROJECT_ROOT / cfg("reports.default_root", str(DATA_DIR))
REPORT_MAX_ROWS = cfg("reports.max_rows", 20)


# ---------------------------------------------------------------------------
# Startup validation
# ---------------------------------------------------------------------------

def validate_config():
    """Validate critical config values. Call during app startup (not at import time).

    Raises ConfigError for fatal issues, logs warnings for non-fatal ones.
    """
    import logging
    _logger = logging.getLogger("agentwatch.config")

    # Fatal: port must be valid
    if not isinstance(PORT, int) or not (1 <= PORT <= 65535):
        raise ConfigError(f"server.port must be 1-65535, got {PORT}")

    # Fatal: sizes and pools must be positive integers
    for label, val in [("watcher.queue_size", WATCHER_QUEUE_SIZE),
                       ("alerting.max_concurrent_dispatch", MAX_CONCURRENT_DISPATCH),
                       ("analyzer.max_file_bytes", MAX_FILE_BYTES)]:
        if not isinstance(val, int) or val <= 0:
            raise ConfigError(f"{label} must be a positive integer, got {val}")

    # Fatal: timeouts must be positive
    for label, val in [("alerting.webhook_timeout", WEBHOOK_TIMEOUT),
                       ("watcher.join_timeout", WATCHER_JOIN_TIMEOUT)]:
        if not isinstance(val, (int, float)) or val <= 0:
            raise ConfigError(f"{label} must be > 0, got {val}")

    # Fatal: activity windows must be ordered
    if not isinstance(ACTIVE_WINDOW_HOURS, (int, float)) or ACTIVE_WINDOW_HOURS <= 0:
        raise ConfigError(f"ledger.active_window_hours must be > 0, got {ACTIVE_WINDOW_HOURS}")
    if RECENT_ACTIVITY_HOURS < ACTIVE_WINDOW_HOURS:
        raise ConfigError(
            "ledger.recent_activity_hours must be >= ledger.active_window_hours "
            f"({RECENT_ACTIVITY_HOURS} < {ACTIVE_WINDOW_HOURS})"
        )

    # Fatal: CORS origins must be valid URLs
    for origin in CORS_ORIGINS:
        if not isinstance(origin, str):
            raise ConfigError(f"CORS origin must be a string, got {type(origin).__name__}")
        if origin == "*":
            _logger.warning("CORS origin '*' allows all origins; not recommended for production")
        elif not origin.startswith(("http://", "https://")):
            raise ConfigError(
                f"CORS origin must start with http:// or https://, got '{origin}'"
            )

    # Warning: SMTP credentials half-configured
    if SMTP_USERNAME and not SMTP_PASSWORD:
        _logger.warning(
            "alerting.smtp.username is set but no password was found. "
            "Set AGENTWATCH_SMTP_PASSWORD or email channels will fail to log in."
        )

    if WATCHER_QUEUE_SIZE < 10:
        _logger.warning(
            "watcher.queue_size=%d is very small; bursty file events will be dropped",
            WATCHER_QUEUE_SIZE,
        )


class ConfigError(Exception):
    """Raised when critical configuration is invalid."""

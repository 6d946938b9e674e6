"""
Runtime configuration for the submission pipeline.

Values are read from the environment once at import. Callers read them
through the module (``config.DB_PATH``) so tests can patch them.
"""

import os
from pathlib import Path

# Authoritative store (SQLite)
DB_PATH = os.getenv("DB_PATH", "./data/clubmap.db")
STORE_TIMEOUT_SEC = float(os.getenv("STORE_TIMEOUT_SEC", "5"))

# Durable intake buffer
INTAKE_DIR = os.getenv("INTAKE_DIR", "./data/intake")
INTAKE_ARCHIVE = os.getenv("INTAKE_ARCHIVE", "true").lower() == "true"  # archive|delete consumed records

# Reconciliation sweep
RECONCILE_ENABLED = os.getenv("RECONCILE_ENABLED", "false").lower() == "true"
RECONCILE_GRACE_SEC = int(os.getenv("RECONCILE_GRACE_SEC", "60"))
RECONCILE_INTERVAL_SEC = int(os.getenv("RECONCILE_INTERVAL_SEC", "300"))

# Snapshot synchronizer
SNAPSHOT_PATH = os.getenv("SNAPSHOT_PATH", "./public/data/clubs.json")
SNAPSHOT_BACKUP_PATH = os.getenv("SNAPSHOT_BACKUP_PATH", "./public/data/clubs.json.backup")
SYNC_WORKERS = int(os.getenv("SYNC_WORKERS", "1"))

# Duplicate detection (advisory)
DUPLICATE_THRESHOLD = float(os.getenv("DUPLICATE_THRESHOLD", "0.8"))
DUPLICATE_MATCH_FLOOR = float(os.getenv("DUPLICATE_MATCH_FLOOR", "0.5"))
DUPLICATE_MAX_MATCHES = int(os.getenv("DUPLICATE_MAX_MATCHES", "5"))
DUPLICATE_SCAN_LIMIT = int(os.getenv("DUPLICATE_SCAN_LIMIT", "5000"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8000").split(",") if o.strip()]

VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def is_reconcile_enabled():
    return RECONCILE_ENABLED


def get_reconcile_interval():
    """Get reconciliation sweep interval in seconds."""
    return RECONCILE_INTERVAL_SEC


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if STORE_TIMEOUT_SEC <= 0:
        issues.append("STORE_TIMEOUT_SEC must be > 0")

    if RECONCILE_GRACE_SEC < 0:
        issues.append("RECONCILE_GRACE_SEC must be >= 0")

    if RECONCILE_INTERVAL_SEC < 1:
        issues.append("RECONCILE_INTERVAL_SEC must be >= 1")

    if SYNC_WORKERS < 1:
        issues.append("SYNC_WORKERS must be >= 1")

    if not 0.0 <= DUPLICATE_MATCH_FLOOR <= DUPLICATE_THRESHOLD <= 1.0:
        issues.append("Expected 0 <= DUPLICATE_MATCH_FLOOR <= DUPLICATE_THRESHOLD <= 1")

    if DUPLICATE_MAX_MATCHES < 0:
        issues.append("DUPLICATE_MAX_MATCHES must be >= 0")

    if Path(SNAPSHOT_PATH).resolve() == Path(SNAPSHOT_BACKUP_PATH).resolve():
        issues.append("SNAPSHOT_BACKUP_PATH must differ from SNAPSHOT_PATH")

    return issues

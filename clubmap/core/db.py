"""
SQLite connection handling and schema for the authoritative store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from . import config
from .errors import StoreUnavailableError


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection bounded by the store timeout.

    Database failures (unreachable file, lock timeout, corruption) are
    raised as StoreUnavailableError so callers can fall back or retry.
    """
    try:
        config.ensure_db_directory()
        conn = sqlite3.connect(
            config.DB_PATH,
            timeout=config.STORE_TIMEOUT_SEC,
            isolation_level=None,
            check_same_thread=False,
        )
    except (sqlite3.Error, OSError) as e:
        raise StoreUnavailableError(f"Cannot open store at {config.DB_PATH}: {e}") from e

    conn.row_factory = sqlite3.Row
    try:
        yield conn
    except (sqlite3.IntegrityError, sqlite3.ProgrammingError):
        raise
    except sqlite3.DatabaseError as e:
        raise StoreUnavailableError(f"Store operation failed: {e}") from e
    finally:
        conn.close()


@contextmanager
def transaction(conn: Optional[sqlite3.Connection] = None) -> Generator[sqlite3.Connection, None, None]:
    """Run a block in a write transaction.

    BEGIN IMMEDIATE takes the write lock up front, so two writers serialize
    instead of failing on lock upgrade. A connection passed in is reused as-is;
    its owner commits.
    """
    if conn is not None:
        yield conn
        return

    with get_db() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute('''
            CREATE TABLE IF NOT EXISTS submissions (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL CHECK (kind IN ('NEW', 'EDIT')),
                target_record_id TEXT,
                status TEXT NOT NULL CHECK (status IN ('PENDING', 'APPROVED', 'REJECTED')),
                name TEXT NOT NULL,       -- denormalized from payload for search
                school TEXT NOT NULL,
                province TEXT NOT NULL,
                city TEXT NOT NULL DEFAULT '',
                payload TEXT NOT NULL,    -- JSON ClubPayload
                submitter_email TEXT NOT NULL,
                client_ip TEXT,
                user_agent TEXT,
                submitted_at TEXT NOT NULL,
                duplicate_check TEXT,     -- JSON DuplicateCheckResult
                intake_receipt TEXT UNIQUE,
                reviewed_by TEXT,
                reviewed_at TEXT,
                rejection_reason TEXT
            )
        ''')

        conn.execute('''
            CREATE TABLE IF NOT EXISTS clubs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                school TEXT NOT NULL,
                province TEXT NOT NULL,
                city TEXT NOT NULL DEFAULT '',
                latitude REAL NOT NULL,
                longitude REAL NOT NULL,
                logo TEXT,
                short_description TEXT NOT NULL DEFAULT '',
                long_description TEXT NOT NULL DEFAULT '',
                tags TEXT NOT NULL DEFAULT '[]',
                website TEXT NOT NULL DEFAULT '',
                external_links TEXT NOT NULL DEFAULT '[]',
                contact TEXT NOT NULL DEFAULT '{}',
                source_submission TEXT,
                verified_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        # Indexes for review queue listing and search
        conn.execute('CREATE INDEX IF NOT EXISTS idx_submissions_status_ts ON submissions(status, submitted_at DESC)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_submissions_name ON submissions(name)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_submissions_school ON submissions(school)')
        conn.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_clubs_natural_key ON clubs(name, school)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_clubs_province_city ON clubs(province, city)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_clubs_created ON clubs(created_at, id)')


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [row[0] for row in rows]
            return all(table in table_names for table in ('submissions', 'clubs'))
    except StoreUnavailableError:
        return False

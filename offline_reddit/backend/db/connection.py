"""Database connection manager with FK enforcement and WAL mode."""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

SCHEMA_SQL_PATH = Path(__file__).parent / "schema.sql"
DEFAULT_DB_PATH = './data/offline_reddit.db'


def resolve_db_path(db_path: str = None) -> str:
    """Return db_path, falling back to the DB_PATH env var and then the default."""
    if db_path is None:
        db_path = os.environ.get('DB_PATH', DEFAULT_DB_PATH)
    return db_path


def open_connection(db_path: str = None) -> sqlite3.Connection:
    """Open a long-lived SQLite connection configured for the local store.

    The connection is created with check_same_thread=False so that it can be
    shared by the FastAPI lifespan and the sync scheduler running on the same
    event loop.

    Args:
        db_path: Path to the SQLite database file. If None, reads from DB_PATH
                 environment variable, falling back to './data/offline_reddit.db'.

    Returns:
        sqlite3.Connection: Connection with foreign keys enabled, WAL mode
                            active, and row_factory set to sqlite3.Row.
    """
    db_path = resolve_db_path(db_path)

    if db_path != ':memory:':
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # Connect with cross-thread compatibility
    conn = sqlite3.connect(db_path, check_same_thread=False)

    # Enable dict-like row access
    conn.row_factory = sqlite3.Row

    # Enable foreign key constraints (comments cascade with their post)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")

    return conn


@contextmanager
def get_connection(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager that yields an SQLite connection with FK enforcement and WAL mode.

    Args:
        db_path: Path to the SQLite database file. If None, reads from DB_PATH
                 environment variable, falling back to './data/offline_reddit.db'.

    Yields:
        sqlite3.Connection: Database connection with foreign keys enabled,
                           WAL mode active, and row_factory set to sqlite3.Row.

    Example:
        with get_connection() as conn:
            init_schema(conn)
            rows = conn.execute("SELECT * FROM subscriptions").fetchall()
    """
    conn = None
    try:
        conn = open_connection(db_path)
        yield conn

    finally:
        if conn is not None:
            conn.close()


def init_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they do not exist yet.

    executescript() resets per-connection PRAGMAs, so they are stripped from
    the script and re-applied afterwards.
    """
    sql = SCHEMA_SQL_PATH.read_text()
    lines = [line for line in sql.splitlines()
             if not line.strip().upper().startswith("PRAGMA")]
    conn.executescript("\n".join(lines))
    conn.execute("PRAGMA foreign_keys = ON")
    conn.commit()


def get_config(conn: sqlite3.Connection, key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Retrieve a configuration value from the system_config table.

    Args:
        conn: Open database connection.
        key: The configuration key to look up.
        default: Value returned when the key does not exist.

    Returns:
        The stored string value, or default if the key is missing.

    Example:
        launched = get_config(conn, 'has_launched_before', default='false')
    """
    row = conn.execute(
        "SELECT value FROM system_config WHERE key = ?", (key,)
    ).fetchone()

    if row is None:
        return default

    return row['value']


def set_config(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or update a configuration value in the system_config table."""
    conn.execute("""
        INSERT INTO system_config (key, value, updated_at)
        VALUES (?, ?, datetime('now'))
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
    """, (key, value))
    conn.commit()

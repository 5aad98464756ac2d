"""
SQLite connection handling for the room store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Set

from .config import get_db_path, ensure_db_directory

_initialized_paths: Set[str] = set()


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection, creating the schema on first use of a path."""
    path = get_db_path()
    if path not in _initialized_paths:
        init_db()
    conn = sqlite3.connect(path, timeout=5.0)
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    ensure_db_directory()
    path = get_db_path()
    conn = sqlite3.connect(path, timeout=5.0)
    try:
        cursor = conn.cursor()

        # One JSON blob per room; version mirrored out of the blob for inspection
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS rooms (
                room_id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL
            )
        ''')

        # Owner capability tokens, kept out of the synced blob
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS room_tokens (
                room_id TEXT PRIMARY KEY,
                token_hash TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_rooms_expires_at ON rooms(expires_at)')

        conn.commit()
    finally:
        conn.close()
    _initialized_paths.add(path)


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in ['rooms', 'room_tokens'])
    except Exception:
        return False

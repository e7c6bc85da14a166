"""
Database connection management.

Provides SQLite connections for usage persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "cloud_cost_tracker.db"

# Seconds a writer waits on a locked database before failing
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Write transactions begin IMMEDIATE and wait up to BUSY_TIMEOUT seconds
    for the database lock.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level="IMMEDIATE")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn

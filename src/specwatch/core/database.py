"""
SQLite connection helpers shared by the snapshot store, changelog writer and
notification task store.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Seconds a writer waits for a competing writer's lock
BUSY_TIMEOUT = 30.0


def ensure_parent_dir(db_path: str) -> None:
    """Create the directory holding the database file if needed."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection with row access by column name.

    Statements run in autocommit mode; use ``transaction`` for multi-statement
    atomic work.
    """
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside ``BEGIN IMMEDIATE`` so reads and writes of the block are
    serialized against other writers.

    Commits on success, rolls back and re-raises on error.
    """
    with connect(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

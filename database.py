import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from errors import PersistenceError

logger = logging.getLogger(__name__)


def create_tables(conn: sqlite3.Connection) -> None:
    """Creates the required tables if they don't exist in the database."""
    cursor = conn.cursor()
    # Mirror of the inventory engine's last snapshot; position keeps engine order
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS items (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            category TEXT NOT NULL,
            total_copies INTEGER NOT NULL,
            available INTEGER NOT NULL,
            position INTEGER NOT NULL
        )
    """)

    # Loan ledger. item_id is deliberately not a foreign key: deleting a book
    # must neither cascade to nor be blocked by its loan history.
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS issues (
            id TEXT PRIMARY KEY,
            item_id INTEGER NOT NULL,
            borrower_name TEXT NOT NULL,
            borrower_id TEXT NOT NULL,
            issued_at TEXT NOT NULL,
            returned_at TEXT
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_items_position ON items(position)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_issues_item_borrower ON issues(item_id, borrower_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_issues_issued_at ON issues(issued_at DESC)")
    conn.commit()


class Database:
    """Owns the single SQLite connection shared by the catalog and the ledger.

    ``connect()`` either yields a usable, migrated database or raises
    PersistenceError; every use while disconnected fails immediately.
    """

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> "Database":
        if self._conn is not None:
            return self
        directory = os.path.dirname(os.path.abspath(self.db_file))
        if not os.path.isdir(directory):
            raise PersistenceError(f"Database directory does not exist: {directory}")
        try:
            conn = sqlite3.connect(self.db_file, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrent access
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            create_tables(conn)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open database {self.db_file}: {exc}") from exc
        self._conn = conn
        logger.info(f"Connected to database {self.db_file}")
        return self

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.info(f"Closed database {self.db_file}")

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Database is not connected.")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error, and map sqlite errors to PersistenceError."""
        conn = self.connection
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc

    def query(self, sql: str, params: tuple = ()) -> list:
        try:
            return self.connection.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database query failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except PersistenceError:
            return False

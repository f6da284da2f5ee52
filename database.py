import logging
import os
import sqlite3
import threading
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)

# Database file used by the shared connection.
# Tests point this at a temporary file and call close_connection() so the
# next get_db_connection() opens the new database.
DATABASE_FILE = settings.database_file

# Process-wide connection, opened lazily on first access
_connection: Optional[sqlite3.Connection] = None
_connection_lock = threading.Lock()
# Held around each statement so cursor results (lastrowid, rowcount) belong
# to the statement that produced them
statement_lock = threading.RLock()

SCHEMA = """
    CREATE TABLE IF NOT EXISTS author (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        firstName TEXT NOT NULL,
        lastName TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS book (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        genre TEXT NOT NULL,
        published TEXT NOT NULL,
        state TEXT CHECK (state IN ('to-read', 'reading', 'finished'))
    );

    CREATE TABLE IF NOT EXISTS book_author (
        bookId INTEGER NOT NULL REFERENCES book(id),
        authorId INTEGER NOT NULL REFERENCES author(id),
        UNIQUE (bookId, authorId)
    );

    CREATE INDEX IF NOT EXISTS idx_book_author_book ON book_author(bookId);
    CREATE INDEX IF NOT EXISTS idx_book_author_author ON book_author(authorId);
    CREATE INDEX IF NOT EXISTS idx_author_name ON author(lastName, firstName);
    CREATE INDEX IF NOT EXISTS idx_book_title ON book(title);
"""


def _open_connection(db_file: str) -> sqlite3.Connection:
    """Open a connection that can be shared by the request threads."""
    directory = os.path.dirname(db_file)
    if directory and db_file != ":memory:":
        os.makedirs(directory, exist_ok=True)
    # isolation_level=None: every statement commits on its own
    conn = sqlite3.connect(db_file, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if db_file != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    logger.info(f"Opened SQLite database: {db_file}")
    return conn


def get_db_connection() -> sqlite3.Connection:
    """Return the shared SQLite connection, opening it on first use."""
    global _connection
    if _connection is None:
        with _connection_lock:
            if _connection is None:
                _connection = _open_connection(DATABASE_FILE)
    return _connection


def close_connection() -> None:
    """Close the shared connection. The next access reopens DATABASE_FILE."""
    global _connection
    with _connection_lock:
        if _connection is not None:
            _connection.close()
            _connection = None


def create_tables() -> None:
    """Create the author, book and book_author tables if they don't exist."""
    conn = get_db_connection()
    conn.executescript(SCHEMA)


def initialize_database(db_file: Optional[str] = None) -> None:
    """Point the shared connection at db_file (if given) and create the schema."""
    global DATABASE_FILE
    if db_file and db_file != DATABASE_FILE:
        close_connection()
        DATABASE_FILE = db_file
    create_tables()

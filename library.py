import logging
import re
import sqlite3
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import database
from author import Author
from book import BOOK_STATES, Book, BookAuthorRow
from config import settings
from database import get_db_connection, initialize_database

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

SQLITE_MIN_INT = -2 ** 63
SQLITE_MAX_INT = 2 ** 63 - 1

# Reference dataset loaded into an empty database
SEED_AUTHORS = [
    ("Pierre", "Palamos"),
    ("Jean", "Deslpiero"),
    ("Elise", "Porgia"),
]
SEED_BOOKS = [
    ("Le temps d'un instant", "roman", "2005-05-01", None),
    ("Le chevalier Noir", "fantasy", "2015-09-12", "to-read"),
    ("Le petit poussé", "roman", "2001-02-25", "finished"),
    ("Albert Schuman", "biographie", "2012-11-14", "reading"),
]
SEED_LINKS = [
    ("Pierre", "Palamos", "Le temps d'un instant"),
    ("Pierre", "Palamos", "Le chevalier Noir"),
    ("Jean", "Deslpiero", "Le temps d'un instant"),
    ("Jean", "Deslpiero", "Albert Schuman"),
    ("Elise", "Porgia", "Le petit poussé"),
    ("Elise", "Porgia", "Le chevalier Noir"),
]


class WriteResult(NamedTuple):
    lastrowid: Optional[int]
    rowcount: int


class LibraryError(Exception):
    """Base class for errors raised by the Library."""


class ValidationError(LibraryError):
    """Raised when a required text field is empty."""

    def __init__(self, field: str, message: str = "must not be empty") -> None:
        super().__init__(f"{field} {message}")
        self.field = field
        self.message = message


class NotFoundError(LibraryError):
    """Raised when a referenced book or author does not exist."""


class IntegrityError(LibraryError):
    """Raised when the store rejects a write with a constraint violation."""


class StoreError(LibraryError):
    """Raised for any other unexpected SQLite failure."""


def validate_string(value: Optional[str], field: str) -> str:
    """Return value unchanged, or raise ValidationError if it is empty after trimming."""
    if value is None or not value.strip():
        raise ValidationError(field)
    return value


def clean_string(value: str) -> str:
    """Lower-case and collapse runs of whitespace into a single space."""
    return _WHITESPACE.sub(" ", value.strip()).lower()


def _normalize(value: Optional[str], field: str) -> str:
    return clean_string(validate_string(value, field))


def _is_storable_id(entity_id: int) -> bool:
    """SQLite integers are signed 64-bit; larger ids can never match a row."""
    return SQLITE_MIN_INT <= entity_id <= SQLITE_MAX_INT


def _check_state(state: Optional[str]) -> Optional[str]:
    if state is not None and state not in BOOK_STATES:
        raise ValidationError("state", f"must be one of {', '.join(BOOK_STATES)}")
    return state


class Library:
    """Maps author/book CRUD onto parameterized SQL against the shared SQLite connection."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # A db_file switches the shared connection over to that database
        initialize_database(db_file)

    # ------------------------- SQL helpers ------------------------- #
    def _run(self, sql: str, params: tuple, read: Callable[[sqlite3.Cursor], Any]) -> Any:
        """Execute one statement and read its result while holding the statement lock.

        lastrowid and rowcount live on the shared connection, so they must be
        read before another thread gets to execute.
        """
        conn = get_db_connection()
        with database.statement_lock:
            try:
                return read(conn.execute(sql, params))
            except sqlite3.IntegrityError as exc:
                raise IntegrityError(str(exc)) from exc
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    def _execute(self, sql: str, params: tuple = ()) -> WriteResult:
        return self._run(sql, params, lambda cur: WriteResult(cur.lastrowid, cur.rowcount))

    def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        row = self._run(sql, params, lambda cur: cur.fetchone())
        return dict(row) if row is not None else None

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        rows = self._run(sql, params, lambda cur: cur.fetchall())
        return [dict(row) for row in rows]

    # ------------------------- Authors ------------------------- #
    def create_author(self, first_name: str, last_name: str) -> int:
        """Insert a normalized author and return its generated id."""
        first = _normalize(first_name, "firstName")
        last = _normalize(last_name, "lastName")
        result = self._execute(
            "INSERT INTO author (firstName, lastName) VALUES (?, ?)", (first, last)
        )
        author_id = int(result.lastrowid)
        logger.info(f"Author created: id={author_id}")
        return author_id

    def get_author(self, author_id: int) -> Optional[Author]:
        if not _is_storable_id(author_id):
            return None
        row = self._fetch_one(
            "SELECT id, firstName, lastName FROM author WHERE id = ?", (author_id,)
        )
        return Author.from_dict(row) if row else None

    def list_authors(self) -> List[Author]:
        """All authors ordered by last name, then first name."""
        rows = self._fetch_all(
            "SELECT id, firstName, lastName FROM author ORDER BY lastName, firstName, id"
        )
        return [Author.from_dict(row) for row in rows]

    def update_author(self, author_id: int, first_name: str, last_name: str) -> int:
        """Overwrite an author's names. Returns the affected row count (0 if absent)."""
        first = _normalize(first_name, "firstName")
        last = _normalize(last_name, "lastName")
        if not _is_storable_id(author_id):
            return 0
        result = self._execute(
            "UPDATE author SET firstName = ?, lastName = ? WHERE id = ?",
            (first, last, author_id),
        )
        if result.rowcount == 0:
            logger.warning(f"Author update skipped, id={author_id} not found")
        else:
            logger.info(f"Author updated: id={author_id}")
        return result.rowcount

    def delete_author(self, author_id: int) -> int:
        """Remove an author and every association that references it."""
        if not _is_storable_id(author_id):
            return 0
        # Associations go first: the store does not cascade on its own
        self._execute("DELETE FROM book_author WHERE authorId = ?", (author_id,))
        result = self._execute("DELETE FROM author WHERE id = ?", (author_id,))
        if result.rowcount:
            logger.info(f"Author deleted: id={author_id}")
        return result.rowcount

    # ------------------------- Books ------------------------- #
    def create_book(self, title: str, genre: str, published: str, state: Optional[str] = None) -> int:
        """Insert a normalized book and return its generated id."""
        values = (
            _normalize(title, "title"),
            _normalize(genre, "genre"),
            _normalize(published, "published"),
            _check_state(state),
        )
        result = self._execute(
            "INSERT INTO book (title, genre, published, state) VALUES (?, ?, ?, ?)", values
        )
        book_id = int(result.lastrowid)
        logger.info(f"Book created: id={book_id}")
        return book_id

    def get_book(self, book_id: int) -> Optional[Book]:
        if not _is_storable_id(book_id):
            return None
        row = self._fetch_one(
            "SELECT id, title, genre, published, state FROM book WHERE id = ?", (book_id,)
        )
        return Book.from_dict(row) if row else None

    def list_books(self) -> List[Book]:
        """All books ordered by title."""
        rows = self._fetch_all(
            "SELECT id, title, genre, published, state FROM book ORDER BY title, id"
        )
        return [Book.from_dict(row) for row in rows]

    def update_book(self, book_id: int, title: str, genre: str, published: str,
                    state: Optional[str] = None) -> int:
        """Overwrite a book. Returns the affected row count (0 if absent)."""
        values = (
            _normalize(title, "title"),
            _normalize(genre, "genre"),
            _normalize(published, "published"),
            _check_state(state),
            book_id,
        )
        if not _is_storable_id(book_id):
            return 0
        result = self._execute(
            "UPDATE book SET title = ?, genre = ?, published = ?, state = ? WHERE id = ?", values
        )
        if result.rowcount == 0:
            logger.warning(f"Book update skipped, id={book_id} not found")
        else:
            logger.info(f"Book updated: id={book_id}")
        return result.rowcount

    def delete_book(self, book_id: int) -> int:
        """Remove a book and every association that references it."""
        if not _is_storable_id(book_id):
            return 0
        self._execute("DELETE FROM book_author WHERE bookId = ?", (book_id,))
        result = self._execute("DELETE FROM book WHERE id = ?", (book_id,))
        if result.rowcount:
            logger.info(f"Book deleted: id={book_id}")
        return result.rowcount

    # ------------------------- Associations ------------------------- #
    def get_book_with_authors(self, book_id: int) -> List[BookAuthorRow]:
        """Flat join of a book with its authors, one row per author.

        The outer join keeps a book without authors as a single row whose
        author fields are None. An unknown book id gives an empty list.
        """
        if not _is_storable_id(book_id):
            return []
        rows = self._fetch_all(
            """
            SELECT b.id AS bookId, b.title, b.genre, b.published, b.state,
                   a.id AS authorId, a.firstName, a.lastName
            FROM book b
            LEFT JOIN book_author ba ON ba.bookId = b.id
            LEFT JOIN author a ON a.id = ba.authorId
            WHERE b.id = ?
            ORDER BY a.lastName, a.firstName
            """,
            (book_id,),
        )
        return [BookAuthorRow.from_dict(row) for row in rows]

    def _find_book_id(self, title: str) -> Optional[int]:
        row = self._fetch_one(
            "SELECT id FROM book WHERE lower(title) = ? ORDER BY id LIMIT 1", (title,)
        )
        return int(row["id"]) if row else None

    def _find_author_id(self, first_name: str, last_name: str) -> Optional[int]:
        row = self._fetch_one(
            "SELECT id FROM author WHERE lower(firstName) = ? AND lower(lastName) = ? "
            "ORDER BY id LIMIT 1",
            (first_name, last_name),
        )
        return int(row["id"]) if row else None

    def associate_author_with_book(self, first_name: str, last_name: str, title: str) -> None:
        """Link an author to a book, both resolved by their normalized natural keys.

        Raises NotFoundError, without writing anything, if either side is
        missing. Linking an already linked pair is a no-op.
        """
        first = _normalize(first_name, "firstName")
        last = _normalize(last_name, "lastName")
        clean_title = _normalize(title, "title")

        book_id = self._find_book_id(clean_title)
        author_id = self._find_author_id(first, last)
        if book_id is None or author_id is None:
            logger.warning(f"Association failed: book '{clean_title}' or author '{first} {last}' not found")
            raise NotFoundError("book or author not found")

        # UNIQUE (bookId, authorId): an existing pair is left alone
        result = self._execute(
            "INSERT OR IGNORE INTO book_author (bookId, authorId) VALUES (?, ?)",
            (book_id, author_id),
        )
        if result.rowcount:
            logger.info(f"Association created: book={book_id} author={author_id}")

    # ------------------------- Bootstrap ------------------------- #
    def count_entities(self) -> Dict[str, int]:
        row = self._fetch_one(
            """
            SELECT (SELECT COUNT(*) FROM author) AS authors,
                   (SELECT COUNT(*) FROM book) AS books,
                   (SELECT COUNT(*) FROM book_author) AS associations
            """
        )
        return {key: int(value) for key, value in row.items()}

    def initialize_if_empty(self) -> bool:
        """Seed the reference dataset when there are no authors and no books.

        Returns True if the dataset was inserted.
        """
        counts = self.count_entities()
        if counts["authors"] + counts["books"] != 0:
            return False

        for first_name, last_name in SEED_AUTHORS:
            self.create_author(first_name, last_name)
        for title, genre, published, state in SEED_BOOKS:
            self.create_book(title, genre, published, state)
        for first_name, last_name, title in SEED_LINKS:
            self.associate_author_with_book(first_name, last_name, title)

        logger.info(
            f"Seeded reference dataset: {len(SEED_AUTHORS)} authors, "
            f"{len(SEED_BOOKS)} books, {len(SEED_LINKS)} associations"
        )
        return True

    def close(self) -> None:
        """Close the shared connection; the next Library call reopens it."""
        database.close_connection()

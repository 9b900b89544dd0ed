import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterator, List, Optional

import lending_library.database as database
from lending_library.book import Book, BookStatus
from lending_library.validators import TextValidator, YearValidator

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Base class for failures reported by the book record service."""


class InvalidInputError(LibraryError, ValueError):
    pass


class BookNotFoundError(LibraryError, LookupError):
    pass


class ConflictError(LibraryError, ValueError):
    """Duplicate ISBN or a borrow/return on a book already in the target state."""


class StorageError(LibraryError):
    pass


_COLUMNS = (
    "id, title, author, isbn, genre, publication_year, status, "
    "borrowed_by, borrowed_date, created_at"
)


class Library:
    """Manages the collection of book records and their borrow state."""

    def __init__(self, db_file: Optional[str] = None, seed: bool = False) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        self._locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        try:
            database.initialize_database(self.db_file, seed=seed)
        except sqlite3.Error as e:
            raise StorageError(f"Could not initialize database {self.db_file}: {e}") from e

    # ------------------------- Queries ------------------------- #
    def list_books(self, status: Optional[str] = None, genre: Optional[str] = None,
                   author: Optional[str] = None) -> List[Book]:
        """Return every book matching all given filters, newest first.

        ``status`` must match exactly, ``genre`` is a case-sensitive
        substring and ``author`` a substring as matched by SQL ``LIKE``.
        Empty filters are ignored.
        """
        query = f"SELECT {_COLUMNS} FROM books WHERE 1=1"
        params: list = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if genre:
            query += " AND instr(genre, ?) > 0"
            params.append(genre)
        if author:
            query += " AND author LIKE ? ESCAPE '\\'"
            params.append(f"%{self._escape_like(author)}%")
        query += " ORDER BY created_at DESC, id DESC"

        with self._storage() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def get_book(self, book_id: int) -> Book:
        with self._storage() as conn:
            return self._fetch(conn, book_id)

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Persist a new book and return the stored record.

        Any borrow state carried by ``book`` is discarded: new books are
        always available.
        """
        if not TextValidator.is_non_empty(book.title) or not TextValidator.is_non_empty(book.author):
            raise InvalidInputError("Title and author are required")
        if not YearValidator.is_valid_year(book.publication_year):
            raise InvalidInputError("Publication year must be an integer")

        record = Book(
            title=book.title,
            author=book.author,
            isbn=TextValidator.clean_optional(book.isbn),
            genre=TextValidator.clean_optional(book.genre),
            publication_year=book.publication_year,
            created_at=self._now(),
        )
        record.mark_available()

        with self._storage() as conn:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, isbn, genre, publication_year, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (record.title, record.author, record.isbn, record.genre,
                 record.publication_year, record.status.value, record.created_at),
            )
            record.id = cursor.lastrowid
        logger.info("Added book %s: %s by %s", record.id, record.title, record.author)
        return record

    def update_book(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    isbn: Optional[str] = None, genre: Optional[str] = None,
                    publication_year: Optional[int] = None, status: Optional[str] = None,
                    borrowed_by: Optional[str] = None) -> Book:
        """Apply a partial update; arguments left as None keep their stored value.

        The borrow fields follow ``status``: switching to available clears
        them, switching to borrowed stamps today's date only when no date is
        set yet and takes ``borrowed_by`` if given.  Without a status in the
        patch the borrow fields are not touched at all.
        """
        if title is not None and not TextValidator.is_non_empty(title):
            raise InvalidInputError("Title cannot be empty")
        if author is not None and not TextValidator.is_non_empty(author):
            raise InvalidInputError("Author cannot be empty")
        if not YearValidator.is_valid_year(publication_year):
            raise InvalidInputError("Publication year must be an integer")
        new_status = self._parse_status(status) if status is not None else None

        with self._record_lock(book_id), self._storage() as conn:
            current = self._fetch(conn, book_id)
            updated = current.copy()

            if title is not None:
                updated.title = title.strip()
            if author is not None:
                updated.author = author.strip()
            if TextValidator.clean_optional(isbn) is not None:
                updated.isbn = TextValidator.clean_optional(isbn)
            if TextValidator.clean_optional(genre) is not None:
                updated.genre = TextValidator.clean_optional(genre)
            if publication_year is not None:
                updated.publication_year = publication_year

            if new_status is BookStatus.AVAILABLE:
                updated.mark_available()
            elif new_status is BookStatus.BORROWED:
                borrower = TextValidator.clean_optional(borrowed_by) or current.borrowed_by
                if borrower is None:
                    raise InvalidInputError("Borrower name is required to mark a book as borrowed")
                updated.mark_borrowed(borrower, current.borrowed_date or self._today())

            self._write(conn, updated)
        logger.info("Updated book %s", book_id)
        return updated

    def delete_book(self, book_id: int) -> Book:
        """Remove a book permanently and return what was stored."""
        with self._record_lock(book_id), self._storage() as conn:
            snapshot = self._fetch(conn, book_id)
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        logger.info("Deleted book %s: %s", book_id, snapshot.title)
        return snapshot

    def borrow_book(self, book_id: int, borrower_name: Optional[str]) -> Book:
        if not TextValidator.is_non_empty(borrower_name):
            raise InvalidInputError("Borrower name is required")

        with self._record_lock(book_id), self._storage() as conn:
            current = self._fetch(conn, book_id)
            if current.is_borrowed:
                logger.warning("Rejected borrow of book %s: already borrowed by %s", book_id, current.borrowed_by)
                raise ConflictError("Book is already borrowed")
            updated = current.copy()
            updated.mark_borrowed(borrower_name.strip(), self._today())
            self._write(conn, updated, expected_status=BookStatus.AVAILABLE)
        logger.info("Book %s borrowed by %s", book_id, updated.borrowed_by)
        return updated

    def return_book(self, book_id: int) -> Book:
        with self._record_lock(book_id), self._storage() as conn:
            current = self._fetch(conn, book_id)
            if not current.is_borrowed:
                logger.warning("Rejected return of book %s: already available", book_id)
                raise ConflictError("Book is already available")
            updated = current.copy()
            updated.mark_available()
            self._write(conn, updated, expected_status=BookStatus.BORROWED)
        logger.info("Book %s returned", book_id)
        return updated

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None

    # ------------------------- Persistence ------------------------- #
    @contextmanager
    def _storage(self) -> Iterator[sqlite3.Connection]:
        """Open a connection and translate sqlite3 failures into service errors."""
        try:
            with database.connection(self.db_file) as conn:
                yield conn
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) and "isbn" in str(e):
                raise ConflictError("A book with this ISBN already exists") from e
            logger.error("Integrity error on %s: %s", self.db_file, e)
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            logger.error("Database error on %s: %s", self.db_file, e)
            raise StorageError(str(e)) from e

    @contextmanager
    def _record_lock(self, book_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.get(book_id)
            if lock is None:
                lock = self._locks[book_id] = threading.Lock()
        try:
            with lock:
                yield
        finally:
            # a traceback may outlive this frame
            del lock

    @staticmethod
    def _fetch(conn: sqlite3.Connection, book_id: int) -> Book:
        row = conn.execute(f"SELECT {_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise BookNotFoundError(f"Book {book_id} not found")
        return Book.from_dict(dict(row))

    @staticmethod
    def _write(conn: sqlite3.Connection, book: Book, expected_status: Optional[BookStatus] = None) -> None:
        query = """
            UPDATE books SET
                title = ?, author = ?, isbn = ?, genre = ?, publication_year = ?,
                status = ?, borrowed_by = ?, borrowed_date = ?
            WHERE id = ?
        """
        params = [book.title, book.author, book.isbn, book.genre, book.publication_year,
                  book.status.value, book.borrowed_by, book.borrowed_date, book.id]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)
        cursor = conn.execute(query, params)
        if cursor.rowcount == 0:
            # another writer changed the status between our read and write
            raise ConflictError(f"Book {book.id} changed state concurrently")

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _parse_status(raw: str) -> BookStatus:
        try:
            return BookStatus(raw)
        except ValueError as e:
            allowed = ", ".join(s.value for s in BookStatus)
            raise InvalidInputError(f"Invalid status '{raw}'. Allowed: {allowed}") from e

    @staticmethod
    def _escape_like(text: str) -> str:
        return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    @staticmethod
    def _today() -> str:
        return date.today().isoformat()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from lending_library.config import settings

logger = logging.getLogger(__name__)

# Default database file; Library instances may point at another file.
DATABASE_FILE = settings.database_file

# Rows inserted into an empty table when seeding is enabled.
SAMPLE_BOOKS: List[Tuple] = [
    ("The Great Gatsby", "F. Scott Fitzgerald", "978-0-7432-7356-5", "Fiction", 1925, "available", None, None),
    ("To Kill a Mockingbird", "Harper Lee", "978-0-06-112008-4", "Fiction", 1960, "available", None, None),
    ("1984", "George Orwell", "978-0-452-28423-4", "Dystopian Fiction", 1949, "borrowed", "John Doe", "2024-06-15"),
    ("Pride and Prejudice", "Jane Austen", "978-0-14-143951-8", "Romance", 1813, "available", None, None),
]


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection, commit on success, roll back on error, always close."""
    conn = get_db_connection(db_file)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Creates the books table and its indexes if they don't exist."""
    with connection(db_file) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT UNIQUE,
                genre TEXT,
                publication_year INTEGER,
                status TEXT NOT NULL DEFAULT 'available',
                borrowed_by TEXT,
                borrowed_date DATE,
                created_at TIMESTAMP NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_status ON books(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")


def seed_sample_books(db_file: Optional[str] = None) -> int:
    """Insert the sample catalogue into an empty books table.

    Returns the number of rows inserted; an already populated table is
    left alone.
    """
    with connection(db_file) as conn:
        book_count = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
        if book_count > 0:
            return 0
        conn.executemany(
            """
            INSERT OR IGNORE INTO books
                (title, author, isbn, genre, publication_year, status, borrowed_by, borrowed_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            SAMPLE_BOOKS,
        )
    logger.info("Seeded %d sample books", len(SAMPLE_BOOKS))
    return len(SAMPLE_BOOKS)


def initialize_database(db_file: Optional[str] = None, seed: bool = False) -> None:
    """Initializes the database, creating tables and seeding sample data if asked."""
    create_tables(db_file)
    if seed:
        seed_sample_books(db_file)

from __future__ import annotations

from enum import Enum


class BookStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"


class Book:
    """Represents a single book record in the library."""

    def __init__(self, title: str | None, author: str | None, isbn: str | None = None,
                 genre: str | None = None, publication_year: int | None = None,
                 status: BookStatus | str = BookStatus.AVAILABLE,
                 borrowed_by: str | None = None, borrowed_date: str | None = None,
                 id: int | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip() if title is not None else None
        self.author = author.strip() if author is not None else None
        self.isbn = isbn
        self.genre = genre
        self.publication_year = publication_year
        self.status = BookStatus(status)
        self.borrowed_by = borrowed_by
        self.borrowed_date = borrowed_date
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (#{self.id}, {self.status.value})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    @property
    def is_borrowed(self) -> bool:
        return self.status is BookStatus.BORROWED

    # ------------------------- Transitions ------------------------- #
    def mark_borrowed(self, borrower: str, on: str) -> None:
        self.status = BookStatus.BORROWED
        self.borrowed_by = borrower
        self.borrowed_date = on

    def mark_available(self) -> None:
        self.status = BookStatus.AVAILABLE
        self.borrowed_by = None
        self.borrowed_date = None

    def copy(self) -> "Book":
        return Book.from_dict(self.to_dict())

    # ------------------------- Serialization ------------------------- #
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "genre": self.genre,
            "publication_year": self.publication_year,
            "status": self.status.value,
            "borrowed_by": self.borrowed_by,
            "borrowed_date": self.borrowed_date,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # sqlite3.Row rows are converted with dict(row) before reaching here
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data.get("isbn"),
            genre=data.get("genre"),
            publication_year=data.get("publication_year"),
            status=data.get("status") or BookStatus.AVAILABLE,
            borrowed_by=data.get("borrowed_by"),
            borrowed_date=data.get("borrowed_date"),
            created_at=data.get("created_at"),
        )

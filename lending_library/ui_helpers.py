import os
import json
from typing import List
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from lending_library.book import Book

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _status_label(book: Book) -> str:
    if book.is_borrowed:
        return f"borrowed by {book.borrowed_by} on {book.borrowed_date}"
    return "available"


def print_list_result(books: List[Book]) -> None:
    """Print a list of books in the current output mode.
    - plain: '#ID Title by Author [status]' lines, or 'No books in library.'
    - json: JSON array of full records, `[]` when empty
    - rich: Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
        return

    if not books:
        print("No books in library.")
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Genre", style="white")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(str(b.id), b.title, b.author, b.genre or "", _status_label(b))
        _console.print(table)
    else:
        for b in books:
            print(f"#{b.id} {b.title} by {b.author} [{_status_label(b)}]")


def print_book_result(book: Book, message: str | None = None) -> None:
    """Print one book record in the current output mode."""
    mode = get_output_mode()

    if mode == "json":
        payload = {"data": book.to_dict()}
        if message:
            payload["message"] = message
        print(json.dumps(payload, ensure_ascii=False))
        return

    if message:
        print(message)
    if mode == "rich":
        lines = [
            f"[bold]Author:[/] {book.author}",
            f"[bold]ISBN:[/] {book.isbn or '-'}",
            f"[bold]Genre:[/] {book.genre or '-'}",
            f"[bold]Year:[/] {book.publication_year or '-'}",
            f"[bold]Status:[/] {_status_label(book)}",
        ]
        _console.print(Panel.fit("\n".join(lines), title=f"#{book.id} {book.title}", border_style="blue"))
    else:
        print(f"ID: {book.id}")
        print(f"Title: {book.title}")
        print(f"Author: {book.author}")
        print(f"ISBN: {book.isbn or '-'}")
        print(f"Genre: {book.genre or '-'}")
        print(f"Year: {book.publication_year or '-'}")
        print(f"Status: {_status_label(book)}")

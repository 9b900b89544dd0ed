import sys
from typing import NoReturn, Optional

import typer
import uvicorn

from lending_library.book import Book
from lending_library.config import settings
from lending_library.library import Library, LibraryError
from lending_library.logging_config import setup_logging
from lending_library.ui_helpers import set_output_mode, print_list_result, print_book_result

APP_NAME = "Library CLI"


class LibraryManager:
    """Holds the Library instance shared by CLI commands."""
    _instance: Optional[Library] = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            cls._instance = Library(db_file=settings.database_file, seed=settings.seed_sample_data)
        return cls._instance


def _fail(error: LibraryError) -> NoReturn:
    print(f"Error: {error}")
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: str = typer.Option(
        "plain",
        "--output",
        "-o",
        help="Output format: plain | json | rich",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log service activity to stderr"),
):
    """Global CLI options (output mode, logging)."""
    set_output_mode(output)
    if verbose:
        setup_logging(settings.log_level, settings.log_file)


@app.command("list")
def cli_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="available | borrowed"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre substring (case-sensitive)"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author substring"),
):
    """List books, newest first."""
    lib = LibraryManager.get_instance()
    try:
        books = lib.list_books(status=status, genre=genre, author=author)
    except LibraryError as e:
        _fail(e)
    print_list_result(books)


@app.command("show")
def cli_show(book_id: int):
    """Show a single book by ID."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.get_book(book_id)
    except LibraryError as e:
        _fail(e)
    print_book_result(book)


@app.command("add")
def cli_add(
    title: str,
    author: str,
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    genre: Optional[str] = typer.Option(None, "--genre"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
):
    """Add a new book."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.add_book(Book(title=title, author=author, isbn=isbn, genre=genre, publication_year=year))
    except LibraryError as e:
        _fail(e)
    print_book_result(book, message=f"Successfully added: {book.title} by {book.author}")


@app.command("update")
def cli_update(
    book_id: int,
    title: Optional[str] = typer.Option(None, "--title"),
    author: Optional[str] = typer.Option(None, "--author"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    genre: Optional[str] = typer.Option(None, "--genre"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
    status: Optional[str] = typer.Option(None, "--status", help="available | borrowed"),
    borrowed_by: Optional[str] = typer.Option(None, "--borrowed-by"),
):
    """Update the given fields of a book."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.update_book(
            book_id, title=title, author=author, isbn=isbn, genre=genre,
            publication_year=year, status=status, borrowed_by=borrowed_by,
        )
    except LibraryError as e:
        _fail(e)
    print_book_result(book, message=f"Book #{book_id} updated.")


@app.command("borrow")
def cli_borrow(book_id: int, borrower: str):
    """Lend a book to BORROWER."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.borrow_book(book_id, borrower)
    except LibraryError as e:
        _fail(e)
    print_book_result(book, message=f"{book.title} borrowed by {book.borrowed_by}.")


@app.command("return")
def cli_return(book_id: int):
    """Mark a borrowed book as returned."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.return_book(book_id)
    except LibraryError as e:
        _fail(e)
    print_book_result(book, message=f"{book.title} returned.")


@app.command("remove")
def cli_remove(book_id: int):
    """Delete a book permanently."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.delete_book(book_id)
    except LibraryError as e:
        _fail(e)
    print(f"Book #{book_id} ({book.title}) has been removed.")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    uvicorn.run("lending_library.api:app", host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    sys.exit(app())

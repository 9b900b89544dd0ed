import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from lending_library.book import Book
from lending_library.config import settings
from lending_library.database import get_db_connection
from lending_library.library import (
    BookNotFoundError,
    ConflictError,
    InvalidInputError,
    Library,
    StorageError,
)
from lending_library.logging_config import setup_logging

logger = logging.getLogger(__name__)

_library: Optional[Library] = None


def get_library() -> Library:
    """Dependency returning the process-wide Library, created on first use."""
    global _library
    if _library is None:
        _library = Library(db_file=settings.database_file, seed=settings.seed_sample_data)
    return _library


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file)
    library = get_library()
    logger.info("📚 %s running on http://%s:%s", settings.app_name, settings.api_host, settings.api_port)
    logger.info("📖 API Documentation: http://%s:%s/api/docs", settings.api_host, settings.api_port)
    try:
        yield
    finally:
        library.close()
        logger.info("Database connection closed.")


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    status: str
    borrowed_by: str | None = None
    borrowed_date: str | None = None
    created_at: str | None = None


class BookCreateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None


class UpdateBookModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    status: str | None = Field(default=None, description="available | borrowed")
    borrowed_by: str | None = None


class BorrowModel(BaseModel):
    borrower_name: str | None = None


class BookResponse(BaseModel):
    success: bool = True
    data: BookModel


class BookMessageResponse(BookResponse):
    message: str


class BookListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[BookModel]


def _to_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


# --- Error handling ---
def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content = {"error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return _error(400, str(exc))


@app.exception_handler(BookNotFoundError)
async def not_found_handler(request: Request, exc: BookNotFoundError):
    return _error(404, "Book not found")


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error(400, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Database error during %s %s: %s", request.method, request.url.path, exc)
    return _error(500, "Database error", str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    # a non-numeric id can never name a stored book
    if errors and errors[0].get("loc", ("",))[0] == "path":
        return _error(404, "Book not found")
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
        for err in errors
    )
    return _error(400, "Invalid request", details)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (404, 405):
        return _error(404, "Endpoint not found", f"Cannot {request.method} {request.url.path}")
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error during %s %s", request.method, request.url.path)
    return _error(500, "Something went wrong!", str(exc))


# --- Health check ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health endpoint: pings the database file."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
    }


# --- Books ---
@app.get("/api/books", response_model=BookListResponse)
def list_books(
    status: Optional[str] = Query(None, description="Filter by status (available/borrowed)"),
    genre: Optional[str] = Query(None, description="Filter by genre (substring)"),
    author: Optional[str] = Query(None, description="Filter by author (substring)"),
    library: Library = Depends(get_library),
):
    """Get all books with optional filtering, newest first."""
    books = library.list_books(status=status, genre=genre, author=author)
    return BookListResponse(count=len(books), data=[_to_model(b) for b in books])


@app.get("/api/books/{book_id}", response_model=BookResponse)
def get_book(book_id: int, library: Library = Depends(get_library)):
    return BookResponse(data=_to_model(library.get_book(book_id)))


@app.post("/api/books", response_model=BookMessageResponse, status_code=201)
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    """Add a new book. New books always start out available."""
    book = Book(
        title=payload.title,
        author=payload.author,
        isbn=payload.isbn,
        genre=payload.genre,
        publication_year=payload.publication_year,
    )
    created = library.add_book(book)
    return BookMessageResponse(message="Book added successfully", data=_to_model(created))


@app.put("/api/books/{book_id}", response_model=BookMessageResponse)
def update_book(book_id: int, update: UpdateBookModel, library: Library = Depends(get_library)):
    """Partially update a book; omitted fields keep their current value."""
    updated = library.update_book(book_id, **update.model_dump(exclude_none=True))
    return BookMessageResponse(message="Book updated successfully", data=_to_model(updated))


@app.delete("/api/books/{book_id}", response_model=BookMessageResponse)
def delete_book(book_id: int, library: Library = Depends(get_library)):
    deleted = library.delete_book(book_id)
    return BookMessageResponse(message="Book deleted successfully", data=_to_model(deleted))


@app.post("/api/books/{book_id}/borrow", response_model=BookMessageResponse)
def borrow_book(book_id: int, payload: Optional[BorrowModel] = None, library: Library = Depends(get_library)):
    borrower = payload.borrower_name if payload else None
    book = library.borrow_book(book_id, borrower)
    return BookMessageResponse(message="Book borrowed successfully", data=_to_model(book))


@app.post("/api/books/{book_id}/return", response_model=BookMessageResponse)
def return_book(book_id: int, library: Library = Depends(get_library)):
    book = library.return_book(book_id)
    return BookMessageResponse(message="Book returned successfully", data=_to_model(book))


# --- API documentation ---
@app.get("/api/docs")
def api_docs():
    base_url = f"http://{settings.api_host}:{settings.api_port}"
    return {
        "title": settings.app_name,
        "version": settings.app_version,
        "description": "A RESTful API for managing a book library with borrowing capabilities",
        "base_url": base_url,
        "endpoints": [
            {
                "method": "GET",
                "path": "/api/books",
                "description": "Get all books with optional filtering",
                "query_params": {
                    "status": "Filter by status (available/borrowed)",
                    "genre": "Filter by genre",
                    "author": "Filter by author",
                },
                "example": "/api/books?status=available&genre=Fiction",
            },
            {"method": "GET", "path": "/api/books/{id}", "description": "Get a specific book by ID"},
            {
                "method": "POST",
                "path": "/api/books",
                "description": "Add a new book",
                "body": {
                    "title": "string (required)",
                    "author": "string (required)",
                    "isbn": "string (optional)",
                    "genre": "string (optional)",
                    "publication_year": "number (optional)",
                },
            },
            {
                "method": "PUT",
                "path": "/api/books/{id}",
                "description": "Update a book",
                "body": {
                    "title": "string (optional)",
                    "author": "string (optional)",
                    "isbn": "string (optional)",
                    "genre": "string (optional)",
                    "publication_year": "number (optional)",
                    "status": "string (optional)",
                    "borrowed_by": "string (optional)",
                },
            },
            {"method": "DELETE", "path": "/api/books/{id}", "description": "Delete a book"},
            {
                "method": "POST",
                "path": "/api/books/{id}/borrow",
                "description": "Borrow a book",
                "body": {"borrower_name": "string (required)"},
            },
            {"method": "POST", "path": "/api/books/{id}/return", "description": "Return a borrowed book"},
        ],
    }


# --- Static files ---
if os.path.isdir(settings.static_dir):
    app.mount("/static", StaticFiles(directory=settings.static_dir), name="static")

    @app.get("/")
    def read_root():
        """Serve the frontend page."""
        return FileResponse(os.path.join(settings.static_dir, "index.html"))

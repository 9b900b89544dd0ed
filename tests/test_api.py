from datetime import date

import pytest
from fastapi.testclient import TestClient

from lending_library.api import app, get_library
from lending_library.library import Library, StorageError


@pytest.fixture
def client(lib):
    # Route every request to the per-test Library
    app.dependency_overrides[get_library] = lambda: lib
    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()


def _create(client, **fields):
    payload = {"title": "The Great Gatsby", "author": "F. Scott Fitzgerald"}
    payload.update(fields)
    response = client.post("/api/books", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_get_books_empty(client):
    response = client.get("/api/books")
    assert response.status_code == 200
    assert response.json() == {"success": True, "count": 0, "data": []}


def test_create_book(client):
    response = client.post(
        "/api/books",
        json={"title": "1984", "author": "George Orwell", "isbn": "978-0-452-28423-4",
              "genre": "Dystopian Fiction", "publication_year": 1949,
              "status": "borrowed", "borrowed_by": "Eve"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Book added successfully"
    data = body["data"]
    assert data["id"] > 0
    assert data["status"] == "available"
    assert data["borrowed_by"] is None
    assert data["borrowed_date"] is None
    assert data["publication_year"] == 1949
    assert data["created_at"]


def test_create_book_missing_title(client):
    response = client.post("/api/books", json={"author": "A"})
    assert response.status_code == 400
    assert response.json() == {"error": "Title and author are required"}


def test_create_book_without_body(client):
    response = client.post("/api/books")
    assert response.status_code == 400
    assert "error" in response.json()


def test_create_book_bad_year(client):
    response = client.post("/api/books", json={"title": "T", "author": "A", "publication_year": "soon"})
    assert response.status_code == 400
    assert "publication_year" in response.json()["message"]


def test_create_duplicate_isbn(client):
    _create(client, isbn="123")
    response = client.post("/api/books", json={"title": "Other", "author": "B", "isbn": "123"})
    assert response.status_code == 400
    assert response.json()["error"] == "A book with this ISBN already exists"


def test_get_book(client):
    created = _create(client)
    response = client.get(f"/api/books/{created['id']}")
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": created}


def test_get_missing_book(client):
    response = client.get("/api/books/999")
    assert response.status_code == 404
    assert response.json() == {"error": "Book not found"}


def test_get_book_with_non_numeric_id(client):
    response = client.get("/api/books/abc")
    assert response.status_code == 404


def test_list_filters(client):
    _create(client, title="Gatsby", genre="Fiction")
    _create(client, title="1984", author="George Orwell", genre="Dystopian Fiction")
    romance = _create(client, title="Emma", author="Jane Austen", genre="Romance")
    client.post(f"/api/books/{romance['id']}/borrow", json={"borrower_name": "Alice"})

    body = client.get("/api/books", params={"genre": "Fic"}).json()
    assert body["count"] == 2
    assert [b["title"] for b in body["data"]] == ["1984", "Gatsby"]

    body = client.get("/api/books", params={"status": "available"}).json()
    assert {b["title"] for b in body["data"]} == {"Gatsby", "1984"}

    body = client.get("/api/books", params={"status": "borrowed", "author": "Austen"}).json()
    assert [b["title"] for b in body["data"]] == ["Emma"]


def test_update_book(client):
    created = _create(client, isbn="111")
    response = client.put(f"/api/books/{created['id']}", json={"title": "Updated Title"})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Book updated successfully"
    assert body["data"]["title"] == "Updated Title"
    assert body["data"]["author"] == created["author"]
    assert body["data"]["isbn"] == "111"


def test_update_null_fields_are_ignored(client):
    created = _create(client, genre="Fiction")
    response = client.put(f"/api/books/{created['id']}", json={"genre": None, "title": None})
    assert response.status_code == 200
    assert response.json()["data"]["genre"] == "Fiction"
    assert response.json()["data"]["title"] == created["title"]


def test_update_status_coupling(client):
    created = _create(client)
    url = f"/api/books/{created['id']}"

    data = client.put(url, json={"status": "borrowed", "borrowed_by": "Alice"}).json()["data"]
    assert data["status"] == "borrowed"
    assert data["borrowed_by"] == "Alice"
    assert data["borrowed_date"] == date.today().isoformat()

    data = client.put(url, json={"status": "available", "borrowed_by": "Bob"}).json()["data"]
    assert data["status"] == "available"
    assert data["borrowed_by"] is None
    assert data["borrowed_date"] is None


def test_update_invalid_status(client):
    created = _create(client)
    response = client.put(f"/api/books/{created['id']}", json={"status": "lost"})
    assert response.status_code == 400


def test_update_isbn_conflict(client):
    _create(client, isbn="111")
    other = _create(client, title="Other", isbn="222")
    response = client.put(f"/api/books/{other['id']}", json={"isbn": "111"})
    assert response.status_code == 400
    assert response.json()["error"] == "A book with this ISBN already exists"


def test_update_missing_book(client):
    response = client.put("/api/books/12", json={"title": "X"})
    assert response.status_code == 404


def test_delete_book(client):
    created = _create(client)
    response = client.delete(f"/api/books/{created['id']}")
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Book deleted successfully", "data": created}
    assert client.get(f"/api/books/{created['id']}").status_code == 404
    assert client.delete(f"/api/books/{created['id']}").status_code == 404


def test_borrow_and_return_flow(client):
    created = _create(client)
    url = f"/api/books/{created['id']}"

    response = client.post(f"{url}/borrow", json={"borrower_name": "Alice"})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Book borrowed successfully"
    assert body["data"]["borrowed_by"] == "Alice"
    assert body["data"]["borrowed_date"] == date.today().isoformat()

    response = client.post(f"{url}/borrow", json={"borrower_name": "Bob"})
    assert response.status_code == 400
    assert response.json() == {"error": "Book is already borrowed"}

    response = client.post(f"{url}/return")
    assert response.status_code == 200
    assert response.json()["message"] == "Book returned successfully"
    assert response.json()["data"]["status"] == "available"

    response = client.post(f"{url}/return")
    assert response.status_code == 400
    assert response.json() == {"error": "Book is already available"}


@pytest.mark.parametrize("payload", [None, {}, {"borrower_name": ""}])
def test_borrow_requires_borrower_name(client, payload):
    created = _create(client)
    if payload is None:
        response = client.post(f"/api/books/{created['id']}/borrow")
    else:
        response = client.post(f"/api/books/{created['id']}/borrow", json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Borrower name is required"}


def test_borrow_missing_book(client):
    response = client.post("/api/books/77/borrow", json={"borrower_name": "Alice"})
    assert response.status_code == 404


def test_storage_failure_maps_to_500(client, lib, monkeypatch):
    def broken(*args, **kwargs):
        raise StorageError("disk I/O error")

    monkeypatch.setattr(Library, "list_books", broken)
    response = client.get("/api/books")
    assert response.status_code == 500
    assert response.json() == {"error": "Database error", "message": "disk I/O error"}


def test_unknown_endpoint(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"error": "Endpoint not found", "message": "Cannot GET /api/nothing-here"}


def test_unsupported_method_is_unknown_endpoint(client):
    created = _create(client)
    response = client.patch(f"/api/books/{created['id']}", json={"title": "X"})
    assert response.status_code == 404
    assert response.json() == {
        "error": "Endpoint not found",
        "message": f"Cannot PATCH /api/books/{created['id']}",
    }


def test_api_docs(client):
    response = client.get("/api/docs")
    assert response.status_code == 200
    paths = {(e["method"], e["path"]) for e in response.json()["endpoints"]}
    assert ("POST", "/api/books/{id}/borrow") in paths
    assert ("POST", "/api/books/{id}/return") in paths


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] in {"healthy", "degraded"}

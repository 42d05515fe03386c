import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from bookify.config import Settings, UpdateMode, get_settings
from bookify.main import app, get_db
from bookify.storage import Storage

TEST_DB_NAME = "test_library"


@pytest.fixture(scope="function")
def test_settings():
    return Settings(
        access_token_secret="test-secret-for-the-bookify-test-suite",
        environment="test",
        book_update_mode=UpdateMode.STRICT,
        track_quantity=True,
        default_page_size=10,
    )


@pytest.fixture(scope="function")
def storage():
    return Storage(AsyncMongoMockClient(), TEST_DB_NAME)


@pytest.fixture(scope="function")
def client(storage, test_settings):
    app.state.testing = True
    app.state.db = storage
    app.dependency_overrides[get_db] = lambda: storage
    app.dependency_overrides[get_settings] = lambda: test_settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture(scope="function")
def auth_client(client):
    response = client.post("/jwt", json={"id": "user-1", "email": "admin@bookify.dev"})
    assert response.status_code == 200
    return client


@pytest.fixture(scope="function")
def seed_books(auth_client):
    """Adds a small catalog through the API and returns the new ids by name."""
    books = [
        {"name": "The Hobbit", "quantity": 3, "rating": 4.7, "category": "Fantasy"},
        {"name": "Hobbit Companion", "quantity": 0, "rating": 3.9, "category": "Reference"},
        {"name": "Dune", "quantity": 2, "rating": 4.5, "category": "Science Fiction"},
        {"name": "Neuromancer", "quantity": 1, "rating": 4.1, "category": "Science Fiction"},
        {"name": "A.I. (2nd ed.)", "quantity": 5, "rating": 3.2, "category": "Reference"},
    ]
    ids = {}
    for book in books:
        response = auth_client.post("/book", json=book)
        assert response.status_code == 200
        ids[book["name"]] = response.json()["insertedId"]
    return ids

"""Route fixtures: the app wired to the per-test database and in-memory carts."""

from typing import Iterator

from fastapi.testclient import TestClient
import pytest

from tinkertank.api.dependencies import get_cart_storage
from tinkertank.database import get_db
from tinkertank.main import app
from tinkertank.services.cart_service import InMemoryCartStorage


@pytest.fixture
def cart_storage() -> InMemoryCartStorage:
    return InMemoryCartStorage()


@pytest.fixture
def client(db, cart_storage) -> Iterator[TestClient]:
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cart_storage] = lambda: cart_storage
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()

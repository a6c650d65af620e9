"""Fixtures for F6 tests - Web API, CLI and maintenance."""

import pytest
from fastapi.testclient import TestClient

from learnportal.web.api import create_app


@pytest.fixture
def client(engine):
    """Test client; entering it runs startup, which seeds the admin."""
    with TestClient(create_app(engine)) as client:
        yield client


@pytest.fixture
def login(client):
    """Log in and return the auth headers for later requests."""

    def _login(username: str, password: str) -> dict[str, str]:
        response = client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return {"X-Username": username, "X-Session-Token": response.json()["token"]}

    return _login


@pytest.fixture
def admin_headers(login) -> dict[str, str]:
    return login("admin", "admin")


@pytest.fixture
def alice_headers(client, login) -> dict[str, str]:
    """Register alice and log her in."""
    response = client.post("/api/auth/register", json={"username": "alice", "password": "pw123"})
    assert response.status_code == 201, response.text
    return login("alice", "pw123")

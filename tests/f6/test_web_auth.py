"""Tests for auth endpoints (F6)."""


class TestLogin:
    """Tests for POST /api/auth/login."""

    def test_login_default_admin(self, client):
        response = client.post("/api/auth/login", json={"username": "admin", "password": "admin"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["user"]["role"] == "admin"
        assert data["token"]

    def test_login_wrong_password(self, client):
        """Bad credentials return 401 with the generic message."""
        response = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid credentials"

    def test_unknown_user_same_message(self, client):
        response = client.post("/api/auth/login", json={"username": "ghost", "password": "x"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid credentials"

    def test_each_login_opens_a_session(self, client, login):
        login("admin", "admin")
        headers = login("admin", "admin")
        data = client.get("/api/auth/me", headers=headers).json()
        assert data["session_count"] == 2


class TestRegister:
    """Tests for POST /api/auth/register."""

    def test_register_user(self, client):
        response = client.post("/api/auth/register", json={"username": "bob", "password": "pw123"})
        assert response.status_code == 201
        data = response.json()
        assert data["user"]["username"] == "bob"
        assert data["user"]["role"] == "user"
        assert data["token"] is None

    def test_duplicate_username(self, client, alice_headers):
        response = client.post("/api/auth/register", json={"username": "alice", "password": "pw999"})
        assert response.status_code == 409
        assert response.json()["error"] == "Username already exists"

    def test_invalid_input(self, client):
        response = client.post("/api/auth/register", json={"username": "ab", "password": "pw123"})
        assert response.status_code == 400
        assert "at least 3" in response.json()["error"]

    def test_admin_role_requires_admin(self, client, alice_headers):
        """Only an admin may create another admin."""
        body = {"username": "eve", "password": "pw123", "role": "admin"}
        assert client.post("/api/auth/register", json=body).status_code == 403
        assert client.post("/api/auth/register", json=body, headers=alice_headers).status_code == 403

    def test_admin_creates_admin(self, client, admin_headers):
        body = {"username": "root2", "password": "pw123", "role": "admin"}
        response = client.post("/api/auth/register", json=body, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "admin"


class TestSessionEndpoints:
    """Tests for validate, me and logout."""

    def test_me_requires_headers(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_me(self, client, alice_headers):
        response = client.get("/api/auth/me", headers=alice_headers)
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    def test_validate(self, client, alice_headers):
        body = {"username": "alice", "token": alice_headers["X-Session-Token"]}
        assert client.post("/api/auth/validate", json=body).status_code == 200
        body["token"] = "0" * 64
        response = client.post("/api/auth/validate", json=body)
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_logout_ends_session(self, client, alice_headers):
        assert client.post("/api/auth/logout", headers=alice_headers).status_code == 204
        assert client.get("/api/auth/me", headers=alice_headers).status_code == 401

    def test_session_expires_after_retention(self, client, clock, alice_headers):
        """Sessions older than the retention window are rejected."""
        clock.advance(days=31)
        assert client.get("/api/auth/me", headers=alice_headers).status_code == 401


class TestAnonymousAudit:
    """Actions of unauthenticated callers stay out of other users' logs."""

    def test_failed_login_and_register_not_in_caller_log(self, client, engine, alice_headers):
        assert client.get("/api/auth/me", headers=alice_headers).status_code == 200
        client.post("/api/auth/login", json={"username": "mallory", "password": "x"})
        client.post("/api/auth/register", json={"username": "carol", "password": "pw123"})

        alice_log = engine.audit.list(namespace="alice")
        assert {e.action for e in alice_log} == {"user_login"}

        anonymous = {(e.action, e.entity_id, e.user_id) for e in engine.audit.list(namespace=None)}
        assert ("login_failed", "mallory", "anonymous") in anonymous
        assert ("user_registered", "carol", "anonymous") in anonymous

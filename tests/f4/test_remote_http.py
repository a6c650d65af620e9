"""Tests for the httpx remote store client (F4)."""

import json

import httpx
import pytest

from learnportal.sync.remote import HttpRemoteStore, NullRemoteStore

BASE_URL = "http://remote.test/api"


def make_store(handler) -> HttpRemoteStore:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpRemoteStore(BASE_URL, client=client)


class TestHttpRemoteStore:
    """Tests for HttpRemoteStore against a mock transport."""

    @pytest.mark.asyncio
    async def test_save_puts_document(self):
        """save() with an id PUTs to /{collection}/{id}."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"id": "r1"})

        store = make_store(handler)
        result = await store.save("users/alice/progress", {"id": "r1", "status": "completed"}, "r1")
        await store.aclose()

        assert result == "r1"
        method, path, body = seen[0]
        assert method == "PUT"
        assert path.endswith("/users/alice/progress/r1")
        assert body["status"] == "completed"

    @pytest.mark.asyncio
    async def test_save_without_id_posts(self):
        """save() without an id POSTs and returns the server id."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            return httpx.Response(201, json={"id": "server-1"})

        store = make_store(handler)
        assert await store.save("audit_log", {"action": "x"}) == "server-1"

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        store = make_store(lambda request: httpx.Response(404))
        assert await store.get("users", "ghost") is None

    @pytest.mark.asyncio
    async def test_get_all_returns_list(self):
        """get_all() returns only dict documents."""
        docs = [{"id": "a"}, {"id": "b"}, "junk"]
        store = make_store(lambda request: httpx.Response(200, json=docs))
        assert await store.get_all("users") == [{"id": "a"}, {"id": "b"}]

    @pytest.mark.asyncio
    async def test_delete_missing_is_success(self):
        store = make_store(lambda request: httpx.Response(404))
        assert await store.delete("users", "ghost") is True

    @pytest.mark.asyncio
    async def test_ping(self):
        """ping() is true for any non-server-error response."""
        store = make_store(lambda request: httpx.Response(200, json={"status": "ok"}))
        assert await store.ping() is True
        store = make_store(lambda request: httpx.Response(503))
        assert await store.ping() is False


class TestFailuresNeverRaise:
    """Transport and HTTP errors come back as empty values."""

    @staticmethod
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    @pytest.mark.asyncio
    async def test_connect_error(self):
        store = make_store(self.unreachable)
        assert await store.save("users", {"id": "a"}, "a") is None
        assert await store.get("users", "a") is None
        assert await store.get_all("users") == []
        assert await store.delete("users", "a") is False
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_server_error(self):
        store = make_store(lambda request: httpx.Response(500))
        assert await store.save("users", {"id": "a"}, "a") is None
        assert await store.get_all("users") == []
        assert await store.delete("users", "a") is False


class TestNullRemoteStore:
    """The null store is always offline."""

    @pytest.mark.asyncio
    async def test_everything_empty(self):
        store = NullRemoteStore()
        assert await store.ping() is False
        assert await store.save("users", {"id": "a"}, "a") is None
        assert await store.get_all("users") == []
        assert await store.delete("users", "a") is False

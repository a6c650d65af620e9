"""Fixtures for F4 tests - consistency checker and replication."""

import asyncio

import pytest


class FakeRemote:
    """In-memory remote store that records every call."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.docs: dict[str, dict[str, dict]] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.closed = False

    async def _maybe_wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("remote down")

    async def save(self, collection, doc, doc_id=None):
        await self._maybe_wait()
        self.calls.append(("save", collection, doc_id))
        self.docs.setdefault(collection, {})[doc_id] = dict(doc)
        return doc_id

    async def get(self, collection, doc_id=None):
        await self._maybe_wait()
        if doc_id is None:
            return list(self.docs.get(collection, {}).values())
        return self.docs.get(collection, {}).get(doc_id)

    async def get_all(self, collection):
        await self._maybe_wait()
        return list(self.docs.get(collection, {}).values())

    async def delete(self, collection, doc_id):
        await self._maybe_wait()
        self.calls.append(("delete", collection, doc_id))
        self.docs.get(collection, {}).pop(doc_id, None)
        return True

    async def ping(self):
        return not self.fail

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def make_remote():
    """Factory for fake remotes that fail or respond slowly."""
    return FakeRemote

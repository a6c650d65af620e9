"""Remote document store clients.

The remote store is a best-effort mirror. Every call may fail or return an
empty value; none of them raise for transport or HTTP errors.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

Document = dict[str, Any]


class RemoteStore(Protocol):
    """Four-verb document contract (plus a liveness ping)."""

    async def save(self, collection: str, doc: Document, doc_id: str | None = None) -> str | None: ...

    async def get(self, collection: str, doc_id: str | None = None) -> Document | list[Document] | None: ...

    async def get_all(self, collection: str) -> list[Document]: ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...


class NullRemoteStore:
    """Remote store that is never there."""

    async def save(self, collection: str, doc: Document, doc_id: str | None = None) -> str | None:
        return None

    async def get(self, collection: str, doc_id: str | None = None) -> Document | list[Document] | None:
        return None

    async def get_all(self, collection: str) -> list[Document]:
        return []

    async def delete(self, collection: str, doc_id: str) -> bool:
        return False

    async def ping(self) -> bool:
        return False

    async def aclose(self) -> None:
        return None


class HttpRemoteStore:
    """REST document store reached through httpx.

    Endpoints, relative to base_url:
    - PUT    /{collection}/{id}   upsert a document, responds {"id": ...}
    - POST   /{collection}        insert with a server-side id
    - GET    /{collection}/{id}   one document
    - GET    /{collection}        list of documents
    - DELETE /{collection}/{id}
    - GET    /health              liveness
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def save(self, collection: str, doc: Document, doc_id: str | None = None) -> str | None:
        try:
            if doc_id:
                response = await self._client.put(f"/{collection}/{doc_id}", json=doc)
            else:
                response = await self._client.post(f"/{collection}", json=doc)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("remote_save_failed", collection=collection, doc_id=doc_id, error=str(e))
            return None
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("id"):
            return str(body["id"])
        return doc_id

    async def get(self, collection: str, doc_id: str | None = None) -> Document | list[Document] | None:
        if doc_id is None:
            return await self.get_all(collection)
        try:
            response = await self._client.get(f"/{collection}/{doc_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("remote_get_failed", collection=collection, doc_id=doc_id, error=str(e))
            return None
        return body if isinstance(body, dict) else None

    async def get_all(self, collection: str) -> list[Document]:
        try:
            response = await self._client.get(f"/{collection}")
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("remote_list_failed", collection=collection, error=str(e))
            return []
        if not isinstance(body, list):
            return []
        return [d for d in body if isinstance(d, dict)]

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            response = await self._client.delete(f"/{collection}/{doc_id}")
            if response.status_code == 404:
                return True
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("remote_delete_failed", collection=collection, doc_id=doc_id, error=str(e))
            return False
        return True

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.info("remote_unreachable", base_url=self.base_url, error=str(e))
            return False
        return response.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()

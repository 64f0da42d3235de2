"""HTTP document-store backend speaking a small JSON REST protocol."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx

from smarteval.core.config import StoreConfig
from smarteval.core.errors import DocumentNotFound

from .documents import Document, DocumentStore, WriteBatch, filter_and_sort

LOGGER = logging.getLogger("smarteval.store.http")


@dataclass
class HttpStoreConfig:
    base_url: str
    api_key: str | None = None
    timeout: float = 30.0

    @classmethod
    def from_store_config(cls, config: StoreConfig) -> "HttpStoreConfig":
        if not config.api_base:
            raise ValueError("store.api_base is required for the http backend")
        return cls(base_url=config.api_base.rstrip("/"), api_key=config.api_key, timeout=config.timeout)


class HttpDocumentStore(DocumentStore):
    """Async client for ``/api/collections/{collection}/documents`` endpoints."""

    def __init__(self, config: HttpStoreConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        if client is None:
            self._client = httpx.AsyncClient(base_url=config.base_url, timeout=config.timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    def _build_headers(self) -> Dict[str, str] | None:
        if not self._config.api_key:
            return None
        return {"Authorization": f"Bearer {self._config.api_key}"}

    @staticmethod
    def _collection_path(collection: str, doc_id: str | None = None) -> str:
        path = f"/api/collections/{collection}/documents"
        return f"{path}/{doc_id}" if doc_id else path

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RuntimeError("Document store returned non-JSON payload") from exc

    @staticmethod
    def _to_document(payload: Mapping[str, Any]) -> Document:
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {key: value for key, value in payload.items() if key != "id"}
        return Document(id=str(payload["id"]), data=dict(data))

    async def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> List[Document]:
        params: Dict[str, Any] = {}
        if order_by:
            params["orderBy"] = order_by
            params["direction"] = "desc" if descending else "asc"
        if where:
            params["where"] = json.dumps(dict(where), ensure_ascii=False)
        if limit is not None:
            params["limit"] = limit
        response = await self._client.get(
            self._collection_path(collection),
            params=params,
            headers=self._build_headers(),
        )
        response.raise_for_status()
        payload = self._json(response)
        if isinstance(payload, dict):
            payload = payload.get("documents", [])
        documents = [self._to_document(item) for item in payload if isinstance(item, dict)]
        LOGGER.debug("Fetched documents", extra={"collection": collection, "count": len(documents)})
        # Servers that ignore query params still get the promised semantics.
        return filter_and_sort(documents, order_by=order_by, descending=descending, where=where, limit=limit)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        response = await self._client.get(
            self._collection_path(collection, doc_id),
            headers=self._build_headers(),
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return self._to_document(self._json(response))

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        response = await self._client.post(
            self._collection_path(collection),
            json=dict(data),
            headers=self._build_headers(),
        )
        response.raise_for_status()
        payload = self._json(response)
        if not isinstance(payload, dict) or "id" not in payload:
            raise RuntimeError("Document store did not return an id for the new document")
        return str(payload["id"])

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        response = await self._client.put(
            self._collection_path(collection, doc_id),
            json=dict(data),
            headers=self._build_headers(),
        )
        response.raise_for_status()

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        response = await self._client.patch(
            self._collection_path(collection, doc_id),
            json=dict(data),
            headers=self._build_headers(),
        )
        if response.status_code == 404:
            raise DocumentNotFound(collection, doc_id)
        response.raise_for_status()

    async def delete(self, collection: str, doc_id: str) -> None:
        response = await self._client.delete(
            self._collection_path(collection, doc_id),
            headers=self._build_headers(),
        )
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def commit(self, batch: WriteBatch) -> None:
        if not batch.operations:
            return
        response = await self._client.post(
            "/api/batch",
            json={"operations": [op.to_payload() for op in batch.operations]},
            headers=self._build_headers(),
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpDocumentStore", "HttpStoreConfig"]

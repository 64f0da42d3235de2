"""FastAPI mock of the document-store REST API used by the HTTP backend tests."""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Body, FastAPI, Header, HTTPException, Query, Response
from pydantic import BaseModel, Field


class BatchOperationPayload(BaseModel):
    op: str
    collection: str
    id: str
    data: Optional[Dict[str, Any]] = None


class BatchPayload(BaseModel):
    operations: List[BatchOperationPayload] = Field(default_factory=list)


class DocumentAPIMock:
    """In-memory FastAPI app holding collections of JSON documents."""

    def __init__(
        self,
        *,
        base_url: str = "http://documents-mock.local",
        token: str | None = "test-token",
    ) -> None:
        self.base_url = base_url
        self.token = token
        self.app = FastAPI()
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.requests: List[Dict[str, Any]] = []
        self.failing: set[str] = set()
        self._counter = 0
        self._register_routes()

    def _check(self, collection: str, authorization: Optional[str]) -> None:
        if self.token and authorization != f"Bearer {self.token}":
            raise HTTPException(status_code=401, detail="invalid token")
        if collection in self.failing:
            raise HTTPException(status_code=503, detail=f"{collection} unavailable")

    def _register_routes(self) -> None:
        app = self.app

        @app.get("/api/collections/{collection}/documents")
        def list_documents(
            collection: str,
            orderBy: Optional[str] = Query(default=None),
            direction: str = Query(default="asc"),
            where: Optional[str] = Query(default=None),
            limit: Optional[int] = Query(default=None),
            authorization: Optional[str] = Header(default=None),
        ) -> List[Dict[str, Any]]:
            self._check(collection, authorization)
            self.requests.append({"method": "GET", "collection": collection, "orderBy": orderBy, "where": where})
            filters = json.loads(where) if where else {}
            docs = [
                {"id": doc_id, "data": copy.deepcopy(data)}
                for doc_id, data in self.collections.get(collection, {}).items()
                if all(data.get(key) == value for key, value in filters.items())
            ]
            if orderBy:
                docs.sort(key=lambda doc: str(doc["data"].get(orderBy, "")), reverse=direction == "desc")
            return docs[:limit] if limit is not None else docs

        @app.get("/api/collections/{collection}/documents/{doc_id}")
        def get_document(
            collection: str, doc_id: str, authorization: Optional[str] = Header(default=None)
        ) -> Dict[str, Any]:
            self._check(collection, authorization)
            data = self.collections.get(collection, {}).get(doc_id)
            if data is None:
                raise HTTPException(status_code=404, detail="not found")
            return {"id": doc_id, "data": copy.deepcopy(data)}

        @app.post("/api/collections/{collection}/documents", status_code=201)
        def add_document(
            collection: str,
            payload: Dict[str, Any] = Body(...),
            authorization: Optional[str] = Header(default=None),
        ) -> Dict[str, str]:
            self._check(collection, authorization)
            self._counter += 1
            doc_id = f"{collection}-{self._counter:04d}"
            self.collections.setdefault(collection, {})[doc_id] = dict(payload)
            self.requests.append({"method": "POST", "collection": collection, "id": doc_id})
            return {"id": doc_id}

        @app.put("/api/collections/{collection}/documents/{doc_id}", status_code=204)
        def set_document(
            collection: str,
            doc_id: str,
            payload: Dict[str, Any] = Body(...),
            authorization: Optional[str] = Header(default=None),
        ) -> Response:
            self._check(collection, authorization)
            self.collections.setdefault(collection, {})[doc_id] = dict(payload)
            return Response(status_code=204)

        @app.patch("/api/collections/{collection}/documents/{doc_id}", status_code=204)
        def update_document(
            collection: str,
            doc_id: str,
            payload: Dict[str, Any] = Body(...),
            authorization: Optional[str] = Header(default=None),
        ) -> Response:
            self._check(collection, authorization)
            docs = self.collections.get(collection, {})
            if doc_id not in docs:
                raise HTTPException(status_code=404, detail="not found")
            docs[doc_id].update(payload)
            return Response(status_code=204)

        @app.delete("/api/collections/{collection}/documents/{doc_id}", status_code=204)
        def delete_document(
            collection: str, doc_id: str, authorization: Optional[str] = Header(default=None)
        ) -> Response:
            self._check(collection, authorization)
            if doc_id not in self.collections.get(collection, {}):
                raise HTTPException(status_code=404, detail="not found")
            del self.collections[collection][doc_id]
            return Response(status_code=204)

        @app.post("/api/batch", status_code=204)
        def commit_batch(payload: BatchPayload, authorization: Optional[str] = Header(default=None)) -> Response:
            for op in payload.operations:
                self._check(op.collection, authorization)
                if op.op == "update" and op.id not in self.collections.get(op.collection, {}):
                    raise HTTPException(status_code=404, detail=f"{op.collection}/{op.id} not found")
            for op in payload.operations:
                docs = self.collections.setdefault(op.collection, {})
                if op.op == "set":
                    docs[op.id] = dict(op.data or {})
                elif op.op == "update":
                    docs[op.id].update(op.data or {})
                else:
                    docs.pop(op.id, None)
            self.requests.append({"method": "BATCH", "count": len(payload.operations)})
            return Response(status_code=204)

    # ------------------------------------------------------------------

    def seed(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[doc_id] = dict(data)

    def build_async_client(self, *, timeout: float = 5.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            transport=httpx.ASGITransport(app=self.app),
            timeout=timeout,
        )

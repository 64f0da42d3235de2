"""Collection-based document store interface and its SQLite backend.

A document is a flat JSON mapping keyed by a generated id inside a named
collection. Backends are async so independent collection loads can be
awaited together; the SQLite backend pushes its blocking work to a thread.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

from smarteval.core.errors import DocumentNotFound

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (collection, id)
);
"""


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


@dataclass
class Document:
    """A stored document: its key plus the flat field mapping."""

    id: str
    data: Dict[str, Any]

    def to_record(self) -> Dict[str, Any]:
        """Return the fields with ``id`` populated from the document key."""
        return {**self.data, "id": self.id}


@dataclass
class BatchOperation:
    kind: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"op": self.kind, "collection": self.collection, "id": self.doc_id}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class WriteBatch:
    """Ordered set of writes committed together by ``DocumentStore.commit``."""

    operations: List[BatchOperation] = field(default_factory=list)

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> "WriteBatch":
        self.operations.append(BatchOperation("set", collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> "WriteBatch":
        self.operations.append(BatchOperation("update", collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.operations.append(BatchOperation("delete", collection, doc_id))
        return self

    def __len__(self) -> int:
        return len(self.operations)


class DocumentStore(ABC):
    """Opaque remote persistence accessed through simple collection calls."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        ...

    @abstractmethod
    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        ...

    async def aclose(self) -> None:
        return None


def filter_and_sort(
    documents: Iterable[Document],
    *,
    order_by: str | None = None,
    descending: bool = False,
    where: Mapping[str, Any] | None = None,
    limit: int | None = None,
) -> List[Document]:
    """Apply equality filters, ordering and a limit the way the backends promise."""

    results = [
        doc
        for doc in documents
        if not where or all(doc.data.get(key) == value for key, value in where.items())
    ]
    if order_by:
        present = [doc for doc in results if doc.data.get(order_by) is not None]
        missing = [doc for doc in results if doc.data.get(order_by) is None]
        present.sort(key=lambda doc: doc.data[order_by], reverse=descending)
        results = present + missing
    if limit is not None:
        results = results[:limit]
    return results


class SQLiteDocumentStore(DocumentStore):
    """Document store persisted in a single SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as con:
            con.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)

    def _select(self, collection: str) -> List[Document]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY created_at, id",
                (collection,),
            ).fetchall()
        return [Document(id=row[0], data=json.loads(row[1])) for row in rows]

    def _select_one(self, collection: str, doc_id: str) -> Document | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        return Document(id=doc_id, data=json.loads(row[0])) if row else None

    @staticmethod
    def _apply(con: sqlite3.Connection, op: BatchOperation) -> None:
        if op.kind == "set":
            con.execute(
                "INSERT INTO documents(collection, id, data) VALUES (?, ?, ?) "
                "ON CONFLICT(collection, id) DO UPDATE SET data = excluded.data",
                (op.collection, op.doc_id, json.dumps(op.data or {}, ensure_ascii=False)),
            )
        elif op.kind == "update":
            row = con.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (op.collection, op.doc_id),
            ).fetchone()
            if row is None:
                raise DocumentNotFound(op.collection, op.doc_id)
            merged = {**json.loads(row[0]), **(op.data or {})}
            con.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(merged, ensure_ascii=False), op.collection, op.doc_id),
            )
        else:
            con.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (op.collection, op.doc_id),
            )

    def _run_ops(self, operations: List[BatchOperation]) -> None:
        with self._connect() as con:
            for op in operations:
                self._apply(con, op)
            con.commit()

    # ------------------------------------------------------------------
    # Async interface

    async def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> List[Document]:
        documents = await asyncio.to_thread(self._select, collection)
        return filter_and_sort(documents, order_by=order_by, descending=descending, where=where, limit=limit)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return await asyncio.to_thread(self._select_one, collection, doc_id)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        await self.set(collection, doc_id, data)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._run_ops, [BatchOperation("set", collection, doc_id, dict(data))])

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._run_ops, [BatchOperation("update", collection, doc_id, dict(data))])

    async def delete(self, collection: str, doc_id: str) -> None:
        await asyncio.to_thread(self._run_ops, [BatchOperation("delete", collection, doc_id)])

    async def commit(self, batch: WriteBatch) -> None:
        """Apply every operation in one transaction; any failure rolls all back."""
        if not batch.operations:
            return
        await asyncio.to_thread(self._run_ops, list(batch.operations))


__all__ = [
    "BatchOperation",
    "Document",
    "DocumentStore",
    "SQLiteDocumentStore",
    "WriteBatch",
    "filter_and_sort",
    "new_document_id",
]

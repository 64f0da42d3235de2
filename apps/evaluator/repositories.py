"""Cache-first collection access over a ``DocumentStore``.

Reads consult the expiring cache under ``<collection>_data`` and fall back to
the store. Writes go straight to the store, then drop that cache key; callers
reload afterwards. Store failures surface as ``RemoteStoreError``.
"""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum
from typing import Any, Awaitable, Dict, Generic, List, Mapping, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from persistence.cache import ExpiringCache
from persistence.documents import DocumentStore, WriteBatch
from smarteval.core.audit import AuditEvent, AuditLogger
from smarteval.core.errors import DocumentNotFound, RemoteStoreError

from .models import Admin, Entity, Evaluation, Group, Student, Task

LOGGER = logging.getLogger("smarteval.repository")

STORE_ERRORS = (httpx.HTTPError, sqlite3.Error, DocumentNotFound, OSError, RuntimeError)

EntityT = TypeVar("EntityT", bound=Entity)
T = TypeVar("T")


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return to_jsonable_python(value)


def document_fields(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalise a partial update to stored (camelCase, JSON-ready) fields."""
    return {to_camel(key): _jsonable(value) for key, value in changes.items() if key != "id"}


class _StoreAccess:
    def __init__(self, store: DocumentStore, cache: ExpiringCache, *, audit: AuditLogger | None = None) -> None:
        self.store = store
        self.cache = cache
        self.audit = audit

    async def _call(self, action: str, awaitable: Awaitable[T], *, collection: str | None = None) -> T:
        try:
            return await awaitable
        except STORE_ERRORS as exc:
            LOGGER.error(
                "Document store call failed",
                extra={"action": action, "collection": collection, "error": str(exc)},
            )
            raise RemoteStoreError(action, str(exc) or type(exc).__name__, collection=collection) from exc

    def _record(
        self,
        action: str,
        collection: str,
        document_id: str | None,
        payload: Mapping[str, Any],
        *,
        actor: str | None = None,
    ) -> None:
        if self.audit is None:
            return
        self.audit.log(
            AuditEvent(
                action=action,
                collection=collection,
                document_id=document_id,
                actor=actor or "system",
                payload=dict(payload),
            )
        )


class Repository(_StoreAccess, Generic[EntityT]):
    """Generic collection repository; subclasses pin the collection and model."""

    collection: str = ""
    model: Type[EntityT]
    order_by: Optional[str] = None
    descending: bool = False

    @property
    def cache_key(self) -> str:
        return f"{self.collection}_data"

    def _parse(self, records: List[Mapping[str, Any]]) -> List[EntityT]:
        entities: List[EntityT] = []
        for record in records:
            try:
                entities.append(self.model.from_record(record))
            except ValidationError as exc:
                LOGGER.warning(
                    "Skipping malformed document",
                    extra={"collection": self.collection, "id": record.get("id"), "error": str(exc)},
                )
        return entities

    async def load_all(self, *, bypass_cache: bool = False) -> List[EntityT]:
        cached = self.cache.get(self.cache_key, bypass_cache=bypass_cache)
        if cached is not None:
            return self._parse(cached)

        documents = await self._call(
            f"Loading {self.collection}",
            self.store.query(self.collection, order_by=self.order_by, descending=self.descending),
            collection=self.collection,
        )
        entities = self._parse([doc.to_record() for doc in documents])
        self.cache.set(self.cache_key, [entity.to_record() for entity in entities])
        LOGGER.debug("Loaded collection from store", extra={"collection": self.collection, "count": len(entities)})
        return entities

    async def get(self, doc_id: str) -> Optional[EntityT]:
        document = await self._call(
            f"Reading {self.collection}",
            self.store.get(self.collection, doc_id),
            collection=self.collection,
        )
        if document is None:
            return None
        parsed = self._parse([document.to_record()])
        return parsed[0] if parsed else None

    async def insert(self, entity: EntityT, *, actor: str | None = None) -> EntityT:
        payload = entity.to_document()
        doc_id = await self._call(
            f"Saving {self.collection}",
            self.store.add(self.collection, payload),
            collection=self.collection,
        )
        self.invalidate()
        self._record("insert", self.collection, doc_id, payload, actor=actor)
        return entity.model_copy(update={"id": doc_id})

    async def update(self, doc_id: str, changes: Mapping[str, Any], *, actor: str | None = None) -> None:
        payload = document_fields(changes)
        await self._call(
            f"Updating {self.collection}",
            self.store.update(self.collection, doc_id, payload),
            collection=self.collection,
        )
        self.invalidate()
        self._record("update", self.collection, doc_id, payload, actor=actor)

    async def delete(self, doc_id: str, *, actor: str | None = None) -> None:
        await self._call(
            f"Deleting {self.collection}",
            self.store.delete(self.collection, doc_id),
            collection=self.collection,
        )
        self.invalidate()
        self._record("delete", self.collection, doc_id, {}, actor=actor)

    def invalidate(self) -> None:
        self.cache.clear(self.cache_key)


class GroupRepository(Repository[Group]):
    collection = "groups"
    model = Group
    order_by = "name"


class StudentRepository(Repository[Student]):
    collection = "students"
    model = Student
    order_by = "name"

    async def in_group(self, group_id: str) -> List[Student]:
        """Query the store directly for a group's current members."""
        documents = await self._call(
            "Loading group members",
            self.store.query(self.collection, where={"groupId": group_id}, order_by="name"),
            collection=self.collection,
        )
        return self._parse([doc.to_record() for doc in documents])


class TaskRepository(Repository[Task]):
    collection = "tasks"
    model = Task
    order_by = "date"
    descending = True


class EvaluationRepository(Repository[Evaluation]):
    collection = "evaluations"
    model = Evaluation

    async def find_for(self, task_id: str, group_id: str) -> Optional[Evaluation]:
        """Existing evaluation for the (task, group) pair; never served from cache."""
        documents = await self._call(
            "Looking up evaluation",
            self.store.query(self.collection, where={"taskId": task_id, "groupId": group_id}, limit=1),
            collection=self.collection,
        )
        parsed = self._parse([doc.to_record() for doc in documents])
        return parsed[0] if parsed else None


class AdminRepository(Repository[Admin]):
    collection = "admins"
    model = Admin

    async def resolve(self, uid: str, email: str | None = None) -> Optional[Admin]:
        """Find an admin by document id, then by email. Hits are cached under ``admin_<uid>``."""
        cache_key = f"admin_{uid}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return Admin.from_record(cached)

        admin = await self.get(uid)
        if admin is None and email:
            documents = await self._call(
                "Looking up admin",
                self.store.query(self.collection, where={"email": email}, limit=1),
                collection=self.collection,
            )
            parsed = self._parse([doc.to_record() for doc in documents])
            admin = parsed[0] if parsed else None
        if admin is not None:
            self.cache.set(cache_key, admin.to_record())
        return admin

    async def put(self, admin: Admin, *, actor: str | None = None) -> Admin:
        """Create or replace an admin under its own id (the auth uid)."""
        payload = admin.to_document()
        await self._call(
            "Saving admin",
            self.store.set(self.collection, admin.id, payload),
            collection=self.collection,
        )
        self.invalidate()
        self.cache.clear(f"admin_{admin.id}")
        self._record("set", self.collection, admin.id, payload, actor=actor)
        return admin

    async def delete(self, doc_id: str, *, actor: str | None = None) -> None:
        await super().delete(doc_id, actor=actor)
        self.cache.clear(f"admin_{doc_id}")


class SettingsRepository(_StoreAccess):
    """Singleton settings documents such as ``settings/pageVisibility``."""

    collection = "settings"

    async def load(self, name: str, *, bypass_cache: bool = False) -> Optional[Dict[str, Any]]:
        cache_key = f"settings_{name}"
        cached = self.cache.get(cache_key, bypass_cache=bypass_cache)
        if cached is not None:
            return cached
        document = await self._call(
            "Loading settings",
            self.store.get(self.collection, name),
            collection=self.collection,
        )
        if document is None:
            return None
        self.cache.set(cache_key, document.data)
        return document.data

    async def save(self, name: str, data: Mapping[str, Any], *, actor: str | None = None) -> None:
        await self._call(
            "Saving settings",
            self.store.set(self.collection, name, dict(data)),
            collection=self.collection,
        )
        self.cache.clear(f"settings_{name}")
        self._record("set", self.collection, name, data, actor=actor)


class Repositories:
    """Bundle of every repository sharing one store, cache and audit log."""

    def __init__(self, store: DocumentStore, cache: ExpiringCache, *, audit: AuditLogger | None = None) -> None:
        self.store = store
        self.cache = cache
        self.groups = GroupRepository(store, cache, audit=audit)
        self.students = StudentRepository(store, cache, audit=audit)
        self.tasks = TaskRepository(store, cache, audit=audit)
        self.evaluations = EvaluationRepository(store, cache, audit=audit)
        self.admins = AdminRepository(store, cache, audit=audit)
        self.settings = SettingsRepository(store, cache, audit=audit)
        self.audit = audit
        self._access = _StoreAccess(store, cache, audit=audit)

    async def commit(
        self,
        batch: WriteBatch,
        *,
        action: str,
        invalidate: tuple[str, ...] = (),
        actor: str | None = None,
    ) -> None:
        """Commit a multi-document batch, then drop the caches of touched collections.

        The audit log gets one event per operation, each tagged with ``action``.
        """
        await self._access._call(action, self.store.commit(batch))
        for collection in invalidate:
            self.cache.clear(f"{collection}_data")
        if self.audit is None:
            return
        self.audit.extend(
            AuditEvent(
                action=op.kind,
                collection=op.collection,
                document_id=op.doc_id,
                actor=actor or "system",
                payload={"batch": action, **({"data": op.data} if op.data is not None else {})},
            )
            for op in batch.operations
        )


__all__ = [
    "AdminRepository",
    "EvaluationRepository",
    "GroupRepository",
    "Repositories",
    "Repository",
    "SettingsRepository",
    "StudentRepository",
    "TaskRepository",
    "document_fields",
]

"""Local cache storage and document-store backends."""

from .cache import DEFAULT_TTL_MS, ExpiringCache
from .documents import Document, DocumentStore, SQLiteDocumentStore, WriteBatch
from .remote import HttpDocumentStore, HttpStoreConfig
from .storage import LocalKeyValueStore, QuotaExceededError

__all__ = [
    "DEFAULT_TTL_MS",
    "Document",
    "DocumentStore",
    "ExpiringCache",
    "HttpDocumentStore",
    "HttpStoreConfig",
    "LocalKeyValueStore",
    "QuotaExceededError",
    "SQLiteDocumentStore",
    "WriteBatch",
]

"""
Foundational configuration, validation, and error types for the evaluator.

Nothing here performs I/O against the document store, so the persistence and
domain layers can both depend on it.
"""

from .audit import AuditEvent, AuditLogger
from .config import AppConfig, AuditConfig, CacheConfig, StoreConfig, load_app_config
from .errors import DocumentNotFound, PermissionDenied, RemoteStoreError, friendly_auth_error
from .validation import ValidationFailure, ValidationResult

__all__ = [
    "AppConfig",
    "AuditConfig",
    "AuditEvent",
    "AuditLogger",
    "CacheConfig",
    "DocumentNotFound",
    "PermissionDenied",
    "RemoteStoreError",
    "StoreConfig",
    "ValidationFailure",
    "ValidationResult",
    "friendly_auth_error",
    "load_app_config",
]

"""Bootstrap helpers that wire config, cache, store and service together."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import httpx
from dotenv import load_dotenv

from apps.evaluator.repositories import Repositories
from apps.evaluator.service import EvaluatorService
from persistence.cache import ExpiringCache
from persistence.documents import DocumentStore, SQLiteDocumentStore
from persistence.remote import HttpDocumentStore, HttpStoreConfig
from persistence.storage import LocalKeyValueStore
from smarteval.core.audit import AuditLogger
from smarteval.core.config import AppConfig, StoreConfig, load_app_config, merge_config

from .context import EvaluatorContext

DEFAULT_CONFIG_PATH = Path("config/evaluator.yaml")
CONFIG_ENV_VAR = "SMART_EVAL_CONFIG"
REPO_ROOT_ENV_VAR = "SMART_EVAL_REPO_ROOT"
LOGGER = logging.getLogger("smarteval.runtime")


def resolve_repo_root(repo_root: Path | None = None) -> Path:
    if repo_root is not None:
        return repo_root.expanduser().resolve()
    override = os.getenv(REPO_ROOT_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parents[2]


def resolve_config_path(config_path: Path | None, repo_root: Path) -> Path:
    if config_path is not None:
        return config_path.expanduser().resolve()
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return (repo_root / DEFAULT_CONFIG_PATH).resolve()


def build_document_store(config: StoreConfig, *, client: httpx.AsyncClient | None = None) -> DocumentStore:
    if config.backend == "http":
        return HttpDocumentStore(HttpStoreConfig.from_store_config(config), client=client)
    return SQLiteDocumentStore(config.sqlite_path)


def bootstrap_evaluator(
    config_path: Path | None = None,
    *,
    repo_root: Path | None = None,
    store_path: Path | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> EvaluatorContext:
    """
    Load configuration and environment, then build the evaluator runtime.

    Parameters
    ----------
    config_path:
        Evaluator YAML. Defaults to ``$SMART_EVAL_CONFIG`` or ``config/evaluator.yaml``.
    repo_root:
        Anchor for ``.env`` and relative paths. Defaults to the checkout root.
    store_path:
        Use a SQLite document store at this path regardless of the configured backend.
    http_client:
        Pre-built ``httpx.AsyncClient`` for the HTTP backend (tests pass a mock transport).
    """

    repo_root = resolve_repo_root(repo_root)
    load_dotenv(repo_root / ".env")
    resolved_config = resolve_config_path(config_path, repo_root)
    config: AppConfig = load_app_config(resolved_config, base_dir=repo_root)

    if store_path is not None:
        overrides: Dict[str, Dict[str, Any]] = {
            "store": {"backend": "sqlite", "sqlite_path": str(store_path.expanduser().resolve())}
        }
        config = merge_config(config, overrides)

    storage = LocalKeyValueStore(config.cache.sqlite_path, quota_bytes=config.cache.quota_bytes)
    cache = ExpiringCache(
        storage,
        prefix=config.cache.prefix,
        default_ttl_ms=config.cache.ttl_ms,
        max_entries=config.cache.max_entries,
        evict_count=config.cache.evict_count,
    )
    store = build_document_store(config.store, client=http_client)
    audit = AuditLogger(config.audit.path) if config.audit.enabled else None
    repositories = Repositories(store, cache, audit=audit)
    service = EvaluatorService(repositories, cache)

    LOGGER.debug(
        "Evaluator runtime ready",
        extra={"backend": config.store.backend, "config": str(resolved_config), "cache": str(config.cache.sqlite_path)},
    )
    return EvaluatorContext(
        repo_root=repo_root,
        config_path=resolved_config if resolved_config.exists() else None,
        config=config,
        storage=storage,
        cache=cache,
        store=store,
        audit=audit,
        repositories=repositories,
        service=service,
    )


__all__ = ["bootstrap_evaluator", "build_document_store", "resolve_config_path", "resolve_repo_root"]

"""Shared context object handed to the CLI and the portal backend."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict

from apps.evaluator.repositories import Repositories
from apps.evaluator.service import EvaluatorService
from persistence.cache import ExpiringCache
from persistence.documents import DocumentStore
from persistence.storage import LocalKeyValueStore
from smarteval.core.audit import AuditLogger
from smarteval.core.config import AppConfig


class EvaluatorContext(BaseModel):
    """Aggregated runtime wiring: config, cache, store, repositories, service."""

    repo_root: Path
    config_path: Optional[Path] = None
    config: AppConfig
    storage: LocalKeyValueStore
    cache: ExpiringCache
    store: DocumentStore
    audit: Optional[AuditLogger] = None
    repositories: Repositories
    service: EvaluatorService

    model_config = ConfigDict(arbitrary_types_allowed=True)

    async def aclose(self) -> None:
        await self.store.aclose()

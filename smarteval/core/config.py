"""
Typed configuration helpers for the evaluator.

The same YAML file drives the CLI, the portal backend, and the tests; every
section has defaults so a missing file still produces a usable local setup.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

DEFAULT_OUTPUT_DIR = Path("outputs")


class CacheConfig(BaseModel):
    """Expiring cache settings (namespace, TTL, eviction policy, local file)."""

    model_config = ConfigDict()

    prefix: str = Field(default="smart_evaluator_", min_length=1)
    ttl_seconds: int = Field(default=300, ge=1, le=3600)
    max_entries: int = Field(default=50, ge=1)
    evict_count: int = Field(default=10, ge=1)
    sqlite_path: Path = Field(default=DEFAULT_OUTPUT_DIR / "cache.sqlite")
    quota_bytes: int | None = Field(default=5 * 1024 * 1024, ge=1024)

    @property
    def ttl_ms(self) -> int:
        return self.ttl_seconds * 1000

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser()


class StoreConfig(BaseModel):
    """Connection info for the document store holding groups, students, etc."""

    model_config = ConfigDict()

    backend: Literal["sqlite", "http"] = "sqlite"
    sqlite_path: Path = Field(default=DEFAULT_OUTPUT_DIR / "store.sqlite")
    api_base: Optional[str] = None
    api_key_env: str = "SMART_EVAL_API_KEY"
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser()

    @model_validator(mode="after")
    def require_api_base_for_http(self) -> "StoreConfig":
        if self.backend == "http" and not (self.api_base or "").strip():
            raise ValueError("store.api_base is required when store.backend is 'http'")
        return self

    @property
    def api_key(self) -> str | None:
        return os.getenv(self.api_key_env) or None


class AuditConfig(BaseModel):
    """Where repository writes are recorded."""

    enabled: bool = True
    path: Path = Field(default=DEFAULT_OUTPUT_DIR / "logs" / "audit.jsonl")

    @field_validator("path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser()


class AppConfig(BaseModel):
    """Top-level configuration for the evaluator runtime."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @model_validator(mode="before")
    @classmethod
    def reject_unknown_sections(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        unknown = sorted(set(values) - {"cache", "store", "audit"})
        if unknown:
            raise ValueError(f"Unknown config sections: {', '.join(unknown)}")
        return values


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def _resolve_config_path(value: Any, base_dir: Path) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    else:
        path = path.resolve()
    return str(path)


def _absolutize_paths(data: Dict[str, Any], base_dir: Path) -> None:
    for section, key in (("cache", "sqlite_path"), ("store", "sqlite_path"), ("audit", "path")):
        block = data.setdefault(section, {})
        if not isinstance(block, dict):
            continue
        if block.get(key):
            block[key] = _resolve_config_path(block[key], base_dir)
        else:
            default = AppConfig.model_fields[section].default_factory().model_dump()[key]
            block[key] = _resolve_config_path(default, base_dir)


def load_app_config(path: Path | None = None, *, base_dir: Path | None = None) -> AppConfig:
    """
    Load the evaluator config.

    A missing ``path`` (or a path that does not exist) yields the defaults with
    every relative path anchored at ``base_dir`` (or the current directory).
    """
    data: Dict[str, Any] = {}
    anchor = base_dir
    if path is not None:
        path = path.expanduser().resolve()
        if path.exists():
            data = read_yaml_file(path)
            anchor = anchor or path.parent
    _absolutize_paths(data, (anchor or Path.cwd()).resolve())
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid evaluator config in {path or '<defaults>'}") from exc


def merge_config(base: AppConfig, overrides: Dict[str, Dict[str, Any]]) -> AppConfig:
    """
    Return a new AppConfig with per-section overrides applied.

    Used by the CLI flags (e.g. ``--store``) without mutating the loaded config.
    """
    payload = base.model_dump()
    for section, values in overrides.items():
        payload.setdefault(section, {}).update(values)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError("Invalid overrides for AppConfig") from exc

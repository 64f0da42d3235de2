"""Namespaced expiring cache layered over a local key/value store.

Entries are JSON documents ``{"data": ..., "timestamp": ms, "expires": ms}``
stored under ``prefix + key``. Reads never raise: a malformed or expired
entry is evicted and reported as a miss.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator, List

from .storage import LocalKeyValueStore, QuotaExceededError

LOGGER = logging.getLogger("smarteval.cache")

DEFAULT_TTL_MS = 5 * 60 * 1000

_FORCE_REFRESH: ContextVar[bool] = ContextVar("smarteval_force_refresh", default=False)


class ExpiringCache:
    """Per-entry TTL cache; the remote store is never consulted here."""

    def __init__(
        self,
        storage: LocalKeyValueStore,
        *,
        prefix: str = "smart_evaluator_",
        default_ttl_ms: int = DEFAULT_TTL_MS,
        max_entries: int = 50,
        evict_count: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.prefix = prefix
        self.default_ttl_ms = default_ttl_ms
        self.max_entries = max_entries
        self.evict_count = evict_count
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _full_key(self, key: str) -> str:
        return self.prefix + key

    # ------------------------------------------------------------------

    def set(self, key: str, data: Any, ttl_ms: int | None = None) -> None:
        now = self._now_ms()
        payload = json.dumps(
            {"data": data, "timestamp": now, "expires": now + (self.default_ttl_ms if ttl_ms is None else ttl_ms)},
            ensure_ascii=False,
        )
        full_key = self._full_key(key)
        try:
            self.storage.set_item(full_key, payload)
        except QuotaExceededError as exc:
            LOGGER.warning("Cache is full, clearing oldest items", extra={"key": key, "error": str(exc)})
            self.clear_oldest()
            try:
                self.storage.set_item(full_key, payload)
            except QuotaExceededError as final_exc:
                LOGGER.error(
                    "Failed to set cache even after clearing",
                    extra={"key": key, "error": str(final_exc)},
                )

    def get(self, key: str, *, bypass_cache: bool = False) -> Any | None:
        if bypass_cache or _FORCE_REFRESH.get():
            return None
        raw = self.storage.get_item(self._full_key(key))
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            data = entry["data"]
            expires = float(entry["expires"])
        except (ValueError, TypeError, KeyError):
            LOGGER.debug("Evicting malformed cache entry", extra={"key": key})
            self.clear(key)
            return None
        if self._now_ms() > expires:
            self.clear(key)
            return None
        return data

    def clear(self, key: str) -> None:
        self.storage.remove_item(self._full_key(key))

    def clear_all(self) -> None:
        for full_key in self.storage.keys(self.prefix):
            self.storage.remove_item(full_key)

    def clear_oldest(self) -> List[str]:
        """Evict the oldest entries once the namespace exceeds ``max_entries``."""

        keys = self.storage.keys(self.prefix)
        if len(keys) <= self.max_entries:
            return []
        stamped: list[tuple[float, str]] = []
        for full_key in keys:
            raw = self.storage.get_item(full_key)
            try:
                stamped.append((float(json.loads(raw)["timestamp"]), full_key))
            except (ValueError, TypeError, KeyError):
                continue
        stamped.sort()
        evicted = [full_key[len(self.prefix):] for _, full_key in stamped[: self.evict_count]]
        for key in evicted:
            self.clear(key)
        LOGGER.info("Evicted oldest cache entries", extra={"count": len(evicted)})
        return evicted

    def entries(self) -> List[str]:
        """Return the un-prefixed keys currently stored in this namespace."""
        return [full_key[len(self.prefix):] for full_key in self.storage.keys(self.prefix)]

    @contextmanager
    def force_refresh(self) -> Iterator[None]:
        """Treat every read in the current context as a miss until exit.

        The flag lives in a ``ContextVar``; tasks spawned inside the block
        inherit it, unrelated tasks do not.
        """

        token = _FORCE_REFRESH.set(True)
        try:
            yield
        finally:
            _FORCE_REFRESH.reset(token)

    @property
    def refreshing(self) -> bool:
        return _FORCE_REFRESH.get()


__all__ = ["DEFAULT_TTL_MS", "ExpiringCache"]

"""Append-only JSONL audit log of writes made through the repositories."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal

from pydantic import BaseModel, Field

AuditAction = Literal["insert", "update", "set", "delete"]


class AuditEvent(BaseModel):
    """One document written to the store, and who wrote it."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: AuditAction
    collection: str = Field(..., description="Collection written to, e.g. 'students'.")
    document_id: str | None = None
    actor: str = Field(default="system", description="Admin id for admin-initiated writes.")
    payload: Dict[str, Any] = Field(default_factory=dict)


class AuditLogger:
    def __init__(self, output_path: Path):
        self.output_path = output_path
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent | Dict[str, Any]) -> AuditEvent:
        """Append one event and return the normalized object."""
        return self.extend([event])[0]

    def extend(self, events: Iterable[AuditEvent | Dict[str, Any]]) -> List[AuditEvent]:
        """Append every event of a batch with a single write."""
        normalized = [event if isinstance(event, AuditEvent) else AuditEvent(**event) for event in events]
        if normalized:
            lines = "".join(event.model_dump_json() + "\n" for event in normalized)
            with self.output_path.open("a", encoding="utf-8") as handle:
                handle.write(lines)
        return normalized

    def read(self, *, collection: str | None = None, actor: str | None = None) -> List[AuditEvent]:
        """Events in write order, optionally narrowed to one collection or actor."""
        if not self.output_path.exists():
            return []
        events = [
            AuditEvent.model_validate_json(line)
            for line in self.output_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        return [
            event
            for event in events
            if (collection is None or event.collection == collection) and (actor is None or event.actor == actor)
        ]


__all__ = ["AuditAction", "AuditEvent", "AuditLogger"]

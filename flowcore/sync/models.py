"""Sync queue data models: persisted items (dataclasses) and status results (Pydantic)."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Operation:
    """A mutation to apply remotely. kind selects the handler."""

    kind: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "data": self.data}


@dataclass(frozen=True)
class SyncQueueItem:
    """One pending operation. Replaced (never mutated) when its retry count changes."""

    id: str
    operation: Operation
    enqueued_at: datetime
    retry_count: int = 0
    max_retries: int = 3

    def to_dict(self) -> dict[str, Any]:
        """Persisted layout: id, operation{kind,data}, enqueuedAt, retryCount, maxRetries."""
        return {
            "id": self.id,
            "operation": self.operation.to_dict(),
            "enqueuedAt": self.enqueued_at.isoformat(),
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SyncQueueItem":
        """Inverse of to_dict. Raises KeyError/TypeError/ValueError on malformed input."""
        op = d["operation"]
        enqueued_at = datetime.fromisoformat(d["enqueuedAt"])
        if enqueued_at.tzinfo is None:
            enqueued_at = enqueued_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(d["id"]),
            operation=Operation(kind=str(op["kind"]), data=op.get("data")),
            enqueued_at=enqueued_at,
            retry_count=int(d.get("retryCount", 0)),
            max_retries=int(d.get("maxRetries", 3)),
        )


@dataclass
class DrainResult:
    """Counts for one drain pass."""

    succeeded: int = 0
    retried: int = 0
    dropped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class PendingItem(BaseModel):
    """One row of get_sync_status().pending_items."""

    kind: str
    enqueued_at: datetime
    retry_count: int


class SyncStatus(BaseModel):
    """Result of get_sync_status()."""

    is_online: bool
    queue_length: int
    sync_in_progress: bool = False
    pending_items: list[PendingItem] = Field(default_factory=list)

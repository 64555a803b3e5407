"""Approval queue for dangerous operations awaiting a human decision."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)

OperationStatus = Literal["pending", "approved", "rejected", "expired"]


class PendingOperation(BaseModel):
    """A queued side effect that has not been applied yet."""

    id: int
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: OperationStatus = "pending"
    created_at: float
    processed_at: Optional[float] = None


class ApprovalQueue:
    """Queue of pending operations.

    Rules:
    - ids increase monotonically until clear()
    - operations older than ttl_seconds expire
    - processed operations are dropped after processed_retention seconds
    - at most max_pending operations are kept (oldest processed evicted first)
    """

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        max_pending: int = 50,
        processed_retention: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_pending = max_pending
        self.processed_retention = processed_retention
        self._clock = clock
        self._operations: List[PendingOperation] = []
        self._next_id = 1

    def queue(self, operation_type: str, payload: Dict[str, Any]) -> int:
        """Queue an operation and return its id."""
        self.cleanup()
        operation = PendingOperation(
            id=self._next_id,
            type=operation_type,
            payload=dict(payload),
            created_at=self._clock(),
        )
        self._next_id += 1
        self._operations.append(operation)
        LOGGER.info(f"Queued operation #{operation.id}: {operation_type} (queue size: {len(self._operations)})")
        return operation.id

    def get(self, operation_id: int) -> Optional[PendingOperation]:
        """Return the operation, marking it expired if its TTL has passed."""
        for op in self._operations:
            if op.id == operation_id:
                if op.status == "pending" and self._clock() - op.created_at > self.ttl_seconds:
                    op.status = "expired"
                    op.processed_at = self._clock()
                return op
        return None

    def approve(self, operation_id: int) -> Optional[PendingOperation]:
        """Mark a pending operation approved; returns None if it cannot be approved."""
        op = self.get(operation_id)
        if op is None or op.status != "pending":
            return None
        op.status = "approved"
        op.processed_at = self._clock()
        LOGGER.info(f"Approved operation #{op.id}: {op.type}")
        return op

    def reject(self, operation_id: int) -> bool:
        op = self.get(operation_id)
        if op is None or op.status != "pending":
            return False
        op.status = "rejected"
        op.processed_at = self._clock()
        LOGGER.info(f"Rejected operation #{op.id}: {op.type}")
        return True

    def pending(self) -> List[PendingOperation]:
        return [op for op in self._operations if self.get(op.id).status == "pending"]

    def clear(self) -> int:
        count = len(self._operations)
        self._operations = []
        self._next_id = 1
        LOGGER.info(f"Cleared {count} queued operations")
        return count

    def cleanup(self) -> int:
        """Drop expired and old processed operations, then enforce max size."""
        now = self._clock()
        before = len(self._operations)
        kept: List[PendingOperation] = []
        for op in self._operations:
            age = now - op.created_at
            if age > self.ttl_seconds:
                continue
            if op.status != "pending" and now - (op.processed_at or op.created_at) > self.processed_retention:
                continue
            kept.append(op)
        self._operations = kept

        while len(self._operations) > self.max_pending:
            processed = [op for op in self._operations if op.status != "pending"]
            victim = min(processed, key=lambda op: op.created_at) if processed else self._operations[0]
            self._operations.remove(victim)

        removed = before - len(self._operations)
        if removed:
            LOGGER.debug(f"Cleaned up {removed} stale operations")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"total": len(self._operations), "pending": 0, "approved": 0, "rejected": 0, "expired": 0}
        for op in self._operations:
            stats[op.status] += 1
        stats["ttl"] = self.ttl_seconds
        stats["max_size"] = self.max_pending
        return stats

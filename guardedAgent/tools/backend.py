"""Tool Backend contract.

The orchestration core never touches the workspace directly; it talks to an
object implementing ToolBackend. Replies are plain dicts:

    {"ok": {...}}                                    success
    {"error": "reason"}                              failure
    {"pending": True, "operation_id": 7, ...}        queued for approval
    {"awaiting_feedback": True, "feedback_request": {...}}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ToolBackend(Protocol):
    async def execute(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """Run one tool; must not raise for ordinary failures."""
        ...

    async def apply_operation(self, operation_id: int) -> Dict[str, Any]:
        """Apply a previously queued operation after approval."""
        ...

    async def reject_operation(self, operation_id: int) -> Dict[str, Any]:
        """Discard a previously queued operation."""
        ...

    def path_exists(self, path: str) -> bool:
        ...

    def list_paths(self) -> List[str]:
        ...

    def read_source(self, path: str) -> Optional[str]:
        """Current source of a script, or None if path is not a script."""
        ...

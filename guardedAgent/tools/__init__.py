"""Tool schema, backend contract and the in-memory workspace backend."""

from .schema import (
    DANGEROUS_OPERATIONS,
    FEEDBACK_OPERATIONS,
    TOOL_SPECS,
    ToolCall,
    ToolKind,
    ToolResult,
    ToolSpec,
    get_spec,
    tool_schemas,
)
from .backend import ToolBackend
from .approval_queue import ApprovalQueue, PendingOperation
from .workspace import WorkspaceBackend

__all__ = [
    "DANGEROUS_OPERATIONS",
    "FEEDBACK_OPERATIONS",
    "TOOL_SPECS",
    "ToolCall",
    "ToolKind",
    "ToolResult",
    "ToolSpec",
    "get_spec",
    "tool_schemas",
    "ToolBackend",
    "ApprovalQueue",
    "PendingOperation",
    "WorkspaceBackend",
]

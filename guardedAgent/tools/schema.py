"""Static tool schema: the closed set of tool kinds and their argument contracts.

Every tool the agent may call is a member of ToolKind. Its ToolSpec declares
required arguments, which argument names a target path or parent path, and
which arguments carry code. The validator, the resilience layer and the loop
all dispatch on ToolKind rather than on raw strings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

ToolCategory = Literal["read", "search", "modify", "create", "feedback"]
ResultStatus = Literal["ok", "error", "pending", "feedback"]


class ToolKind(str, Enum):
    GET_SCRIPT = "get_script"
    GET_INSTANCE = "get_instance"
    LIST_CHILDREN = "list_children"
    SEARCH_SCRIPTS = "search_scripts"
    PATCH_SCRIPT = "patch_script"
    EDIT_SCRIPT = "edit_script"
    CREATE_SCRIPT = "create_script"
    CREATE_INSTANCE = "create_instance"
    SET_INSTANCE_PROPERTIES = "set_instance_properties"
    DELETE_INSTANCE = "delete_instance"
    REQUEST_USER_FEEDBACK = "request_user_feedback"

    @classmethod
    def parse(cls, name: str) -> Optional["ToolKind"]:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ToolSpec:
    """Typed contract for one tool kind."""

    kind: ToolKind
    description: str
    category: ToolCategory
    properties: Dict[str, Dict[str, Any]]
    required: Tuple[str, ...]
    dangerous: bool = False
    path_field: Optional[str] = None  # Target that must already exist
    parent_field: Optional[str] = None  # Parent that must exist for creates
    code_fields: Tuple[str, ...] = ()

    def to_openai_tool(self) -> Dict[str, Any]:
        """OpenAI function-calling schema accepted by ChatModel.bind_tools."""
        return {
            "type": "function",
            "function": {
                "name": self.kind.value,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": list(self.required),
                },
            },
        }


def _str(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


_EXPLANATION = _str("Short reason for this change, shown to the user when approval is requested")

TOOL_SPECS: Dict[ToolKind, ToolSpec] = {
    ToolKind.GET_SCRIPT: ToolSpec(
        kind=ToolKind.GET_SCRIPT,
        description="Read the full source of a script.",
        category="read",
        properties={"path": _str("Dot-separated path, e.g. ServerScriptService.Main")},
        required=("path",),
        path_field="path",
    ),
    ToolKind.GET_INSTANCE: ToolSpec(
        kind=ToolKind.GET_INSTANCE,
        description="Inspect an instance: class name and properties.",
        category="read",
        properties={"path": _str("Dot-separated instance path")},
        required=("path",),
        path_field="path",
    ),
    ToolKind.LIST_CHILDREN: ToolSpec(
        kind=ToolKind.LIST_CHILDREN,
        description="List the direct children of an instance.",
        category="read",
        properties={"path": _str("Dot-separated instance path")},
        required=("path",),
        path_field="path",
    ),
    ToolKind.SEARCH_SCRIPTS: ToolSpec(
        kind=ToolKind.SEARCH_SCRIPTS,
        description="Search script sources for a literal query string.",
        category="search",
        properties={"query": _str("Text to search for")},
        required=("query",),
    ),
    ToolKind.PATCH_SCRIPT: ToolSpec(
        kind=ToolKind.PATCH_SCRIPT,
        description="Replace one exact, unique occurrence of search_content in a script.",
        category="modify",
        properties={
            "path": _str("Script path"),
            "search_content": _str("Exact text to find; must match exactly once"),
            "replace_content": _str("Replacement text"),
            "explanation": _EXPLANATION,
        },
        required=("path", "search_content", "replace_content"),
        dangerous=True,
        path_field="path",
        code_fields=("replace_content",),
    ),
    ToolKind.EDIT_SCRIPT: ToolSpec(
        kind=ToolKind.EDIT_SCRIPT,
        description="Replace the whole source of an existing script.",
        category="modify",
        properties={
            "path": _str("Script path"),
            "new_source": _str("Complete new source"),
            "explanation": _EXPLANATION,
        },
        required=("path", "new_source"),
        dangerous=True,
        path_field="path",
        code_fields=("new_source",),
    ),
    ToolKind.CREATE_SCRIPT: ToolSpec(
        kind=ToolKind.CREATE_SCRIPT,
        description="Create a new script at path with the given source.",
        category="create",
        properties={
            "path": _str("Full path of the new script; its parent must exist"),
            "source": _str("Complete source"),
            "script_type": {"type": "string", "enum": ["Script", "LocalScript", "ModuleScript"]},
            "explanation": _EXPLANATION,
        },
        required=("path", "source"),
        dangerous=True,
        parent_field="path",
        code_fields=("source",),
    ),
    ToolKind.CREATE_INSTANCE: ToolSpec(
        kind=ToolKind.CREATE_INSTANCE,
        description="Create a new instance under parent.",
        category="create",
        properties={
            "class_name": _str("Class of the instance, e.g. Part or Frame"),
            "parent": _str("Path of the parent instance"),
            "name": _str("Name of the new instance"),
            "properties": {"type": "object", "description": "Initial property values"},
            "explanation": _EXPLANATION,
        },
        required=("class_name", "parent", "name"),
        dangerous=True,
        parent_field="parent",
    ),
    ToolKind.SET_INSTANCE_PROPERTIES: ToolSpec(
        kind=ToolKind.SET_INSTANCE_PROPERTIES,
        description="Set one or more properties on an existing instance.",
        category="modify",
        properties={
            "path": _str("Instance path"),
            "properties": {"type": "object", "description": "Property name to value"},
            "explanation": _EXPLANATION,
        },
        required=("path", "properties"),
        dangerous=True,
        path_field="path",
    ),
    ToolKind.DELETE_INSTANCE: ToolSpec(
        kind=ToolKind.DELETE_INSTANCE,
        description="Delete an instance and all of its descendants.",
        category="modify",
        properties={"path": _str("Instance path"), "explanation": _EXPLANATION},
        required=("path",),
        dangerous=True,
        path_field="path",
    ),
    ToolKind.REQUEST_USER_FEEDBACK: ToolSpec(
        kind=ToolKind.REQUEST_USER_FEEDBACK,
        description="Ask the user to verify something only they can see, then wait for the answer.",
        category="feedback",
        properties={
            "question": _str("What the user should check"),
            "context": _str("What was just changed"),
            "verification_type": {"type": "string", "enum": ["visual", "functional", "general"]},
            "suggestions": {"type": "array", "items": {"type": "string"}},
        },
        required=("question",),
    ),
}

DANGEROUS_OPERATIONS = frozenset(kind for kind, spec in TOOL_SPECS.items() if spec.dangerous)
FEEDBACK_OPERATIONS = frozenset({ToolKind.REQUEST_USER_FEEDBACK})


def get_spec(name: str) -> Optional[ToolSpec]:
    kind = ToolKind.parse(name)
    return TOOL_SPECS.get(kind) if kind else None


def tool_schemas() -> List[Dict[str, Any]]:
    """All tool schemas in declaration order."""
    return [spec.to_openai_tool() for spec in TOOL_SPECS.values()]


@dataclass(frozen=True)
class ToolCall:
    """A tool call issued by the model; immutable once created."""

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")

    @property
    def kind(self) -> Optional[ToolKind]:
        return ToolKind.parse(self.name)

    @property
    def spec(self) -> Optional[ToolSpec]:
        return get_spec(self.name)

    @property
    def target_path(self) -> Optional[str]:
        """The path this call reads or modifies, if any."""
        spec = self.spec
        field_name = (spec.path_field or spec.parent_field) if spec else "path"
        value = self.args.get(field_name) if field_name else None
        return value if isinstance(value, str) else None

    @classmethod
    def from_langchain(cls, tool_call: Mapping[str, Any]) -> "ToolCall":
        """Build from an AIMessage.tool_calls entry ({"name", "args", "id"})."""
        kwargs: Dict[str, Any] = {"name": tool_call["name"], "args": dict(tool_call.get("args") or {})}
        if tool_call.get("id"):
            kwargs["id"] = tool_call["id"]
        return cls(**kwargs)

    def to_record(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": dict(self.args)}


# Metadata the model gets to see; everything else stays internal
PAYLOAD_METADATA_KEYS = (
    "blocked",
    "validation_failed",
    "suggestions",
    "suggestion",
    "health_warning",
    "resilience",
    "warnings",
    "recovery",
    "verification",
)


@dataclass
class ToolResult:
    """Outcome of one tool call after it passed through the safety layers."""

    status: ResultStatus
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    operation_id: Optional[int] = None
    feedback_request: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == "ok"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def awaiting_feedback(self) -> bool:
        return self.status == "feedback"

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, **metadata: Any) -> "ToolResult":
        return cls(status="ok", data=dict(data or {}), metadata=dict(metadata))

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(status="error", error=error, metadata=dict(metadata))

    @classmethod
    def from_backend(cls, raw: Any) -> "ToolResult":
        """Parse the raw Tool Backend reply.

        Accepted shapes: {"ok": {...}}, {"error": str}, {"pending": True,
        "operation_id": int}, {"awaiting_feedback": True, "feedback_request": {...}}.
        """
        if not isinstance(raw, Mapping):
            return cls.failure(f"Malformed tool response: {raw!r}"[:200])
        if raw.get("error"):
            return cls.failure(str(raw["error"]))
        if raw.get("pending"):
            return cls(
                status="pending",
                operation_id=raw.get("operation_id"),
                data={k: v for k, v in raw.items() if k not in ("pending", "operation_id")},
            )
        if raw.get("awaiting_feedback"):
            return cls(status="feedback", feedback_request=dict(raw.get("feedback_request") or {}))
        payload = raw.get("ok", raw)
        return cls.ok(payload if isinstance(payload, Mapping) else {"result": payload})

    def to_payload(self) -> Dict[str, Any]:
        """The dict folded back into history as a ToolMessage."""
        if self.status == "ok":
            payload: Dict[str, Any] = {"success": True, **self.data}
        elif self.status == "pending":
            payload = {
                "pending": True,
                "operation_id": self.operation_id,
                "message": "Awaiting user approval",
            }
        elif self.status == "feedback":
            payload = {"awaiting_feedback": True, "feedback_request": self.feedback_request}
        else:
            payload = {"success": False, "error": self.error}
        for key in PAYLOAD_METADATA_KEYS:
            if key in self.metadata:
                payload[key] = self.metadata[key]
        return payload

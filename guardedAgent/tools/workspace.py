"""In-memory workspace backend.

A tree of named instances addressed by dot-separated paths
(``ServerScriptService.Combat.Main``). Script instances carry a source.
Read tools answer immediately; dangerous tools are checked for feasibility
and then queued in an ApprovalQueue until the user approves them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from guardedAgent.tools.approval_queue import ApprovalQueue
from guardedAgent.tools.schema import DANGEROUS_OPERATIONS, ToolKind
from guardedAgent.utils.error_handler import ToolExecutionError, safe_tool_call

LOGGER = logging.getLogger(__name__)

SCRIPT_CLASSES = frozenset({"Script", "LocalScript", "ModuleScript"})
DEFAULT_SERVICES = (
    "Workspace",
    "ServerScriptService",
    "ReplicatedStorage",
    "ServerStorage",
    "StarterGui",
    "StarterPlayer",
)
MAX_SEARCH_RESULTS = 50


@dataclass
class Node:
    name: str
    class_name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    @property
    def is_script(self) -> bool:
        return self.class_name in SCRIPT_CLASSES


def parent_of(path: str) -> str:
    return path.rsplit(".", 1)[0] if "." in path else ""


class WorkspaceBackend:
    """ToolBackend implementation over an in-memory instance tree."""

    def __init__(self, approval_queue: Optional[ApprovalQueue] = None, auto_approve: bool = False):
        self.queue = approval_queue or ApprovalQueue()
        self.auto_approve = auto_approve
        self._nodes: Dict[str, Node] = {}
        for service in DEFAULT_SERVICES:
            self._nodes[service] = Node(name=service, class_name=service)
        self._change_listeners: List[Callable[[str], None]] = []

        self._handlers: Dict[ToolKind, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            ToolKind.GET_SCRIPT: self._get_script,
            ToolKind.GET_INSTANCE: self._get_instance,
            ToolKind.LIST_CHILDREN: self._list_children,
            ToolKind.SEARCH_SCRIPTS: self._search_scripts,
            ToolKind.REQUEST_USER_FEEDBACK: self._request_user_feedback,
        }
        self._checks: Dict[ToolKind, Callable[[Dict[str, Any]], None]] = {
            ToolKind.PATCH_SCRIPT: self._check_patch,
            ToolKind.EDIT_SCRIPT: self._check_edit,
            ToolKind.CREATE_SCRIPT: self._check_create_script,
            ToolKind.CREATE_INSTANCE: self._check_create_instance,
            ToolKind.SET_INSTANCE_PROPERTIES: self._check_existing_instance,
            ToolKind.DELETE_INSTANCE: self._check_delete,
        }
        self._appliers: Dict[ToolKind, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            ToolKind.PATCH_SCRIPT: self._apply_patch,
            ToolKind.EDIT_SCRIPT: self._apply_edit,
            ToolKind.CREATE_SCRIPT: self._apply_create_script,
            ToolKind.CREATE_INSTANCE: self._apply_create_instance,
            ToolKind.SET_INSTANCE_PROPERTIES: self._apply_set_properties,
            ToolKind.DELETE_INSTANCE: self._apply_delete,
        }

    # ========== Seeding ==========

    def add_instance(self, path: str, class_name: str, properties: Optional[Dict[str, Any]] = None) -> Node:
        parent = parent_of(path)
        if parent and parent not in self._nodes:
            raise KeyError(f"Parent not found: {parent}")
        node = Node(name=path.rsplit(".", 1)[-1], class_name=class_name, properties=dict(properties or {}))
        self._nodes[path] = node
        return node

    def add_script(self, path: str, source: str, class_name: str = "Script") -> Node:
        node = self.add_instance(path, class_name)
        node.source = source
        return node

    # ========== Queries used by the safety layers ==========

    def path_exists(self, path: str) -> bool:
        return path in self._nodes

    def list_paths(self) -> List[str]:
        return sorted(self._nodes)

    def read_source(self, path: str) -> Optional[str]:
        node = self._nodes.get(path)
        return node.source if node and node.is_script else None

    def children_of(self, path: str) -> List[str]:
        prefix = path + "."
        return sorted(p for p in self._nodes if p.startswith(prefix) and "." not in p[len(prefix):])

    def describe_instance(self, path: str) -> Optional[Dict[str, Any]]:
        """Class and properties of an instance without going through the tool layer."""
        node = self._nodes.get(path)
        if node is None:
            return None
        return {"class_name": node.class_name, "properties": dict(node.properties)}

    # ========== External edits ==========

    def add_change_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback for scripts changed outside the agent's tools."""
        self._change_listeners.append(listener)

    def set_source(self, path: str, source: str) -> None:
        """Replace a script's source on the user's behalf and notify listeners."""
        node = self._require_script(path)
        node.source = source
        LOGGER.info(f"External edit: {path}")
        for listener in self._change_listeners:
            listener(path)

    # ========== ToolBackend ==========

    async def execute(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        kind = ToolKind.parse(name)
        if kind is None:
            return {"error": f"Unknown tool: {name}"}

        if kind in DANGEROUS_OPERATIONS:
            return await self._queue_dangerous(kind, dict(args))
        return await self._handlers[kind](dict(args))

    async def apply_operation(self, operation_id: int) -> Dict[str, Any]:
        op = self.queue.get(operation_id)
        if op is None:
            return {"error": f"Operation #{operation_id} not found"}
        if op.status != "pending":
            return {"error": f"Operation #{operation_id} is {op.status}"}

        kind = ToolKind(op.type)
        try:
            # State may have changed while waiting for approval
            self._checks[kind](op.payload)
        except ToolExecutionError as e:
            self.queue.reject(operation_id)
            return {"error": e.user_message}

        self.queue.approve(operation_id)
        result = self._appliers[kind](op.payload)
        LOGGER.info(f"Applied operation #{operation_id}: {op.type}")
        return {"ok": result}

    async def reject_operation(self, operation_id: int) -> Dict[str, Any]:
        if not self.queue.reject(operation_id):
            return {"error": f"Operation #{operation_id} cannot be rejected"}
        return {"ok": {"rejected": operation_id}}

    # ========== Dangerous operations ==========

    @safe_tool_call("queue_dangerous")
    async def _queue_dangerous(self, kind: ToolKind, args: Dict[str, Any]) -> Dict[str, Any]:
        self._checks[kind](args)

        if self.auto_approve:
            return {"ok": self._appliers[kind](args)}

        operation_id = self.queue.queue(kind.value, args)
        return {
            "pending": True,
            "operation_id": operation_id,
            "description": args.get("explanation") or f"{kind.value} {args.get('path') or args.get('parent', '')}".strip(),
        }

    def _require_script(self, path: str) -> Node:
        node = self._nodes.get(path)
        if node is None or not node.is_script:
            raise ToolExecutionError(f"Script not found: {path}")
        return node

    def _require_instance(self, path: str) -> Node:
        node = self._nodes.get(path)
        if node is None:
            raise ToolExecutionError(f"Instance not found: {path}")
        return node

    def _check_patch(self, args: Dict[str, Any]) -> None:
        node = self._require_script(args["path"])
        search = args.get("search_content") or ""
        if not search.strip():
            raise ToolExecutionError("Search content cannot be empty or just whitespace")
        lines = self._match_lines(node.source, search)
        occurrences = len(lines)
        if occurrences == 0:
            raise ToolExecutionError(
                "Search content not found. Please verify the code exists exactly as specified."
            )
        if occurrences > 1:
            raise ToolExecutionError(
                f"Ambiguous match: Found {occurrences} occurrences at lines "
                f"{', '.join(str(n) for n in lines)}. Please provide more context."
            )

    def _check_edit(self, args: Dict[str, Any]) -> None:
        self._require_script(args["path"])

    def _check_create_script(self, args: Dict[str, Any]) -> None:
        path = args["path"]
        parent = parent_of(path)
        if not parent or parent not in self._nodes:
            raise ToolExecutionError(f"Parent not found: {parent or path}")
        if path in self._nodes:
            raise ToolExecutionError(f"Script already exists: {path}")
        script_type = args.get("script_type", "Script")
        if script_type not in SCRIPT_CLASSES:
            raise ToolExecutionError("Invalid script_type. Must be Script, LocalScript, or ModuleScript.")

    def _check_create_instance(self, args: Dict[str, Any]) -> None:
        parent = args["parent"]
        if parent not in self._nodes:
            raise ToolExecutionError(f"Parent not found: {parent}")
        if f"{parent}.{args['name']}" in self._nodes:
            raise ToolExecutionError(f"A child named '{args['name']}' already exists in {parent}")

    def _check_existing_instance(self, args: Dict[str, Any]) -> None:
        self._require_instance(args["path"])

    def _check_delete(self, args: Dict[str, Any]) -> None:
        node = self._require_instance(args["path"])
        if node.class_name in DEFAULT_SERVICES and "." not in args["path"]:
            raise ToolExecutionError(f"Cannot delete service: {args['path']}")

    def _apply_patch(self, args: Dict[str, Any]) -> Dict[str, Any]:
        node = self._nodes[args["path"]]
        node.source = node.source.replace(args["search_content"], args["replace_content"], 1)
        return {"path": args["path"], "line_count": node.source.count("\n") + 1}

    def _apply_edit(self, args: Dict[str, Any]) -> Dict[str, Any]:
        node = self._nodes[args["path"]]
        node.source = args["new_source"]
        return {"path": args["path"], "line_count": node.source.count("\n") + 1}

    def _apply_create_script(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self.add_script(args["path"], args["source"], args.get("script_type", "Script"))
        return {"path": args["path"], "created": True}

    def _apply_create_instance(self, args: Dict[str, Any]) -> Dict[str, Any]:
        path = f"{args['parent']}.{args['name']}"
        self.add_instance(path, args["class_name"], args.get("properties"))
        return {"path": path, "created": True}

    def _apply_set_properties(self, args: Dict[str, Any]) -> Dict[str, Any]:
        node = self._nodes[args["path"]]
        node.properties.update(args["properties"])
        return {"path": args["path"], "updated": sorted(args["properties"])}

    def _apply_delete(self, args: Dict[str, Any]) -> Dict[str, Any]:
        path = args["path"]
        doomed = [p for p in self._nodes if p == path or p.startswith(path + ".")]
        for p in doomed:
            del self._nodes[p]
        return {"path": path, "deleted": len(doomed)}

    # ========== Read tools ==========

    @safe_tool_call("get_script")
    async def _get_script(self, args: Dict[str, Any]) -> Dict[str, Any]:
        node = self._require_script(args["path"])
        return {"ok": {
            "path": args["path"],
            "class_name": node.class_name,
            "source": node.source,
            "line_count": node.source.count("\n") + 1,
        }}

    @safe_tool_call("get_instance")
    async def _get_instance(self, args: Dict[str, Any]) -> Dict[str, Any]:
        node = self._require_instance(args["path"])
        return {"ok": {
            "path": args["path"],
            "name": node.name,
            "class_name": node.class_name,
            "properties": dict(node.properties),
            "child_count": len(self.children_of(args["path"])),
        }}

    @safe_tool_call("list_children")
    async def _list_children(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require_instance(args["path"])
        children = [
            {"path": p, "name": self._nodes[p].name, "class_name": self._nodes[p].class_name}
            for p in self.children_of(args["path"])
        ]
        return {"ok": {"path": args["path"], "children": children}}

    @safe_tool_call("search_scripts")
    async def _search_scripts(self, args: Dict[str, Any]) -> Dict[str, Any]:
        query = args["query"]
        matches: List[Dict[str, Any]] = []
        for path in sorted(self._nodes):
            node = self._nodes[path]
            if not node.is_script:
                continue
            for line_no, line in enumerate(node.source.splitlines(), start=1):
                if query in line:
                    matches.append({"path": path, "line": line_no, "text": line.strip()})
                    if len(matches) >= MAX_SEARCH_RESULTS:
                        return {"ok": {"query": query, "matches": matches, "truncated": True}}
        return {"ok": {"query": query, "matches": matches}}

    @safe_tool_call("request_user_feedback")
    async def _request_user_feedback(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "awaiting_feedback": True,
            "feedback_request": {
                "question": args["question"],
                "context": args.get("context", ""),
                "verification_type": args.get("verification_type", "general"),
                "suggestions": list(args.get("suggestions") or []),
            },
        }

    @staticmethod
    def _match_lines(source: str, search: str) -> List[int]:
        lines: List[int] = []
        start = source.find(search)
        while start != -1:
            lines.append(source.count("\n", 0, start) + 1)
            start = source.find(search, start + 1)
        return lines

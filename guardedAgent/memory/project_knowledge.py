"""Self-validating project knowledge.

The agent writes short facts about the project (architecture, conventions,
warnings, dependencies). Each entry may carry an anchor: something checkable
in the workspace. On session start every anchor is re-checked and entries
whose anchor broke, or that were not verified for a week, are marked stale
and left out of the prompt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

from guardedAgent.config.settings import PersistenceSettings
from guardedAgent.tools.backend import ToolBackend

from .store import DocumentStore

LOGGER = logging.getLogger(__name__)

DOCUMENT_NAME = "project_knowledge"

EntryType = Literal["architecture", "convention", "warning", "dependency"]
ENTRY_TYPES = ("architecture", "convention", "warning", "dependency")
SECTION_TITLES = {
    "architecture": "Architecture",
    "convention": "Conventions",
    "warning": "Warnings",
    "dependency": "Dependencies",
}


class Anchor(BaseModel):
    type: Literal["path_exists", "path_contains", "content_hash"]
    path: str
    pattern: Optional[str] = None
    hash: Optional[str] = None


class KnowledgeEntry(BaseModel):
    type: EntryType
    content: str
    anchor: Optional[Anchor] = None
    dependencies: List[str] = Field(default_factory=list)
    created: float
    last_verified: float
    is_stale: bool = False
    stale_reason: Optional[str] = None


class KnowledgeDocument(BaseModel):
    version: int = 1
    entries: List[KnowledgeEntry] = Field(default_factory=list)


def compute_hash(content: str) -> str:
    """Cheap positional checksum for change detection, not security."""
    value = 0
    for index, char in enumerate(content[:10000], start=1):
        value = (value + ord(char) * index) % 2147483647
    return str(value)


class ProjectKnowledge:
    def __init__(
        self,
        backend: ToolBackend,
        store: Optional[DocumentStore] = None,
        settings: Optional[PersistenceSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.store = store
        self.settings = settings or PersistenceSettings()
        self._clock = clock
        self.document = KnowledgeDocument()

    # ========== Persistence ==========

    def load(self) -> KnowledgeDocument:
        raw = self.store.load(DOCUMENT_NAME) if self.store else None
        if raw is None:
            self.document = KnowledgeDocument()
        else:
            try:
                self.document = KnowledgeDocument.model_validate(raw)
            except ValueError as e:
                LOGGER.warning(f"Project knowledge document is invalid, starting empty: {e}")
                self.document = KnowledgeDocument()
        return self.document

    def save(self) -> None:
        if self.store is not None:
            self.store.save(DOCUMENT_NAME, self.document.model_dump(mode="json"))

    # ========== Anchors ==========

    def validate_anchor(self, anchor: Optional[Anchor]) -> bool:
        if anchor is None:
            return True
        if anchor.type == "path_exists":
            return self.backend.path_exists(anchor.path)

        source = self.backend.read_source(anchor.path)
        if source is None:
            return False
        if anchor.type == "path_contains":
            return bool(anchor.pattern) and anchor.pattern in source
        return compute_hash(source) == anchor.hash

    def validate_all(self) -> Dict[str, object]:
        now = self._clock()
        threshold = self.settings.stale_threshold_days * 86400
        stale_entries: List[Dict[str, str]] = []
        valid = 0

        for entry in self.document.entries:
            reason = None
            if entry.anchor is not None and not self.validate_anchor(entry.anchor):
                reason = f"Anchor no longer valid: {entry.anchor.path}"
            elif now - entry.last_verified > threshold:
                reason = f"Not verified in {self.settings.stale_threshold_days:g} days"

            if reason:
                entry.is_stale = True
                entry.stale_reason = reason
                stale_entries.append({"content": entry.content, "reason": reason})
            else:
                entry.is_stale = False
                entry.stale_reason = None
                entry.last_verified = now
                valid += 1

        if stale_entries:
            LOGGER.info(f"Project knowledge: {valid} valid, {len(stale_entries)} stale")
        return {"valid": valid, "stale": len(stale_entries), "stale_entries": stale_entries}

    # ========== Entries ==========

    def add_entry(
        self,
        entry_type: str,
        content: str,
        anchor: Optional[Anchor] = None,
        dependencies: Optional[List[str]] = None,
    ) -> Dict[str, object]:
        if entry_type not in ENTRY_TYPES:
            return {"success": False, "error": f"Invalid context type: {entry_type}"}

        max_length = self.settings.max_entry_length
        if len(content) > max_length:
            content = content[:max_length] + "..."

        if any(existing.content == content for existing in self.document.entries):
            return {"success": False, "error": "Duplicate context entry"}

        entries = self.document.entries
        while len(entries) >= self.settings.max_project_entries:
            victim = next((i for i, existing in enumerate(entries) if existing.is_stale), 0)
            entries.pop(victim)

        now = self._clock()
        entries.append(
            KnowledgeEntry(
                type=entry_type,
                content=content,
                anchor=anchor,
                dependencies=list(dependencies or []),
                created=now,
                last_verified=now,
            )
        )
        return {"success": True, "message": f"Context added: {content[:50]}"}

    def get_entries(self, include_stale: bool = False) -> List[KnowledgeEntry]:
        if include_stale:
            return list(self.document.entries)
        return [entry for entry in self.document.entries if not entry.is_stale]

    def remove_entry(self, index: int) -> bool:
        if not 0 <= index < len(self.document.entries):
            return False
        self.document.entries.pop(index)
        return True

    def clear_stale(self) -> int:
        before = len(self.document.entries)
        self.document.entries = [entry for entry in self.document.entries if not entry.is_stale]
        return before - len(self.document.entries)

    def cascade_invalidation(self, changed_path: str, visited: Optional[Set[str]] = None) -> int:
        """Mark entries depending on changed_path stale, following anchors transitively."""
        visited = visited if visited is not None else set()
        if changed_path in visited:
            return 0
        visited.add(changed_path)

        invalidated = 0
        for entry in self.document.entries:
            if changed_path in entry.dependencies and not entry.is_stale:
                entry.is_stale = True
                entry.stale_reason = f"Dependency changed: {changed_path}"
                invalidated += 1
                if entry.anchor is not None:
                    invalidated += self.cascade_invalidation(entry.anchor.path, visited)
        return invalidated

    # ========== Prompt ==========

    def format_for_prompt(self) -> str:
        entries = self.get_entries()
        if not entries:
            return ""

        lines = ["## Project Knowledge (validated)", ""]
        for entry_type in ENTRY_TYPES:
            section = [entry for entry in entries if entry.type == entry_type]
            if section:
                lines.append(f"### {SECTION_TITLES[entry_type]}")
                lines.extend(f"- {entry.content}" for entry in section)
                lines.append("")
        return "\n".join(lines)

    def get_session_info(self) -> Dict[str, object]:
        entries = self.document.entries
        return {
            "is_new": not entries,
            "total_entries": len(entries),
            "stale_count": sum(1 for entry in entries if entry.is_stale),
        }

"""Tiered working memory with relevance decay.

Three tiers:
1. critical - the active goal and key decisions; never decays, never evicted
2. working - recent tool results and reads; relevance halves every half-life
3. background - truncated summaries of items compacted out of the working tier

Relevance of a working item is base * 0.5 ** (seconds since last access / half_life),
clamped at the floor. Accessing an item boosts its base and restarts its clock.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from guardedAgent.config.settings import MemorySettings

LOGGER = logging.getLogger(__name__)

Tier = Literal["critical", "working", "background"]

BASE_RELEVANCE: Dict[str, float] = {
    "user_goal": 100,
    "decision": 90,
    "key_finding": 85,
    "script_read": 80,
    "tool_result": 70,
    "instance_inspect": 65,
    "search_result": 60,
    "general": 50,
}

CRITICAL_TYPES = frozenset({"user_goal", "decision", "key_finding"})


@dataclass
class MemoryItem:
    id: str
    type: str
    summary: str
    raw_content: Any
    base_relevance: float
    current_relevance: float
    added_at: float
    last_accessed_at: float
    access_count: int = 1
    tier: Tier = "working"
    archived: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class WorkingMemory:
    def __init__(self, settings: Optional[MemorySettings] = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or MemorySettings()
        self._clock = clock
        self.critical: List[MemoryItem] = []
        self.working: List[MemoryItem] = []
        self.background: List[MemoryItem] = []
        self.current_goal: Optional[MemoryItem] = None

    # ========== Adding ==========

    def add(self, item_type: str, summary: str, content: Any = None, metadata: Optional[Dict[str, Any]] = None) -> str:
        now = self._clock()
        base = BASE_RELEVANCE.get(item_type, BASE_RELEVANCE["general"])
        tier: Tier = "critical" if item_type in CRITICAL_TYPES else "working"
        item = MemoryItem(
            id=uuid.uuid4().hex,
            type=item_type,
            summary=summary,
            raw_content=content,
            base_relevance=base,
            current_relevance=base,
            added_at=now,
            last_accessed_at=now,
            tier=tier,
            metadata=dict(metadata or {}),
        )

        if tier == "critical":
            if item_type == "user_goal":
                self.current_goal = item
            self.critical.append(item)
        else:
            self.working.append(item)

        self.decay()
        self.compact()
        LOGGER.debug(f"Added {item_type}: {summary[:40]} (relevance: {base:.0f})")
        return item.id

    # ========== Access ==========

    def access(self, item_id: str) -> Optional[MemoryItem]:
        now = self._clock()
        for item in self.critical:
            if item.id == item_id:
                item.last_accessed_at = now
                item.access_count += 1
                return item

        for item in self.working:
            if item.id == item_id:
                item.last_accessed_at = now
                item.access_count += 1
                item.base_relevance = min(100.0, item.base_relevance + self.settings.access_boost)
                item.current_relevance = item.base_relevance
                return item
        return None

    # ========== Decay & compaction ==========

    def relevance_of(self, item: MemoryItem, now: Optional[float] = None) -> float:
        if item.tier != "working":
            return item.base_relevance
        now = self._clock() if now is None else now
        elapsed = max(0.0, now - item.last_accessed_at)
        decayed = item.base_relevance * math.pow(0.5, elapsed / self.settings.half_life_seconds)
        return max(self.settings.relevance_floor, decayed)

    def decay(self) -> None:
        now = self._clock()
        for item in self.working:
            item.current_relevance = self.relevance_of(item, now)

    def compact(self) -> None:
        if len(self.working) <= self.settings.max_working_items:
            return

        self.working.sort(key=lambda item: item.current_relevance, reverse=True)
        while len(self.working) > self.settings.compact_threshold:
            item = self.working.pop()
            self.background.append(self._summarize(item))
            LOGGER.debug(f"Compacted: {item.summary[:30]} (relevance: {item.current_relevance:.1f})")

        overflow = len(self.background) - self.settings.max_background_items
        if overflow > 0:
            del self.background[:overflow]

    def _summarize(self, item: MemoryItem) -> MemoryItem:
        content = item.raw_content
        return MemoryItem(
            id=item.id,
            type=item.type,
            summary=item.summary,
            raw_content=content[: self.settings.max_content_length] if isinstance(content, str) else None,
            base_relevance=item.base_relevance,
            current_relevance=item.current_relevance,
            added_at=item.added_at,
            last_accessed_at=item.last_accessed_at,
            access_count=item.access_count,
            tier="background",
        )

    # ========== Goals ==========

    def set_goal(self, message: str, analysis: Optional[Dict[str, Any]] = None) -> MemoryItem:
        now = self._clock()
        goal = MemoryItem(
            id=uuid.uuid4().hex,
            type="user_goal",
            summary=message[:200],
            raw_content=message,
            base_relevance=100,
            current_relevance=100,
            added_at=now,
            last_accessed_at=now,
            tier="critical",
            metadata={"analysis": analysis} if analysis else {},
        )
        self.current_goal = goal
        self.critical.append(goal)
        LOGGER.debug(f"Set goal: {message[:50]}")
        return goal

    def archive_current_goal(self) -> None:
        goal = self.current_goal
        if goal is not None:
            goal.archived = True
            goal.metadata["archived_at"] = self._clock()
            goal.base_relevance = 50
            goal.current_relevance = 50
        self.current_goal = None

    # ========== Prompt ==========

    def format_for_prompt(
        self,
        min_relevance: Optional[float] = None,
        include_background: bool = False,
    ) -> str:
        min_relevance = self.settings.prompt_min_relevance if min_relevance is None else min_relevance
        self.decay()
        parts: List[str] = []

        goals = [item for item in self.critical if item.type == "user_goal" and not item.archived]
        decisions = [item for item in self.critical if item.type in ("decision", "key_finding")]
        if goals:
            parts.append("## Active Goal")
            parts.extend(f"- {item.summary}" for item in goals)
            parts.append("")
        if decisions:
            parts.append("## Key Decisions")
            parts.extend(f"- {item.summary}" for item in decisions)
            parts.append("")

        relevant = sorted(
            (item for item in self.working if item.current_relevance >= min_relevance),
            key=lambda item: item.current_relevance,
            reverse=True,
        )
        if relevant:
            parts.append("## Recent Context")
            parts.extend(f"- [{item.current_relevance:.0f}%] {item.summary}" for item in relevant)
            parts.append("")

        if include_background and self.background:
            parts.append("## Background Context")
            parts.extend(f"- {item.summary}" for item in self.background[-6:])
            parts.append("")

        return "\n".join(parts)

    # ========== State ==========

    def clear(self) -> None:
        self.critical = []
        self.working = []
        self.background = []
        self.current_goal = None

    def get_statistics(self) -> Dict[str, Any]:
        self.decay()
        total = sum(item.current_relevance for item in self.working)
        return {
            "critical_count": len(self.critical),
            "working_count": len(self.working),
            "background_count": len(self.background),
            "average_relevance": total / len(self.working) if self.working else 0.0,
            "has_goal": self.current_goal is not None,
            "goal_summary": self.current_goal.summary[:50] if self.current_goal else None,
        }

    def estimate_tokens(self) -> int:
        chars = sum(len(item.summary) + 20 for item in (*self.critical, *self.working))
        return math.ceil(chars / 4)

"""Pattern learning from past tasks.

Every task records the tool sequence the agent used. When the task ends the
sequence is stored as a successful or failed pattern keyed by the task's
keywords and capabilities. New tasks are matched against stored patterns to
suggest proven approaches and warn about ones that failed.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel, Field

from guardedAgent.config.settings import PersistenceSettings

from .store import DocumentStore

LOGGER = logging.getLogger(__name__)

DOCUMENT_NAME = "decision_memory"
DAY = 86400

STOP_WORDS = frozenset(
    {
        "this", "that", "these", "those", "with", "from", "into", "have", "been",
        "will", "would", "could", "should", "about", "your", "their", "there",
        "what", "when", "where", "which", "while", "some", "more", "also", "just",
        "very", "each", "other", "than", "then", "only", "over", "such", "make",
        "made", "like", "want", "need", "please", "help", "sure", "okay", "yeah",
        "code", "file", "thing", "stuff", "work", "something", "anything",
    }
)


def extract_keywords(text: str) -> Set[str]:
    """Words of 4+ chars that are not numbers or stop words."""
    words = "".join(ch if ch.isalnum() else " " for ch in text.lower()).split()
    return {word for word in words if len(word) >= 4 and not word.isdigit() and word not in STOP_WORDS}


class Pattern(BaseModel):
    id: str
    task_keywords: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    tool_sequence: List[str] = Field(default_factory=list)
    tool_count: int = 0
    duration: float = 0.0
    tool_success_rate: float = 0.0
    created: float
    last_used: float
    use_count: int = 1
    failure_count: int = 0


class PatternStore(BaseModel):
    version: int = 1
    successful: List[Pattern] = Field(default_factory=list)
    failed: List[Pattern] = Field(default_factory=list)


@dataclass
class _ToolRecord:
    name: str
    success: bool
    summary: str


@dataclass
class _Sequence:
    id: str
    task: str
    complexity: str
    capabilities: List[str]
    started_at: float
    tools: List[_ToolRecord] = field(default_factory=list)


@dataclass
class PatternMatch:
    pattern: Pattern
    score: float
    keyword_matches: int
    capability_matches: int


@dataclass
class Suggestion:
    type: Literal["proven_approach", "similar_failed"]
    message: str
    confidence: float
    tool_sequence: List[str]
    pattern_id: str


class DecisionMemory:
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        settings: Optional[PersistenceSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.settings = settings or PersistenceSettings()
        self._clock = clock
        self.patterns = PatternStore()
        self.current: Optional[_Sequence] = None

    # ========== Persistence ==========

    def load(self) -> None:
        raw = self.store.load(DOCUMENT_NAME) if self.store else None
        if raw is None:
            return
        try:
            self.patterns = PatternStore.model_validate(raw)
        except ValueError as e:
            LOGGER.warning(f"Decision memory document is invalid, starting empty: {e}")
            self.patterns = PatternStore()
            return
        LOGGER.debug(
            f"Loaded {len(self.patterns.successful)} successful, {len(self.patterns.failed)} failed patterns"
        )

    def save(self) -> None:
        limit = self.settings.max_patterns
        if len(self.patterns.successful) > limit:
            # Least recently used go first
            self.patterns.successful.sort(key=lambda p: p.last_used)
            del self.patterns.successful[: len(self.patterns.successful) - limit]
        if len(self.patterns.failed) > limit:
            del self.patterns.failed[: len(self.patterns.failed) - limit]

        if self.store is not None:
            self.store.save(DOCUMENT_NAME, self.patterns.model_dump(mode="json"))

    # ========== Sequence recording ==========

    def start_sequence(self, task: str, complexity: str = "unknown", capabilities: Sequence[str] = ()) -> None:
        self.current = _Sequence(
            id=uuid.uuid4().hex,
            task=task[:200],
            complexity=complexity,
            capabilities=list(capabilities),
            started_at=self._clock(),
        )

    def record_tool(self, tool_name: str, success: bool, summary: str = "") -> None:
        if self.current is None:
            return
        self.current.tools.append(_ToolRecord(name=tool_name, success=success, summary=(summary or "")[:100]))

    def end_sequence(self, success: bool, summary: str = "") -> Optional[Pattern]:
        sequence = self.current
        if sequence is None:
            return None
        self.current = None

        now = self._clock()
        successes = sum(1 for tool in sequence.tools if tool.success)
        pattern = Pattern(
            id=sequence.id,
            task_keywords=sorted(extract_keywords(sequence.task)),
            capabilities=sequence.capabilities,
            tool_sequence=[tool.name for tool in sequence.tools],
            tool_count=len(sequence.tools),
            duration=now - sequence.started_at,
            tool_success_rate=successes / len(sequence.tools) if sequence.tools else 0.0,
            created=now,
            last_used=now,
        )
        (self.patterns.successful if success else self.patterns.failed).append(pattern)
        self.save()
        LOGGER.debug(
            f"Sequence ended: {'SUCCESS' if success else 'FAILED'} "
            f"({pattern.tool_count} tools, {pattern.tool_success_rate * 100:.0f}% success rate)"
        )
        return pattern

    # ========== Matching ==========

    def _score(self, pattern: Pattern, keywords: Set[str], capabilities: Set[str]) -> PatternMatch:
        keyword_matches = sum(1 for keyword in pattern.task_keywords if keyword in keywords)
        capability_matches = sum(1 for capability in pattern.capabilities if capability in capabilities)
        score = keyword_matches * 10 + capability_matches * 20

        if keyword_matches < self.settings.min_keyword_matches:
            return PatternMatch(pattern, 0, keyword_matches, capability_matches)
        if self.settings.require_capability_match and capabilities and capability_matches == 0:
            return PatternMatch(pattern, 0, keyword_matches, capability_matches)

        days = (self._clock() - pattern.last_used) / DAY
        if days < 1:
            score += 15
        elif days < 3:
            score += 10
        elif days < 7:
            score += 5

        score += min(pattern.use_count * 2, 10)
        score += pattern.tool_success_rate * 10

        failure_rate = pattern.failure_count / max(1, pattern.use_count)
        if failure_rate > 0.3:
            score -= 20
        elif failure_rate > 0.1:
            score -= 10

        if days > 14:
            score -= 10
        elif days > 7:
            score -= 5

        return PatternMatch(pattern, max(0, score), keyword_matches, capability_matches)

    def find_matching_patterns(self, task: str, capabilities: Sequence[str] = ()) -> Dict[str, List[PatternMatch]]:
        keywords = extract_keywords(task)
        capability_set = set(capabilities)

        def ranked(patterns: List[Pattern]) -> List[PatternMatch]:
            matches = [self._score(pattern, keywords, capability_set) for pattern in patterns]
            return sorted((m for m in matches if m.score > 20), key=lambda m: m.score, reverse=True)

        return {"successful": ranked(self.patterns.successful), "failed": ranked(self.patterns.failed)}

    def _confidence(self, match: PatternMatch) -> float:
        pattern = match.pattern
        confidence = 0.5 + match.keyword_matches / 10 * 0.2
        if match.capability_matches > 0:
            confidence += 0.15

        days = (self._clock() - pattern.last_used) / DAY
        if days < 1:
            confidence += 0.1
        elif days < 3:
            confidence += 0.05

        confidence += pattern.tool_success_rate * 0.15
        if pattern.use_count > 5:
            confidence += 0.1
        elif pattern.use_count > 2:
            confidence += 0.05

        failure_rate = pattern.failure_count / max(1, pattern.use_count)
        if failure_rate > 0.3:
            confidence -= 0.2
        elif failure_rate > 0.1:
            confidence -= 0.1

        if days > 14:
            confidence -= 0.1
        elif days > 7:
            confidence -= 0.05

        return max(0.1, min(1.0, confidence))

    def get_suggestions(self, task: str, capabilities: Sequence[str] = ()) -> Dict[str, List[Suggestion]]:
        matches = self.find_matching_patterns(task, capabilities)
        suggestions: List[Suggestion] = []
        warnings: List[Suggestion] = []

        for rank, match in enumerate(matches["successful"][:3]):
            confidence = self._confidence(match)
            if confidence < 0.5:
                continue
            label = "high" if confidence >= 0.8 else "medium" if confidence >= 0.6 else "low"
            suggestions.append(
                Suggestion(
                    type="proven_approach",
                    message=(
                        f"[{label} confidence: {confidence * 100:.0f}%] Similar task succeeded using: "
                        f"{' -> '.join(match.pattern.tool_sequence)}"
                    ),
                    confidence=confidence,
                    tool_sequence=list(match.pattern.tool_sequence),
                    pattern_id=match.pattern.id,
                )
            )
            if rank == 0:
                match.pattern.last_used = self._clock()
                match.pattern.use_count += 1

        for match in matches["failed"]:
            if match.score <= 30:
                continue
            confidence = self._confidence(match)
            warnings.append(
                Suggestion(
                    type="similar_failed",
                    message=(
                        f"A similar approach failed before ({confidence * 100:.0f}% match). Avoid: "
                        f"{' -> '.join(match.pattern.tool_sequence)}"
                    ),
                    confidence=confidence,
                    tool_sequence=list(match.pattern.tool_sequence),
                    pattern_id=match.pattern.id,
                )
            )

        return {"suggestions": suggestions, "warnings": warnings}

    def format_for_prompt(self, task: str, capabilities: Sequence[str] = ()) -> str:
        result = self.get_suggestions(task, capabilities)
        if not result["suggestions"] and not result["warnings"]:
            return ""

        parts = ["## Past Experience", ""]
        if result["suggestions"]:
            parts.append("**What worked before:**")
            parts.extend(f"- {s.message}" for s in result["suggestions"])
            parts.append("")
        if result["warnings"]:
            parts.append("**What to avoid:**")
            parts.extend(f"- {w.message}" for w in result["warnings"])
            parts.append("")
        return "\n".join(parts)

    # ========== Maintenance ==========

    def decay_old_patterns(self) -> int:
        cutoff = self._clock() - self.settings.pattern_decay_days * DAY
        before = len(self.patterns.successful) + len(self.patterns.failed)
        self.patterns.successful = [p for p in self.patterns.successful if p.last_used > cutoff]
        self.patterns.failed = [p for p in self.patterns.failed if p.last_used > cutoff]
        removed = before - len(self.patterns.successful) - len(self.patterns.failed)
        if removed:
            LOGGER.info(f"Decayed {removed} old patterns")
            self.save()
        return removed

    def get_statistics(self) -> Dict[str, Any]:
        tools: Counter = Counter()
        for pattern in self.patterns.successful:
            tools.update(pattern.tool_sequence)
        successful = len(self.patterns.successful)
        return {
            "successful_patterns": successful,
            "failed_patterns": len(self.patterns.failed),
            "total_patterns": successful + len(self.patterns.failed),
            "most_used_tools": tools.most_common(5),
            "average_tools_per_task": sum(tools.values()) / successful if successful else 0.0,
        }

    def clear_all(self) -> None:
        self.patterns = PatternStore()
        self.current = None
        if self.store is not None:
            self.store.delete(DOCUMENT_NAME)

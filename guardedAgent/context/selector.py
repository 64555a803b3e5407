"""Relevance selection and read-freshness tracking.

Instead of dumping every script into the prompt, score each workspace path
against the current request and keep the top K. Freshness of the agent's
reads feeds the score: a script modified after it was last read gets a big
boost so the agent re-reads it before editing.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional, Sequence, Set

from guardedAgent.config.settings import SelectionSettings
from guardedAgent.tools.backend import ToolBackend

LOGGER = logging.getLogger(__name__)

FreshnessStatus = Literal["fresh", "stale", "very_stale", "never_read"]

FRESH_BONUS = 10
STALE_PENALTY = 3
VERY_STALE_PENALTY = 8
NEVER_READ_PENALTY = 2
MODIFIED_AFTER_READ_BONUS = 30

IMPORTANT_KEYWORDS = (
    "players", "workspace", "replicatedstorage", "serverstorage", "serverscriptservice",
    "startergui", "starterplayer", "lighting", "tweenservice", "datastore",
    "remote", "event", "module", "service", "data", "save", "load", "store",
    "player", "character", "gui", "ui", "frame", "button", "label", "screen",
    "part", "model", "tween", "animation", "tool", "inventory", "shop", "currency",
    "combat", "health", "damage", "weapon", "spawn", "teleport", "leaderboard",
    "stats", "score", "level", "chat", "sound",
)

CAPABILITY_PATH_HINTS: Dict[str, Sequence[str]] = {
    "ui_creation": ("gui", "ui"),
    "networking": ("server", "client", "remote"),
    "data_management": ("data", "store", "save"),
}

_WORD = re.compile(r"[a-z0-9]+")


def extract_keywords(text: str) -> Set[str]:
    """Lowercase words of 3+ chars plus any known domain terms found in text."""
    lowered = text.lower()
    keywords = {word for word in _WORD.findall(lowered) if len(word) >= 3}
    keywords.update(term for term in IMPORTANT_KEYWORDS if term in lowered)
    return keywords


@dataclass
class Freshness:
    status: FreshnessStatus
    seconds_since_read: Optional[float] = None
    modified_after_read: bool = False
    read_count: int = 0


@dataclass
class StaleItem:
    path: str
    seconds_since_read: float
    reason: str
    priority: Literal["high", "medium", "low"]


@dataclass
class ScoredPath:
    path: str
    score: float


@dataclass
class Selection:
    items: List[ScoredPath] = field(default_factory=list)
    total_available: int = 0
    reason: str = ""

    @property
    def paths(self) -> List[str]:
        return [item.path for item in self.items]


@dataclass
class _ReadState:
    last_read: Optional[float] = None
    last_modified: Optional[float] = None
    read_count: int = 0


class ContextSelector:
    def __init__(
        self,
        backend: ToolBackend,
        settings: Optional[SelectionSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.settings = settings or SelectionSettings()
        self._clock = clock
        self._freshness: Dict[str, _ReadState] = {}
        self._recently_edited: Dict[str, float] = {}
        self._keyword_cache: Dict[str, Set[str]] = {}

    # ========== Freshness ==========

    def record_read(self, path: str) -> None:
        state = self._freshness.setdefault(path, _ReadState())
        state.last_read = self._clock()
        state.read_count += 1
        LOGGER.debug(f"Recorded read: {path} (count: {state.read_count})")

    def record_modified(self, path: str, by_agent: bool = True) -> None:
        """Record a change to path.

        Edits made by the agent also count as an edit for recency scoring and
        invalidate the cached keywords of that script.
        """
        state = self._freshness.setdefault(path, _ReadState())
        state.last_modified = self._clock()
        self._keyword_cache.pop(path, None)
        if by_agent:
            self._mark_edited(path)

    def get_freshness(self, path: str) -> Freshness:
        state = self._freshness.get(path)
        if state is None or state.last_read is None:
            return Freshness(status="never_read")

        since_read = self._clock() - state.last_read
        modified_after_read = state.last_modified is not None and state.last_modified > state.last_read
        if since_read < self.settings.fresh_seconds:
            status: FreshnessStatus = "fresh"
        elif since_read < self.settings.stale_seconds:
            status = "stale"
        else:
            status = "very_stale"
        return Freshness(
            status=status,
            seconds_since_read=since_read,
            modified_after_read=modified_after_read,
            read_count=state.read_count,
        )

    def get_stale_items(self) -> List[StaleItem]:
        """Paths worth re-reading, highest priority first."""
        stale: List[StaleItem] = []
        for path, state in self._freshness.items():
            if state.last_read is None:
                continue
            freshness = self.get_freshness(path)
            since = freshness.seconds_since_read or 0.0
            if freshness.modified_after_read:
                stale.append(StaleItem(path, since, "modified_after_read", "high"))
            elif freshness.status == "very_stale":
                stale.append(StaleItem(path, since, "very_stale", "medium"))
            elif freshness.status == "stale":
                stale.append(StaleItem(path, since, "stale", "low"))

        order = {"high": 0, "medium": 1, "low": 2}
        stale.sort(key=lambda item: order[item.priority])
        return stale

    def mark_all_stale(self) -> None:
        cutoff = self._clock() - self.settings.stale_seconds
        for state in self._freshness.values():
            if state.last_read is not None:
                state.last_read = min(state.last_read, cutoff)

    def _freshness_adjustment(self, path: str) -> float:
        freshness = self.get_freshness(path)
        adjustment = {
            "never_read": -NEVER_READ_PENALTY,
            "fresh": FRESH_BONUS,
            "stale": -STALE_PENALTY,
            "very_stale": -VERY_STALE_PENALTY,
        }[freshness.status]
        if freshness.modified_after_read:
            adjustment += MODIFIED_AFTER_READ_BONUS
        return adjustment

    # ========== Recently edited ==========

    def _mark_edited(self, path: str) -> None:
        now = self._clock()
        self._recently_edited[path] = now
        cutoff = now - self.settings.recent_edit_window_minutes * 60
        self._recently_edited = {p: t for p, t in self._recently_edited.items() if t >= cutoff}

    def get_recently_edited(self) -> List[str]:
        cutoff = self._clock() - self.settings.recent_edit_window_minutes * 60
        recent = [(t, p) for p, t in self._recently_edited.items() if t >= cutoff]
        return [p for _, p in sorted(recent, reverse=True)]

    # ========== Scoring ==========

    def _path_keywords(self, path: str) -> Set[str]:
        cached = self._keyword_cache.get(path)
        if cached is not None:
            return cached
        keywords = extract_keywords(path)
        source = self.backend.read_source(path)
        if source:
            keywords |= extract_keywords(source[:2000])
        self._keyword_cache[path] = keywords
        return keywords

    def score(self, path: str, request_keywords: Set[str], capabilities: Sequence[str] = ()) -> float:
        score = 0.0
        lowered = path.lower()

        path_keywords = self._path_keywords(path)
        score += 10 * len(request_keywords & path_keywords)
        score += 25 * sum(1 for keyword in request_keywords if keyword in lowered)

        edited_at = self._recently_edited.get(path)
        if edited_at is not None:
            window = self.settings.recent_edit_window_minutes
            minutes_ago = (self._clock() - edited_at) / 60
            if minutes_ago < window:
                score += 15 * (1 - minutes_ago / window)

        for capability in capabilities:
            if capability == "script_editing":
                score += 2
            elif any(hint in lowered for hint in CAPABILITY_PATH_HINTS.get(capability, ())):
                score += 15

        score += self._freshness_adjustment(path)
        return score

    def select(self, message: str, capabilities: Sequence[str] = ()) -> Selection:
        """Top-K workspace scripts for a request."""
        paths = [path for path in self.backend.list_paths() if self.backend.read_source(path) is not None]
        if not paths:
            return Selection(reason="No scripts in project")

        keywords = extract_keywords(message)
        scored = sorted(
            (ScoredPath(path, self.score(path, keywords, capabilities)) for path in paths),
            key=lambda item: item.score,
            reverse=True,
        )
        selected = [item for item in scored[: self.settings.max_relevant_items] if item.score >= 0]

        if len(selected) == len(paths):
            reason = f"Including all {len(selected)} scripts (all are relevant)"
        elif not selected:
            reason = "No scripts matched the request keywords"
        else:
            reason = f"Selected {len(selected)} of {len(paths)} scripts by relevance"
        LOGGER.debug(reason)
        return Selection(items=selected, total_available=len(paths), reason=reason)

    # ========== Prompt ==========

    def format_for_prompt(self, selection: Selection) -> str:
        lines = ["PROJECT SCRIPTS (filtered by relevance):"]
        if selection.reason:
            lines.append(f"({selection.reason})")

        for path in sorted(selection.paths):
            freshness = self.get_freshness(path)
            flags = []
            if path in self._recently_edited:
                flags.append("edited")
            if freshness.modified_after_read:
                flags.append("modified since read")
            elif freshness.status == "fresh":
                flags.append("read")
            elif freshness.status == "very_stale":
                flags.append("stale read")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            lines.append(f"- {path}{suffix}")

        if not selection.items:
            lines.append("No scripts found matching your request. Use list_children to explore.")
        remaining = selection.total_available - len(selection.items)
        if remaining > 0:
            lines.append(f"{remaining} more scripts available (use search_scripts to find specific code)")

        stale = [item for item in self.get_stale_items() if item.priority == "high"]
        if stale:
            lines.append("SCRIPTS MODIFIED SINCE LAST READ (re-read before editing):")
            lines.extend(f"  - {item.path}" for item in stale)
        return "\n".join(lines)

    # ========== Reset ==========

    def reset(self) -> None:
        """Forget session state; the keyword cache survives."""
        self._recently_edited = {}
        self._freshness = {}

    def clear_cache(self) -> None:
        self._keyword_cache = {}
        self.reset()

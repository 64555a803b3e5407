"""Persisted knowledge: project facts and learned tool-sequence patterns."""

from .store import DocumentStore
from .project_knowledge import Anchor, KnowledgeEntry, ProjectKnowledge, compute_hash
from .decision_memory import DecisionMemory, Pattern, Suggestion

__all__ = [
    "DocumentStore",
    "Anchor",
    "KnowledgeEntry",
    "ProjectKnowledge",
    "compute_hash",
    "DecisionMemory",
    "Pattern",
    "Suggestion",
]

"""GuardedAgent - agentic tool loop with approval, resilience and context management."""

from guardedAgent.runtime import build_application

__all__ = ["build_application"]

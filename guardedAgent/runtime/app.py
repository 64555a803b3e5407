"""Runtime assembly for the guarded agent loop."""

from __future__ import annotations

import logging
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel

from guardedAgent.config import Settings, get_settings
from guardedAgent.config.project_root import resolve_project_path
from guardedAgent.config.settings import PersistenceSettings
from guardedAgent.memory.store import DocumentStore
from guardedAgent.models.provider import ModelProvider, build_chat_model
from guardedAgent.session.coordinator import SessionCoordinator
from guardedAgent.tools.approval_queue import ApprovalQueue
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.workspace import WorkspaceBackend

from .loop import AgenticLoop

LOGGER = logging.getLogger(__name__)


def _create_store(settings: PersistenceSettings) -> DocumentStore:
    if not settings.db_path:
        LOGGER.info("Knowledge store: in-memory (KNOWLEDGE_DB_PATH is empty)")
        return DocumentStore(":memory:")
    db_path = resolve_project_path(settings.db_path)
    LOGGER.info(f"Knowledge store: {db_path}")
    return DocumentStore(str(db_path))


def build_application(
    settings: Optional[Settings] = None,
    backend: Optional[ToolBackend] = None,
    chat_model: Optional[BaseChatModel] = None,
    store: Optional[DocumentStore] = None,
) -> AgenticLoop:
    """Wire settings, backend, persisted stores and the model into one loop.

    Every collaborator can be injected; anything omitted is built from
    settings (an in-memory WorkspaceBackend, the SQLite store at
    KNOWLEDGE_DB_PATH and a ChatOpenAI client).

    Returns:
        AgenticLoop whose coordinator has not started a conversation yet
    """
    settings = settings or get_settings()

    if backend is None:
        backend = WorkspaceBackend(ApprovalQueue(), auto_approve=settings.governance.auto_approve_writes)
        LOGGER.info(f"Using in-memory workspace backend (auto_approve={settings.governance.auto_approve_writes})")

    coordinator = SessionCoordinator(backend, settings, store or _create_store(settings.persistence))

    if chat_model is None:
        chat_model = build_chat_model(settings.provider)
        LOGGER.info(f"Chat model: {settings.provider.model}")
    provider = ModelProvider(chat_model, settings.provider)

    loop = AgenticLoop(coordinator, provider, settings)
    LOGGER.info(
        f"Application built: max_iterations={settings.governance.max_iterations}, "
        f"circuit threshold={settings.circuit.failure_threshold}"
    )
    return loop

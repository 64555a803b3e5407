"""Model provider and chat model construction."""

from .provider import ModelProvider, build_chat_model, is_transient, status_code_of

__all__ = [
    "ModelProvider",
    "build_chat_model",
    "is_transient",
    "status_code_of",
]

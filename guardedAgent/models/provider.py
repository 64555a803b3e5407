"""Model provider - status-code aware retry around a langchain chat model.

The chat model is built with max_retries=0 so that this module alone decides
what is retried:

- 429 and 5xx responses, timeouts and connection errors are retried with
  backoff 2^(attempt-1) * base (2s, 4s, ...)
- 401 and 402 are credential/billing failures and end the task immediately
- exhausted 429s surface as RateLimitError, exhausted timeouts as TimeoutError
- anything else surfaces once as ModelInvocationError
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import openai
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from guardedAgent.config.settings import ProviderSettings
from guardedAgent.context.compressor import format_messages_for_summary
from guardedAgent.utils.error_handler import (
    FatalModelError,
    ModelInvocationError,
    RateLimitError,
    TimeoutError as ModelTimeoutError,
    handle_model_error,
)
from guardedAgent.utils.message_utils import stringify_content

LOGGER = logging.getLogger(__name__)

RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
FATAL_STATUS_MESSAGES = {
    401: "Invalid API key",
    402: "Insufficient credits",
}

SUMMARY_SYSTEM_PROMPT = (
    "You are a technical summarizer. Summarize the following conversation logs from a "
    "coding session. Focus strictly on:\n"
    "1. Technical decisions made\n"
    "2. Current state of files (what was edited/created)\n"
    "3. Pending tasks or errors\n"
    "Discard casual chatter. Be concise."
)


def build_chat_model(settings: ProviderSettings) -> ChatOpenAI:
    """Construct the OpenAI-compatible chat client from settings.

    Raises:
        RuntimeError: If no API key is configured
    """
    if not settings.api_key:
        raise RuntimeError(f"Missing API key for model {settings.model}. Set MODEL_API_KEY in .env.")

    kwargs: Dict[str, Any] = {
        "model": settings.model,
        "api_key": settings.api_key,
        "temperature": settings.temperature,
        "max_tokens": settings.max_output_tokens,
        "timeout": settings.timeout_seconds,
        "max_retries": 0,
    }
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    return ChatOpenAI(**kwargs)


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by a client exception, if any."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_transient(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, openai.APITimeoutError, openai.APIConnectionError)):
        return True
    return status_code_of(error) in RETRY_STATUS_CODES


class ModelProvider:
    """Invoke a chat model with tool schemas bound, retrying transient failures.

    Args:
        chat_model: Any langchain chat model supporting bind_tools/ainvoke
        settings: Provider settings (attempt count and backoff base)
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        settings: Optional[ProviderSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.chat_model = chat_model
        self.settings = settings or ProviderSettings()
        self._sleep = sleep

    def _backoff_seconds(self, attempt: int) -> float:
        return (2 ** (attempt - 1)) * self.settings.backoff_base_seconds

    async def invoke(self, messages: Sequence[BaseMessage], tools: Optional[List[Dict[str, Any]]] = None) -> AIMessage:
        """Call the model once, with retry.

        Raises:
            FatalModelError: 401/402 responses
            RateLimitError: Still rate limited after the last attempt
            TimeoutError: Still timing out after the last attempt
            ModelInvocationError: Any other failure after the last attempt
        """
        model = self.chat_model.bind_tools(tools) if tools else self.chat_model
        max_attempts = self.settings.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                response = await model.ainvoke(list(messages))
            except Exception as e:
                status = status_code_of(e)

                if status in FATAL_STATUS_MESSAGES:
                    LOGGER.error(f"Model call rejected with HTTP {status}")
                    raise FatalModelError(str(e), FATAL_STATUS_MESSAGES[status], status_code=status) from e

                if is_transient(e) and attempt < max_attempts:
                    delay = self._backoff_seconds(attempt)
                    LOGGER.warning(
                        f"Model call failed ({status or type(e).__name__}), "
                        f"retrying in {delay:.1f}s (attempt {attempt}/{max_attempts})"
                    )
                    await self._sleep(delay)
                    continue

                LOGGER.error(f"Model call failed after {attempt} attempt(s): {type(e).__name__}: {e}")
                if status == 429:
                    raise RateLimitError(str(e), handle_model_error(e), status_code=status) from e
                if isinstance(e, (asyncio.TimeoutError, openai.APITimeoutError)):
                    raise ModelTimeoutError(str(e), "The model took too long to respond, please retry") from e
                raise ModelInvocationError(str(e), handle_model_error(e), status_code=status) from e

            if not isinstance(response, AIMessage):
                raise ModelInvocationError(
                    f"Unexpected model response type: {type(response).__name__}",
                    "Model returned an unexpected response",
                )
            if attempt > 1:
                LOGGER.info(f"Model call succeeded on attempt {attempt}")
            return response

        raise ModelInvocationError(f"No model attempts made (max_attempts={max_attempts})")

    async def generate_summary(self, messages: List[BaseMessage]) -> Optional[str]:
        """Summarize older history for compression; None when the model gives nothing usable."""
        prompt = [
            SystemMessage(content=SUMMARY_SYSTEM_PROMPT),
            HumanMessage(content=format_messages_for_summary(messages)),
        ]
        response = await self.invoke(prompt)
        text = stringify_content(response.content).strip()
        return text or None

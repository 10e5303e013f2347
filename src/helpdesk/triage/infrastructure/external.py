"""
Triage External Service Adapters
==================================

Adapter for the language model used by the LLM triage engine.
"""

from typing import List, Optional

from helpdesk.config import Settings
from helpdesk.core import LLMException
from helpdesk.infrastructure.llm import (
    ILLMClient, ChatCompletionResult, OpenAILLMClient, MockLLMClient,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class LLMClientAdapter(ILLMClient):
    """
    Adapter that wraps the infrastructure LLM client.

    Logs every call with its operation, token usage and latency so model
    spend can be followed per triage step.
    """

    def __init__(self, client: ILLMClient):
        self._client = client
        self.model_name = client.model_name

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 800,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""
        try:
            result = await self._client.chat_completion(messages, temperature, max_tokens, operation)
        except LLMException as e:
            logger.warning(
                "LLM call failed",
                extra={"operation": operation, "model": self.model_name, "error": e.message}
            )
            raise

        logger.info(
            "LLM call completed",
            extra={
                "operation": operation,
                "model": result.model,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "latency_ms": result.latency_ms,
            }
        )
        return result


def create_llm_client(settings: Settings) -> Optional[ILLMClient]:
    """
    Build the LLM client for the current settings.

    Returns:
        A mock client when ``mock_llm`` is set, an OpenAI client when an API
        key is configured, otherwise None (only the heuristic engine is offered)
    """
    if settings.mock_llm:
        logger.info("Using mock LLM client")
        return LLMClientAdapter(MockLLMClient())

    if not settings.openai_api_key:
        logger.warning("No LLM API key configured; LLM engine unavailable")
        return None

    return LLMClientAdapter(OpenAILLMClient(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        timeout_seconds=settings.llm_timeout_seconds,
    ))

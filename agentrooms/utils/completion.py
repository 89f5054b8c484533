"""Streaming text-completion capability used by agents and strategies."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from semantic_kernel import Kernel
from semantic_kernel.connectors.ai.chat_completion_client_base import ChatCompletionClientBase
from semantic_kernel.contents import ChatHistory

from .bedrock_client import BedrockClient
from .config import CompletionConfig
from .errors import ConfigurationError, handle_completion_error

logger = logging.getLogger(__name__)


class CompletionService(ABC):
    """
    Abstract streaming completion capability.

    Given a prompt, produces an append-only sequence of text chunks. One
    attempt per prompt; failures are raised as UpstreamCompletionError.
    Streaming stops early, without error, once ``cancel_event`` is set.
    """

    @abstractmethod
    def stream(self, prompt: str, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[str]:
        """Stream text chunks for ``prompt``."""


class KernelCompletionService(CompletionService):
    """Completion through the chat completion service registered on a Semantic Kernel."""

    def __init__(self, kernel: Kernel, service_id: Optional[str] = None):
        self.kernel = kernel
        self.service_id = service_id

    def _chat_service(self) -> ChatCompletionClientBase:
        return self.kernel.get_service(self.service_id, type=ChatCompletionClientBase)

    async def stream(self, prompt: str, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[str]:
        service = self._chat_service()
        settings = service.get_prompt_execution_settings_class()()

        chat_history = ChatHistory()
        chat_history.add_user_message(prompt)

        try:
            async for messages in service.get_streaming_chat_message_contents(
                chat_history=chat_history,
                settings=settings,
            ):
                if cancel_event is not None and cancel_event.is_set():
                    logger.debug("Kernel completion stream cancelled")
                    return
                for message in messages:
                    text = message.content or ""
                    if text:
                        yield text
        except Exception as e:
            handle_completion_error(e, operation="kernel_streaming_chat", logger=logger)


class BedrockCompletionService(CompletionService):
    """Completion through the Bedrock ConverseStream API."""

    def __init__(self, client: BedrockClient):
        self.client = client

    async def stream(self, prompt: str, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[str]:
        try:
            async for text in self.client.stream_converse(prompt):
                if cancel_event is not None and cancel_event.is_set():
                    logger.debug("Bedrock completion stream cancelled")
                    return
                yield text
        except Exception as e:
            handle_completion_error(e, operation="bedrock_converse_stream", logger=logger)


def build_kernel(config: CompletionConfig) -> Kernel:
    """
    Build a Semantic Kernel with an Ollama chat completion service.

    Args:
        config: Completion backend configuration

    Returns:
        Kernel with one chat completion service registered
    """
    from semantic_kernel.connectors.ai.ollama import OllamaChatCompletion

    kernel = Kernel()
    kernel.add_service(OllamaChatCompletion(ai_model_id=config.model_id, host=config.host))
    logger.info(f"Kernel configured with Ollama model {config.model_id} at {config.host}")
    return kernel


def build_completion_service(config: CompletionConfig) -> CompletionService:
    """
    Create the completion service selected by ``config.provider``.

    Args:
        config: Completion backend configuration

    Returns:
        CompletionService instance

    Raises:
        ConfigurationError: If the provider is unknown
    """
    provider = (config.provider or "").lower()

    if provider == "ollama":
        return KernelCompletionService(build_kernel(config))

    if provider == "bedrock":
        client = BedrockClient(
            region=config.region,
            model_id=config.model_id,
            timeout=config.timeout,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
        return BedrockCompletionService(client)

    raise ConfigurationError.invalid("completion.provider", f"unknown provider '{config.provider}'")

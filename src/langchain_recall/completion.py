"""
Streaming chat completion service.

A completion service takes the request messages (``[{role, content}, ...]``)
and returns a lazy iterator of text deltas. The iterator is finite, cannot be
restarted, and is cancelled by closing it.
"""

import logging
from typing import Iterator, Optional, Protocol

from langchain.chat_models import init_chat_model

from .memory.turns import message_text, messages_from_dicts

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    def complete(self, messages: list[dict], max_response_tokens: int) -> Iterator[str]:
        ...


class LangChainCompletionService:
    """
    Completion service backed by a LangChain chat model.

    Usage:
        service = LangChainCompletionService("gpt-4o", api_key=..., base_url=...)
        for delta in service.complete(messages, max_response_tokens=1024):
            print(delta, end="")
    """

    def __init__(
        self,
        model_name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model_provider: Optional[str] = None,
        temperature: Optional[float] = None,
        stop_words: Optional[list[str]] = None,
        llm=None,
    ):
        self.model_name = model_name
        self.stop_words = list(stop_words or [])
        self._llm = llm if llm is not None else self._create_llm(
            api_key, base_url, model_provider, temperature
        )

    def _create_llm(self, api_key, base_url, model_provider, temperature):
        init_kwargs = {}
        if temperature is not None:
            init_kwargs["temperature"] = temperature
        if api_key:
            init_kwargs["api_key"] = api_key
        if base_url:
            init_kwargs["base_url"] = base_url

        # model_provider is only passed when set, keeping auto-inference
        provider_kwargs = {}
        if model_provider:
            provider_kwargs["model_provider"] = model_provider

        return init_chat_model(self.model_name, **provider_kwargs, **init_kwargs)

    def complete(self, messages: list[dict], max_response_tokens: int) -> Iterator[str]:
        lc_messages = messages_from_dicts(messages)
        logger.debug(
            "Sending %d messages to %s (max_tokens=%d)",
            len(lc_messages),
            self.model_name,
            max_response_tokens,
        )
        for chunk in self._llm.stream(
            lc_messages,
            stop=self.stop_words or None,
            max_tokens=max_response_tokens,
        ):
            text = message_text(chunk)
            if text:
                yield text

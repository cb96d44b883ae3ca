"""LLM backend abstraction for workflow phases.

Provides a unified async interface over the providers a phase can name:

- BlogWriterBackend: any model served by the Blog Writer API's LiteLLM
  router ('gpt-4o', 'gpt-4o-mini', ...). This is the default route.
- AnthropicBackend: Claude models called directly through the Anthropic
  Messages API, selected with an 'anthropic/' prefix
  (e.g. 'anthropic/claude-sonnet-4-5').

Backends make exactly one provider call per generate(). Retry and timeout
policy belong to the caller (the workflow engine and phase executor).
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from src.blog_writer.client import BlogWriterClient, get_blog_writer_client

logger = logging.getLogger(__name__)


@dataclass
class LLMCallResult:
    """Normalized response from any LLM backend."""

    content: str
    model_id: str
    input_tokens: int
    output_tokens: int
    duration_ms: int


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol for LLM backend implementations."""

    @property
    def model_id(self) -> str: ...

    async def generate(
        self,
        system_prompt: Optional[str],
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        label: str = "",
    ) -> LLMCallResult: ...


class BlogWriterBackend:
    """Routes chat completions through the Blog Writer API."""

    def __init__(self, model_id: str, client: Optional[BlogWriterClient] = None):
        self._model_id = model_id
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate(
        self,
        system_prompt: Optional[str],
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        label: str = "",
    ) -> LLMCallResult:
        client = self._client or get_blog_writer_client()
        logger.info(
            f"[{label}] Blog Writer chat: model={self._model_id}, "
            f"~{(len(system_prompt or '') + len(user_prompt)) // 4:,} input tokens, "
            f"max_tokens={max_tokens}"
        )

        result = await client.chat(
            self._model_id,
            user_prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        if not result.content.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        logger.info(
            f"[{label}] Completed: {result.prompt_tokens}+{result.completion_tokens} tokens, "
            f"{result.duration_ms}ms, {len(result.content):,} chars"
        )
        return LLMCallResult(
            content=result.content.strip(),
            model_id=result.model,
            input_tokens=result.prompt_tokens,
            output_tokens=result.completion_tokens,
            duration_ms=result.duration_ms,
        )


class AnthropicBackend:
    """Anthropic Claude backend (direct Messages API)."""

    PREFIX = "anthropic/"

    def __init__(self, model_id: str = "anthropic/claude-sonnet-4-5", client=None):
        self._model_id = model_id
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def api_model(self) -> str:
        """Model name as the Anthropic API expects it (prefix removed)."""
        if self._model_id.startswith(self.PREFIX):
            return self._model_id[len(self.PREFIX):]
        return self._model_id

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic

            api_key = os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise RuntimeError("ANTHROPIC_API_KEY not set")
            self._client = AsyncAnthropic(api_key=api_key)
        return self._client

    async def generate(
        self,
        system_prompt: Optional[str],
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        start_time = time.time()

        kwargs = {
            "model": self.api_model,
            "max_tokens": max_tokens,
            "temperature": min(temperature, 1.0),
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.info(f"[{label}] Anthropic call: model={self.api_model}, max_tokens={max_tokens}")
        response = await client.messages.create(**kwargs)
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        logger.info(
            f"[{label}] Completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms, "
            f"{len(raw_text):,} chars"
        )
        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )

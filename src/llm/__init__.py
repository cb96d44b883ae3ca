"""Shared LLM utilities.

Provides the backends workflow phases call (Blog Writer API chat router,
direct Anthropic) and helpers for parsing JSON out of model responses.
"""

from src.llm.client import extract_json, parse_llm_json_response
from src.llm.backends import (
    LLMCallResult,
    ModelBackend,
    AnthropicBackend,
    BlogWriterBackend,
)
from src.llm.factory import get_backend

__all__ = [
    "extract_json",
    "parse_llm_json_response",
    "LLMCallResult",
    "ModelBackend",
    "AnthropicBackend",
    "BlogWriterBackend",
    "get_backend",
]

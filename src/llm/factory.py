"""Model backend factory.

Resolves phase model identifiers to the appropriate backend implementation.
"""

import logging
from typing import Union

from src.llm.backends import AnthropicBackend, BlogWriterBackend

logger = logging.getLogger(__name__)


def get_backend(model_id: str) -> Union[AnthropicBackend, BlogWriterBackend]:
    """Get the appropriate backend for a model ID.

    Args:
        model_id: Phase model identifier (e.g. 'gpt-4o',
                  'anthropic/claude-sonnet-4-5')

    Returns:
        Backend instance for the model

    Raises:
        ValueError: If model_id is empty
    """
    if not model_id or not model_id.strip():
        raise ValueError("Empty model identifier")
    if model_id.startswith(AnthropicBackend.PREFIX):
        return AnthropicBackend(model_id=model_id)
    return BlogWriterBackend(model_id=model_id)

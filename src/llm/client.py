"""Shared helpers for reading structured data out of LLM responses."""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_JSON_SPAN = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Args:
        raw_text: Raw text from LLM response

    Returns:
        Parsed JSON value

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    # Strip leading markdown fence (```json or ```)
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    # Strip trailing fence
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    content = content.strip()
    return json.loads(content)


def extract_json(raw_text: str) -> Any:
    """Parse JSON from a response that may have prose around it.

    Tries the whole (fence-stripped) text first, then the outermost
    {...} or [...] span.

    Raises:
        ValueError: If no JSON value can be recovered
    """
    try:
        return parse_llm_json_response(raw_text)
    except json.JSONDecodeError:
        pass

    match = _JSON_SPAN.search(raw_text or "")
    if match is None:
        raise ValueError("No JSON object found in response")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e}") from e

"""Picks the article body out of accumulated workflow outputs."""

from typing import Any

SECTION_KEYS = ("introduction", "body", "conclusion")


def assemble_content(outputs: dict[str, Any]) -> str:
    """Return the article content from phase outputs.

    Priority: assembled_content, then introduction/body/conclusion joined
    by a blank line (empty parts skipped), then content, then "".
    """
    assembled = outputs.get("assembled_content")
    if assembled:
        return str(assembled)

    parts = [str(outputs[key]) for key in SECTION_KEYS if outputs.get(key)]
    if parts:
        return "\n\n".join(parts)

    return str(outputs.get("content") or "")

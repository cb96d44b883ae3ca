"""Excerpt extraction and small text measurements for generated articles."""

import re

DEFAULT_EXCERPT_LENGTH = 160

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_HEADING = re.compile(r"#{1,6}\s+")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_INLINE_CODE = re.compile(r"`[^`]+`")
_NEWLINES = re.compile(r"\n+")
_SENTENCE_BREAK = re.compile(r"\.\s+")


def strip_markdown(content: str) -> str:
    """Reduce markdown to a single line of plain text."""
    text = _CODE_BLOCK.sub("", content)
    text = _HEADING.sub("", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _INLINE_CODE.sub("", text)
    text = _NEWLINES.sub(" ", text)
    return text.strip()


def extract_excerpt(content: str, max_length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Derive a short excerpt from markdown content.

    Takes the first two sentences of the plain text. When they fit in
    max_length they are returned with a trailing period; otherwise the
    plain text is cut to max_length - 3 characters and "..." appended.
    """
    if not content:
        return ""

    text = strip_markdown(content)
    if not text:
        return ""
    lead = ". ".join(_SENTENCE_BREAK.split(text)[:2])

    if len(lead) <= max_length:
        return lead if lead.endswith(".") else lead + "."

    return text[: max_length - 3].strip() + "..."


def count_words(content: str) -> int:
    if not content:
        return 0
    return len(strip_markdown(content).split())


def slugify(title: str, max_length: int = 80) -> str:
    """Lowercase, hyphen-separated slug (ASCII letters and digits only)."""
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    return slug

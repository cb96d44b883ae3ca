"""Ordered cleanup pipeline for generated article text.

Each pass is a pure function (text in, text out) registered under a name.
run_cleanup applies them in order and reports which passes changed the text,
so a caller can log or audit exactly what was removed.

Passes:
- preamble: "Here is the article:" style lead-ins
- meta_commentary: "Changes Made:" blocks and similar notes about the edit
- reasoning_tags: leaked <thinking>/<analysis> blocks
- malformed_images: markdown images without a usable URL
- placeholder_text: [insert ...], [TODO: ...], {placeholder} leftovers
- broken_punctuation: doubled punctuation and stray spacing
- blank_lines: runs of 3+ blank lines collapsed to one
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

CleanupPass = Callable[[str], str]


@dataclass
class CleanupResult:
    """Cleaned text plus the names of passes that modified it."""

    content: str
    applied: list[str] = field(default_factory=list)

    @property
    def was_modified(self) -> bool:
        return bool(self.applied)


_PREAMBLE_PATTERNS = [
    re.compile(
        r"^Here(?:'s| is) (?:the |an |a )?(?:enhanced |revised |updated |comprehensive )?"
        r"(?:version|content|blog post|article|draft).*?:[ \t]*\n?",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"^I(?:'ll| will) provide.*?:[ \t]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^I've (?:created|written|prepared).*?:[ \t]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Let me (?:provide|create|write|present).*?:[ \t]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Below is (?:the |an |a )?.*?:[ \t]*\n?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^The following is.*?:[ \t]*\n?", re.IGNORECASE | re.MULTILINE),
]

_META_COMMENTARY_PATTERNS = [
    re.compile(
        r"(?:Enhancements Made|Key Enhancements|Changes Made|Improvements Made|Summary of Changes):"
        r"[\s\S]*?(?=\n\n|\n#|\Z)",
        re.IGNORECASE,
    ),
    re.compile(r"Methodology Note:.*?(?=\n|\Z)", re.IGNORECASE),
    re.compile(r"\*Last updated:.*?\*", re.IGNORECASE),
]

_REASONING_TAG_PATTERNS = [
    re.compile(r"<(thinking|analysis)[^>]*>[\s\S]*?</\1>", re.IGNORECASE),
    re.compile(r"</?(?:thinking|analysis)[^>]*>", re.IGNORECASE),
]

_MALFORMED_IMAGE_PATTERNS = [
    re.compile(r"!\[[^\]]*\]\(\s*\)"),
    re.compile(r"^!(?:AI|Featured|Modern|Content|Image)\s+[^\n!]{5,50}$", re.IGNORECASE | re.MULTILINE),
]

_PLACEHOLDER_PATTERNS = [
    re.compile(r"\[insert [^\]]*\]", re.IGNORECASE),
    re.compile(r"\[TODO:[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[PLACEHOLDER\]", re.IGNORECASE),
    re.compile(r"\{[^{}]*placeholder[^{}]*\}", re.IGNORECASE),
]

_PUNCTUATION_FIXES = [
    (re.compile(r"[ \t]+,[ \t]+"), ", "),
    (re.compile(r"(?<!\.)\.[ \t]*\.(?!\.)"), "."),
    (re.compile(r",[ \t]*,"), ","),
]


def _remove_all(text: str, patterns: list[re.Pattern]) -> str:
    for pattern in patterns:
        text = pattern.sub("", text)
    return text


def strip_preamble(text: str) -> str:
    return _remove_all(text, _PREAMBLE_PATTERNS).lstrip()


def strip_meta_commentary(text: str) -> str:
    return _remove_all(text, _META_COMMENTARY_PATTERNS)


def strip_reasoning_tags(text: str) -> str:
    return _remove_all(text, _REASONING_TAG_PATTERNS)


def strip_malformed_images(text: str) -> str:
    return _remove_all(text, _MALFORMED_IMAGE_PATTERNS)


def strip_placeholder_text(text: str) -> str:
    return _remove_all(text, _PLACEHOLDER_PATTERNS)


def fix_broken_punctuation(text: str) -> str:
    # Ellipses ("...") are left alone; only doubled single periods collapse.
    for pattern, replacement in _PUNCTUATION_FIXES:
        text = pattern.sub(replacement, text)
    return text


def collapse_blank_lines(text: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", text).strip()


DEFAULT_PASSES: list[tuple[str, CleanupPass]] = [
    ("preamble", strip_preamble),
    ("meta_commentary", strip_meta_commentary),
    ("reasoning_tags", strip_reasoning_tags),
    ("malformed_images", strip_malformed_images),
    ("placeholder_text", strip_placeholder_text),
    ("broken_punctuation", fix_broken_punctuation),
    ("blank_lines", collapse_blank_lines),
]


def run_cleanup(
    text: str,
    passes: list[tuple[str, CleanupPass]] = DEFAULT_PASSES,
) -> CleanupResult:
    """Apply cleanup passes in order."""
    if not text:
        return CleanupResult(content="")

    applied = []
    for name, cleanup_pass in passes:
        cleaned = cleanup_pass(text)
        if cleaned != text:
            applied.append(name)
            text = cleaned

    if applied:
        logger.debug(f"Cleanup passes applied: {', '.join(applied)}")
    return CleanupResult(content=text, applied=applied)

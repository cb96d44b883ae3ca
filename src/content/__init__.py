"""Content utilities shared by the workflow engine and post-processors.

- assembly: picks the article body out of phase outputs
- cleanup: ordered, named passes that strip generation artifacts
- excerpt: excerpt extraction, slugs and word counts
"""

from src.content.assembly import assemble_content
from src.content.cleanup import CleanupResult, DEFAULT_PASSES, run_cleanup
from src.content.excerpt import count_words, extract_excerpt, slugify

__all__ = [
    "assemble_content",
    "CleanupResult",
    "DEFAULT_PASSES",
    "run_cleanup",
    "count_words",
    "extract_excerpt",
    "slugify",
]

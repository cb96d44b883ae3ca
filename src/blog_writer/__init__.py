"""Client for the external Blog Writer API (generation jobs, LLM chat, images, media)."""

from src.blog_writer.client import (
    BlogWriterAPIError,
    BlogWriterClient,
    ChatResult,
    GenerationJob,
    get_blog_writer_client,
)

__all__ = [
    "BlogWriterAPIError",
    "BlogWriterClient",
    "ChatResult",
    "GenerationJob",
    "get_blog_writer_client",
]

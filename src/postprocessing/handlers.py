"""Built-in post-processing handlers.

- image_generation: featured image through the Blog Writer API, optionally
  re-hosted on Cloudinary
- seo_enhancement: cleanup passes plus meta title/description
- interlinking: inserts planned internal links into the article
- publishing_prep: slug, read time and readiness flag
"""

import functools
import json
import logging
import math
import os
import re
from typing import Any, Optional

from src.blog_writer.client import BlogWriterClient, get_blog_writer_client
from src.content.assembly import assemble_content
from src.content.cleanup import run_cleanup
from src.content.excerpt import count_words, extract_excerpt, slugify
from src.postprocessing.registry import PostProcessingContext, PostProcessorHandler

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200
META_TITLE_LENGTH = 60
META_DESCRIPTION_LENGTH = 155
DEFAULT_MAX_LINKS = 5


def _keyword_list(outputs: dict[str, Any]) -> list[str]:
    keywords = outputs.get("keywords") or ""
    if isinstance(keywords, list):
        return [str(k) for k in keywords if k]
    return [k.strip() for k in str(keywords).split(",") if k.strip()]


def _cloudinary_credentials() -> Optional[dict]:
    cloud_name = os.environ.get("CLOUDINARY_CLOUD_NAME")
    api_key = os.environ.get("CLOUDINARY_API_KEY")
    api_secret = os.environ.get("CLOUDINARY_API_SECRET")
    if not (cloud_name and api_key and api_secret):
        return None
    return {"cloud_name": cloud_name, "api_key": api_key, "api_secret": api_secret}


async def generate_images(
    outputs: dict[str, Any],
    config: dict[str, Any],
    context: PostProcessingContext,
    client: Optional[BlogWriterClient] = None,
) -> dict[str, Any]:
    if not config.get("generate_featured", True):
        return {}

    client = client or get_blog_writer_client()
    topic = outputs.get("topic") or ""
    keywords = _keyword_list(outputs)[:3]
    keyword_text = f" featuring {', '.join(keywords)}" if keywords else ""
    prompt = (
        f"Professional blog post featured image: {topic}{keyword_text}, "
        f"high quality, modern design, clean background"
    )

    image = await client.generate_image(prompt, **config.get("image_options", {}))
    if image is None or not image.url:
        raise RuntimeError("Image generation returned no images")

    if config.get("upload_to_cloudinary"):
        credentials = _cloudinary_credentials()
        if credentials is None:
            logger.warning(
                f"[{context.workflow_id}] Cloudinary credentials not set, keeping generated image URL"
            )
        else:
            image = await client.upload_to_cloudinary(
                image.url,
                file_name=f"{slugify(topic) or context.workflow_id}-featured",
                folder=f"blog-images/{context.org_id or 'shared'}",
                credentials=credentials,
            )

    logger.info(f"[{context.workflow_id}] Featured image ready: {image.url}")
    return {
        "featured_image": {
            "url": image.url,
            "width": image.width,
            "height": image.height,
            "public_id": image.public_id,
            "alt": topic,
        }
    }


async def enhance_seo(
    outputs: dict[str, Any],
    config: dict[str, Any],
    context: PostProcessingContext,
) -> dict[str, Any]:
    content = assemble_content(outputs)
    if not content:
        return {}

    cleaned = run_cleanup(content)
    if cleaned.was_modified:
        logger.info(
            f"[{context.workflow_id}] SEO cleanup applied: {', '.join(cleaned.applied)}"
        )

    topic = str(outputs.get("topic") or "")
    meta_title = topic if len(topic) <= META_TITLE_LENGTH else topic[: META_TITLE_LENGTH - 3].rstrip() + "..."

    return {
        "assembled_content": cleaned.content,
        "meta_title": meta_title,
        "meta_description": extract_excerpt(cleaned.content, META_DESCRIPTION_LENGTH),
        "word_count_actual": count_words(cleaned.content),
        "cleanup_applied": cleaned.applied,
    }


def _link_opportunities(raw: Any) -> list[dict]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if isinstance(raw, dict):
        raw = raw.get("links") or raw.get("link_opportunities") or []
    if not isinstance(raw, list):
        return []

    links = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        anchor = item.get("anchor_text") or item.get("anchorText")
        if url and anchor:
            links.append({"url": str(url), "anchor_text": str(anchor)})
    return links


def insert_links(content: str, links: list[dict], max_links: int = DEFAULT_MAX_LINKS) -> tuple[str, int]:
    """Link the first plain occurrence of each anchor text.

    At most one new link per paragraph; headings and paragraphs that
    already contain a link are skipped.
    """
    paragraphs = content.split("\n\n")
    used: set[int] = set()
    inserted = 0

    for link in links:
        if inserted >= max_links:
            break
        pattern = re.compile(re.escape(link["anchor_text"]), re.IGNORECASE)
        for i, paragraph in enumerate(paragraphs):
            if i in used or paragraph.lstrip().startswith("#") or "](" in paragraph:
                continue
            match = pattern.search(paragraph)
            if match is None:
                continue
            paragraphs[i] = (
                paragraph[: match.start()]
                + f"[{match.group(0)}]({link['url']})"
                + paragraph[match.end():]
            )
            used.add(i)
            inserted += 1
            break

    return "\n\n".join(paragraphs), inserted


async def add_internal_links(
    outputs: dict[str, Any],
    config: dict[str, Any],
    context: PostProcessingContext,
) -> dict[str, Any]:
    content = assemble_content(outputs)
    links = _link_opportunities(outputs.get("link_opportunities"))
    if not content or not links:
        return {"links_inserted": 0}

    linked, inserted = insert_links(
        content, links, int(config.get("max_links", DEFAULT_MAX_LINKS))
    )
    logger.info(f"[{context.workflow_id}] Inserted {inserted} internal link(s)")
    return {"assembled_content": linked, "links_inserted": inserted}


async def prepare_for_publishing(
    outputs: dict[str, Any],
    config: dict[str, Any],
    context: PostProcessingContext,
) -> dict[str, Any]:
    content = assemble_content(outputs)
    words = count_words(content)
    title = outputs.get("meta_title") or outputs.get("topic") or ""
    return {
        "slug": slugify(str(title)),
        "read_time_minutes": max(1, math.ceil(words / WORDS_PER_MINUTE)),
        "word_count_actual": words,
        "publish_ready": bool(content.strip()),
    }


def build_default_handlers(
    client: Optional[BlogWriterClient] = None,
) -> dict[str, PostProcessorHandler]:
    """Built-in handlers keyed by step type."""
    return {
        "image_generation": functools.partial(generate_images, client=client),
        "seo_enhancement": enhance_seo,
        "interlinking": add_internal_links,
        "publishing_prep": prepare_for_publishing,
    }

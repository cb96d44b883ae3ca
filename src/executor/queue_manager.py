"""Lifecycle management for blog_generation_queue rows.

Handles:
- Queue item creation and lookup (org-scoped)
- Status transitions and progress updates (for client polling)
- Cancellation of queued or generating items
- Completion and failure recording, including external job callbacks

Every failure path ends in mark_failed(). Updates are last-writer-wins;
a cancelled row is never reopened by late progress or callbacks.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from src.content.excerpt import extract_excerpt
from src.executor.db import _json_dumps, _json_loads, execute, init_db
from src.executor.schemas import (
    CANCELLABLE_STATUSES,
    GENERATION_ERROR_LIMIT,
    QueueStatus,
    WorkflowCallback,
    new_queue_id,
)

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Base class for queue lifecycle errors."""


class QueueItemNotFoundError(QueueError):
    def __init__(self, queue_id: str):
        self.queue_id = queue_id
        super().__init__(f"Queue item not found: {queue_id}")


class QueueStateError(QueueError):
    """Requested transition is not allowed from the item's current status."""

    def __init__(self, queue_id: str, status: str, action: str):
        self.queue_id = queue_id
        self.status = status
        super().__init__(f"Cannot {action} queue item {queue_id} with status '{status}'")


def _now() -> str:
    return datetime.utcnow().isoformat()


def _normalize_row(row: dict) -> dict:
    """Parse JSON columns and convert Postgres datetimes to ISO strings."""
    for key in (
        "queued_at", "generation_started_at", "generation_completed_at", "updated_at",
    ):
        val = row.get(key)
        if val is not None and isinstance(val, datetime):
            row[key] = val.isoformat()
    keywords = row.get("keywords")
    row["keywords"] = _json_loads(keywords) if keywords else []
    if not isinstance(row["keywords"], list):
        row["keywords"] = []
    row["metadata"] = _json_loads(row.get("metadata")) or {}
    return row


def create_queue_item(
    org_id: str,
    topic: str,
    keywords: Optional[list[str]] = None,
    *,
    created_by: Optional[str] = None,
    priority: int = 5,
    quality_level: Optional[str] = None,
    custom_instructions: Optional[str] = None,
    metadata: Optional[dict] = None,
    queue_id: Optional[str] = None,
) -> dict:
    """Insert a new queued item and return it."""
    init_db()
    queue_id = queue_id or new_queue_id()
    now = _now()

    execute(
        """INSERT INTO blog_generation_queue
           (queue_id, org_id, created_by, topic, keywords, status, priority,
            quality_level, custom_instructions, progress_percentage, current_stage,
            metadata, queued_at, updated_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
        (queue_id, org_id, created_by, topic, _json_dumps(keywords or []),
         QueueStatus.QUEUED.value, priority, quality_level, custom_instructions,
         0, "queued", _json_dumps(metadata or {}), now, now),
    )
    logger.info(f"Created queue item {queue_id} for org {org_id}: {topic[:80]}")
    return get_queue_item(queue_id)


def get_queue_item(queue_id: str, org_id: Optional[str] = None) -> Optional[dict]:
    """Get a queue item by id, optionally scoped to an org."""
    init_db()
    if org_id is not None:
        row = execute(
            "SELECT * FROM blog_generation_queue WHERE queue_id = %s AND org_id = %s",
            (queue_id, org_id),
            fetch="one",
        )
    else:
        row = execute(
            "SELECT * FROM blog_generation_queue WHERE queue_id = %s",
            (queue_id,),
            fetch="one",
        )
    if row is None:
        return None
    return _normalize_row(row)


def list_queue_items(
    org_id: str,
    status: Optional[str] = None,
    limit: int = 20,
) -> list[dict]:
    """Most recent items for an org, newest first."""
    init_db()
    if status:
        rows = execute(
            """SELECT * FROM blog_generation_queue
               WHERE org_id = %s AND status = %s
               ORDER BY queued_at DESC LIMIT %s""",
            (org_id, status, limit),
            fetch="all",
        )
    else:
        rows = execute(
            """SELECT * FROM blog_generation_queue
               WHERE org_id = %s
               ORDER BY queued_at DESC LIMIT %s""",
            (org_id, limit),
            fetch="all",
        )
    return [_normalize_row(row) for row in rows]


def _current_status(queue_id: str) -> Optional[str]:
    row = execute(
        "SELECT status FROM blog_generation_queue WHERE queue_id = %s",
        (queue_id,),
        fetch="one",
    )
    return row["status"] if row else None


def is_cancelled(queue_id: str) -> bool:
    init_db()
    return _current_status(queue_id) == QueueStatus.CANCELLED.value


def mark_generating(queue_id: str, stage: str = "generating") -> None:
    """Move an item to generating. First call stamps generation_started_at."""
    init_db()
    now = _now()
    count = execute(
        """UPDATE blog_generation_queue
           SET status = %s, current_stage = %s,
               generation_started_at = COALESCE(generation_started_at, %s),
               updated_at = %s
           WHERE queue_id = %s AND status != %s""",
        (QueueStatus.GENERATING.value, stage, now, now, queue_id,
         QueueStatus.CANCELLED.value),
        fetch="rowcount",
    )
    if count:
        logger.info(f"Queue item {queue_id} status → generating")


def update_progress(queue_id: str, progress: int, stage: Optional[str] = None) -> None:
    """Write progress for client polling. Ignored once cancelled."""
    init_db()
    progress = max(0, min(100, int(progress)))
    execute(
        """UPDATE blog_generation_queue
           SET progress_percentage = %s,
               current_stage = COALESCE(%s, current_stage),
               updated_at = %s
           WHERE queue_id = %s AND status != %s""",
        (progress, stage, _now(), queue_id, QueueStatus.CANCELLED.value),
    )


def update_metadata(queue_id: str, updates: dict[str, Any]) -> dict:
    """Shallow-merge updates into the item's metadata and return the result."""
    init_db()
    item = get_queue_item(queue_id)
    if item is None:
        raise QueueItemNotFoundError(queue_id)
    merged = {**item["metadata"], **updates}
    execute(
        "UPDATE blog_generation_queue SET metadata = %s, updated_at = %s WHERE queue_id = %s",
        (_json_dumps(merged), _now(), queue_id),
    )
    return merged


def mark_failed(queue_id: str, error: str) -> None:
    """Single failure sink: status failed, truncated error, completion time."""
    init_db()
    now = _now()
    message = (error or "Unknown error")[:GENERATION_ERROR_LIMIT]
    count = execute(
        """UPDATE blog_generation_queue
           SET status = %s, generation_error = %s,
               generation_completed_at = %s, updated_at = %s
           WHERE queue_id = %s AND status != %s""",
        (QueueStatus.FAILED.value, message, now, now, queue_id,
         QueueStatus.CANCELLED.value),
        fetch="rowcount",
    )
    if count:
        logger.info(f"Queue item {queue_id} status → failed (error: {message[:200]})")
    else:
        logger.warning(f"Queue item {queue_id} not marked failed (missing or cancelled)")


def record_completion(
    queue_id: str,
    content: str,
    excerpt: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Store generated content and mark the item completed."""
    init_db()
    now = _now()
    count = execute(
        """UPDATE blog_generation_queue
           SET status = %s, generated_content = %s, generated_excerpt = %s,
               progress_percentage = %s, current_stage = %s,
               generation_completed_at = %s, updated_at = %s
           WHERE queue_id = %s AND status != %s""",
        (QueueStatus.COMPLETED.value, content, excerpt, 100, "completed",
         now, now, queue_id, QueueStatus.CANCELLED.value),
        fetch="rowcount",
    )
    if not count:
        logger.warning(f"Completion for queue item {queue_id} ignored (missing or cancelled)")
        return
    if metadata:
        update_metadata(queue_id, metadata)
    logger.info(f"Queue item {queue_id} status → completed ({len(content)} chars)")


def cancel_queue_item(queue_id: str, org_id: Optional[str] = None) -> dict:
    """Cancel a queued or generating item.

    Raises QueueItemNotFoundError for an unknown id and QueueStateError when
    the item is already completed, failed or cancelled (status unchanged).
    """
    item = get_queue_item(queue_id, org_id)
    if item is None:
        raise QueueItemNotFoundError(queue_id)

    status = QueueStatus(item["status"])
    if status not in CANCELLABLE_STATUSES:
        raise QueueStateError(queue_id, status.value, "cancel")

    now = _now()
    count = execute(
        """UPDATE blog_generation_queue
           SET status = %s, current_stage = %s,
               generation_completed_at = %s, updated_at = %s
           WHERE queue_id = %s AND status IN (%s, %s)""",
        (QueueStatus.CANCELLED.value, "cancelled", now, now, queue_id,
         QueueStatus.QUEUED.value, QueueStatus.GENERATING.value),
        fetch="rowcount",
    )
    if not count:
        # Finished (or was cancelled) between the read and the update
        current = _current_status(queue_id)
        if current is None:
            raise QueueItemNotFoundError(queue_id)
        raise QueueStateError(queue_id, current, "cancel")
    logger.info(f"Queue item {queue_id} status → cancelled (was {status.value})")
    return get_queue_item(queue_id)


def apply_callback(callback: WorkflowCallback) -> Optional[dict]:
    """Apply an external job's progress or completion report.

    Returns the updated item, or None when the item is unknown. Callbacks
    against a cancelled item are ignored and the item is returned unchanged.
    """
    item = get_queue_item(callback.queue_id)
    if item is None:
        return None
    if item["status"] == QueueStatus.CANCELLED.value:
        logger.info(f"Ignoring callback for cancelled queue item {callback.queue_id}")
        return item

    if callback.metadata or callback.job_id:
        updates = dict(callback.metadata)
        if callback.job_id:
            updates["backend_job_id"] = callback.job_id
        update_metadata(callback.queue_id, updates)

    if callback.status == QueueStatus.FAILED or callback.error:
        mark_failed(callback.queue_id, callback.error or "External generation job failed")
    elif callback.status == QueueStatus.COMPLETED:
        content = callback.content or ""
        excerpt = callback.excerpt or extract_excerpt(content)
        record_completion(callback.queue_id, content, excerpt)
    else:
        if callback.status == QueueStatus.GENERATING:
            mark_generating(callback.queue_id, callback.current_stage or "generating")
        if callback.progress_percentage is not None:
            update_progress(
                callback.queue_id, callback.progress_percentage, callback.current_stage,
            )

    return get_queue_item(callback.queue_id)


def mark_submitted(queue_id: str, metadata: Optional[dict] = None) -> None:
    """Record that the external job was accepted. Status stays queued."""
    init_db()
    now = _now()
    execute(
        """UPDATE blog_generation_queue
           SET current_stage = %s, generation_started_at = %s, updated_at = %s
           WHERE queue_id = %s AND status != %s""",
        ("submitted", now, now, queue_id, QueueStatus.CANCELLED.value),
    )
    if metadata:
        update_metadata(queue_id, metadata)
    logger.info(f"Queue item {queue_id} submitted to external generation")

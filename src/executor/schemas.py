"""Schemas for the blog generation queue and the workflow HTTP surface.

A queue row is the durable record of one generation request. Clients poll
it; the external job's callbacks and the in-process runner update it.
"""

import uuid
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from src.workflows.schemas import WorkflowInput

GENERATION_ERROR_LIMIT = 500


class QueueStatus(str, Enum):
    """Queue item lifecycle states."""
    QUEUED = "queued"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CANCELLABLE_STATUSES = {QueueStatus.QUEUED, QueueStatus.GENERATING}


def new_queue_id() -> str:
    return str(uuid.uuid4())


class QueueItem(BaseModel):
    """A blog_generation_queue row."""

    queue_id: str
    org_id: str
    created_by: Optional[str] = None
    topic: str
    keywords: list[str] = Field(default_factory=list)
    status: QueueStatus = QueueStatus.QUEUED
    priority: int = 5
    quality_level: Optional[str] = None
    custom_instructions: Optional[str] = None
    progress_percentage: int = 0
    current_stage: Optional[str] = None
    generated_content: Optional[str] = None
    generated_excerpt: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    queued_at: Optional[str] = None
    generation_started_at: Optional[str] = None
    generation_completed_at: Optional[str] = None
    generation_error: Optional[str] = None
    updated_at: Optional[str] = None


class MultiPhaseWorkflowRequest(BaseModel):
    """POST /v1/workflow/multi-phase body.

    phase="images_only" queues image generation for an existing draft
    (post_id and/or content) without generating content.
    """

    topic: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    target_audience: Optional[str] = None
    tone: Optional[str] = None
    word_count: int = Field(default=1500, gt=0)
    quality_level: str = "standard"
    content_type: Optional[str] = None
    platform: Optional[str] = None
    workflow_model_id: Optional[str] = None
    custom_instructions: Optional[str] = None
    site_context: Optional[str] = None
    priority: int = Field(default=5, ge=1, le=10)

    generate_featured_image: bool = True
    generate_content_images: bool = False
    image_style: str = "photographic"
    optimize_for_seo: bool = True
    max_internal_links: int = Field(default=5, ge=0)
    max_external_links: int = Field(default=3, ge=0)
    include_faq: bool = False

    phase: Literal["full", "images_only"] = "full"
    post_id: Optional[str] = None
    content: Optional[str] = None

    @field_validator("keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, v: Union[str, list, None]) -> list:
        if v is None:
            return []
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class WorkflowCallback(BaseModel):
    """Progress or completion report from the external generation job."""

    queue_id: str
    job_id: Optional[str] = None
    status: Optional[QueueStatus] = None
    progress_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    current_stage: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RunWorkflowRequest(BaseModel):
    """POST /v1/workflow/models/run body: run the in-process engine."""

    inputs: WorkflowInput
    model_id: Optional[str] = None
    stop_on_error: bool = False

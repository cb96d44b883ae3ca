"""Workflow API routes.

Endpoints:
    POST   /v1/workflow/multi-phase                  Queue a generation (async external job)
    GET    /v1/workflow/multi-phase?queue_id=|id=    One queue item, or the org's recent items
    DELETE /v1/workflow/multi-phase?queue_id=        Cancel a queued or generating item
    POST   /v1/workflow/multi-phase/callback         Progress/completion from the external job
    POST   /v1/workflow/multi-phase/refresh?queue_id= Pull the external job status into the queue
    GET    /v1/workflow/models                       Registered workflow models
    POST   /v1/workflow/models/run                   Run the in-process engine and wait

Generation requests are always deferred: the route persists a queue row,
submits the external job and returns immediately. Clients poll the queue row.
"""

import logging
import os
import secrets
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from src.api.deps import OrgContext, get_blog_writer, get_model_registry, require_org_context
from src.blog_writer.client import BlogWriterAPIError, BlogWriterClient
from src.executor import queue_manager
from src.executor.queue_manager import QueueItemNotFoundError, QueueStateError
from src.executor.schemas import (
    MultiPhaseWorkflowRequest,
    QueueItem,
    QueueStatus,
    RunWorkflowRequest,
    WorkflowCallback,
)
from src.executor.workflow_runner import run_image_job, run_workflow
from src.instructions.resolver import resolve_effective_instructions
from src.instructions.schemas import EffectiveInstructions
from src.workflows.errors import NoWorkflowModelError, WorkflowModelNotFoundError
from src.workflows.registry import WorkflowModelRegistry
from src.workflows.schemas import WorkflowEngineConfig, WorkflowModelSummary

logger = logging.getLogger(__name__)

WORKFLOW_CALLBACK_SECRET = os.environ.get("WORKFLOW_CALLBACK_SECRET", "")
WORKFLOW_CALLBACK_URL = os.environ.get("WORKFLOW_CALLBACK_URL", "")

# External job status -> queue status. None keeps the current status.
_JOB_STATUS_MAP: dict[str, Optional[QueueStatus]] = {
    "pending": None,
    "queued": None,
    "processing": QueueStatus.GENERATING,
    "running": QueueStatus.GENERATING,
    "generating": QueueStatus.GENERATING,
    "completed": QueueStatus.COMPLETED,
    "failed": QueueStatus.FAILED,
}

router = APIRouter(prefix="/workflow", tags=["workflow"])


def build_generation_payload(
    body: MultiPhaseWorkflowRequest,
    effective: EffectiveInstructions,
    queue_id: str,
    workflow_model_id: Optional[str] = None,
) -> dict[str, Any]:
    """Request body for the external enhanced-generation endpoint."""
    payload: dict[str, Any] = {
        "topic": (body.topic or "").strip(),
        "keywords": body.keywords,
        "target_audience": body.target_audience,
        "tone": body.tone or "professional",
        "word_count": body.word_count,
        "word_count_target": body.word_count,
        "quality_level": body.quality_level,
        "custom_instructions": effective.instructions or None,
        "content_type": body.content_type,
        "target_platform": body.platform,
        "workflow_model": workflow_model_id,
        "generate_featured_image": body.generate_featured_image,
        "generate_content_images": body.generate_content_images,
        "image_style": body.image_style,
        "optimize_for_seo": body.optimize_for_seo,
        "max_internal_links": body.max_internal_links,
        "max_external_links": body.max_external_links,
        "include_faq": body.include_faq,
        "site_context": body.site_context,
        "queue_id": queue_id,
    }
    if effective.system_prompt:
        payload["system_prompt"] = effective.system_prompt
    if WORKFLOW_CALLBACK_URL:
        payload["callback_url"] = WORKFLOW_CALLBACK_URL
    return {k: v for k, v in payload.items() if v is not None}


def _select_model_id(
    body: MultiPhaseWorkflowRequest,
    registry: WorkflowModelRegistry,
) -> str:
    """Resolve the workflow model for a request. 404 unknown id, 422 no match."""
    try:
        model = registry.select_model(
            quality_level=body.quality_level,
            content_type=body.content_type,
            platform=body.platform,
            model_id=body.workflow_model_id,
        )
    except WorkflowModelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoWorkflowModelError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return model.id


@router.post("/multi-phase")
async def create_multi_phase_workflow(
    body: MultiPhaseWorkflowRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: OrgContext = Depends(require_org_context),
    client: BlogWriterClient = Depends(get_blog_writer),
    registry: WorkflowModelRegistry = Depends(get_model_registry),
):
    """Queue a blog generation.

    phase="full" submits an async job to the Blog Writer API.
    phase="images_only" generates the featured image for an existing draft
    in the background and never calls content generation.
    """
    topic = (body.topic or "").strip()

    if body.phase == "images_only":
        if not body.post_id and not body.content:
            raise HTTPException(
                status_code=400,
                detail="post_id or content is required for images_only",
            )
        item = queue_manager.create_queue_item(
            ctx.org_id,
            topic or "Image generation",
            body.keywords,
            created_by=ctx.user_id,
            priority=body.priority,
            quality_level=body.quality_level,
            metadata={"phase": "images_only", "post_id": body.post_id},
        )
        request.state.queue_id = item["queue_id"]
        background_tasks.add_task(
            run_image_job,
            item["queue_id"],
            ctx.org_id,
            item["topic"],
            body.keywords,
            post_id=body.post_id,
            content=body.content,
            image_style=body.image_style,
            client=client,
        )
        logger.info(f"Queued images-only job {item['queue_id']} for org {ctx.org_id}")
        return {
            "success": True,
            "queue_id": item["queue_id"],
            "job_id": None,
            "status": QueueStatus.QUEUED.value,
            "message": "Image generation queued",
        }

    if not topic:
        raise HTTPException(status_code=400, detail="Topic is required")

    workflow_model_id = _select_model_id(body, registry)
    item = queue_manager.create_queue_item(
        ctx.org_id,
        topic,
        body.keywords,
        created_by=ctx.user_id,
        priority=body.priority,
        quality_level=body.quality_level,
        custom_instructions=body.custom_instructions,
        metadata={
            "phase": "full",
            "quality_level": body.quality_level,
            "content_type": body.content_type,
            "platform": body.platform,
            "workflow_model_id": workflow_model_id,
        },
    )
    queue_id = item["queue_id"]
    request.state.queue_id = queue_id

    effective = await resolve_effective_instructions(
        ctx.org_id,
        workflow_model_id=workflow_model_id,
        platform=body.platform,
        content_type=body.content_type,
        per_request_instructions=body.custom_instructions,
    )
    payload = build_generation_payload(body, effective, queue_id, workflow_model_id)

    try:
        job = await client.create_generation_job(payload)
    except BlogWriterAPIError as e:
        queue_manager.mark_failed(queue_id, str(e))
        logger.error(f"Blog Writer submission failed for queue item {queue_id}: {e}")
        return JSONResponse(
            status_code=502,
            content={"error": str(e), "queue_id": queue_id, "status": QueueStatus.FAILED.value},
        )

    if not job.job_id:
        error = "Blog Writer API accepted the request without returning a job_id"
        queue_manager.mark_failed(queue_id, error)
        return JSONResponse(
            status_code=502,
            content={"error": error, "queue_id": queue_id, "status": QueueStatus.FAILED.value},
        )

    queue_manager.mark_submitted(queue_id, {
        "backend_job_id": job.job_id,
        "estimated_completion_time": job.estimated_completion_time,
        "async_mode": True,
        "site_context_used": bool(body.site_context),
        "instruction_sources": [s.model_dump(exclude_none=True) for s in effective.sources],
    })

    return {
        "success": True,
        "queue_id": queue_id,
        "job_id": job.job_id,
        "status": job.status,
        "message": job.message,
    }


@router.get("/multi-phase")
async def get_multi_phase_workflow(
    queue_id: Optional[str] = Query(None),
    id: Optional[str] = Query(None, description="Alias for queue_id"),
    status: Optional[QueueStatus] = Query(None, description="Filter the listing by status"),
    limit: int = Query(20, ge=1, le=100),
    ctx: OrgContext = Depends(require_org_context),
):
    """Fetch one queue item, or list the org's recent items."""
    item_id = queue_id or id
    if item_id:
        item = queue_manager.get_queue_item(item_id, ctx.org_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"Queue item not found: {item_id}")
        return {"success": True, "item": QueueItem.model_validate(item)}

    rows = queue_manager.list_queue_items(
        ctx.org_id,
        status=status.value if status else None,
        limit=limit,
    )
    items = [QueueItem.model_validate(row) for row in rows]
    return {"items": items, "count": len(items)}


@router.delete("/multi-phase")
async def cancel_multi_phase_workflow(
    queue_id: Optional[str] = Query(None),
    id: Optional[str] = Query(None, description="Alias for queue_id"),
    ctx: OrgContext = Depends(require_org_context),
):
    """Cancel a queued or generating item.

    Does not stop an external job already in flight; later callbacks for
    the item are ignored.
    """
    item_id = queue_id or id
    if not item_id:
        raise HTTPException(status_code=400, detail="queue_id is required")

    try:
        item = queue_manager.cancel_queue_item(item_id, ctx.org_id)
    except QueueItemNotFoundError:
        raise HTTPException(status_code=404, detail=f"Queue item not found: {item_id}")
    except QueueStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "success": True,
        "queue_id": item_id,
        "status": item["status"],
        "message": "Queue item cancelled",
    }


@router.post("/multi-phase/callback")
async def workflow_callback(
    callback: WorkflowCallback,
    x_callback_secret: Optional[str] = Header(default=None),
):
    """Receive progress or completion from the external generation job."""
    if WORKFLOW_CALLBACK_SECRET and not secrets.compare_digest(
        x_callback_secret or "", WORKFLOW_CALLBACK_SECRET
    ):
        raise HTTPException(status_code=403, detail="Invalid callback secret")

    item = queue_manager.apply_callback(callback)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Queue item not found: {callback.queue_id}")
    return {"success": True, "queue_id": callback.queue_id, "status": item["status"]}


@router.post("/multi-phase/refresh")
async def refresh_multi_phase_workflow(
    queue_id: str = Query(...),
    ctx: OrgContext = Depends(require_org_context),
    client: BlogWriterClient = Depends(get_blog_writer),
):
    """Poll the external job once and apply its status to the queue item."""
    item = queue_manager.get_queue_item(queue_id, ctx.org_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Queue item not found: {queue_id}")

    job_id = item["metadata"].get("backend_job_id")
    if not job_id:
        raise HTTPException(status_code=409, detail="Queue item has no external job")

    try:
        job = await client.get_job(job_id)
    except BlogWriterAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))

    job_status = str(job.get("status") or "").lower()
    result = job.get("result") or {}
    callback = WorkflowCallback(
        queue_id=queue_id,
        job_id=job_id,
        status=_JOB_STATUS_MAP.get(job_status),
        progress_percentage=job.get("progress_percentage"),
        current_stage=job.get("current_stage"),
        content=result.get("content"),
        excerpt=result.get("excerpt"),
        error=job.get("error_message") if job_status == "failed" else None,
    )
    item = queue_manager.apply_callback(callback)
    return {"success": True, "item": QueueItem.model_validate(item)}


@router.get("/models", response_model=list[WorkflowModelSummary])
async def list_workflow_models(
    registry: WorkflowModelRegistry = Depends(get_model_registry),
):
    """List registered workflow models."""
    return registry.list_all()


@router.post("/models/run")
async def run_workflow_model(
    body: RunWorkflowRequest,
    ctx: OrgContext = Depends(require_org_context),
    registry: WorkflowModelRegistry = Depends(get_model_registry),
):
    """Run a workflow in-process and return its WorkflowResult.

    Blocks for the whole run; intended for previews and testing.
    """
    inputs = body.inputs.model_copy(update={"org_id": ctx.org_id, "user_id": ctx.user_id})
    try:
        result = await run_workflow(
            inputs,
            model_id=body.model_id,
            registry=registry,
            config=WorkflowEngineConfig(stop_on_error=body.stop_on_error),
        )
    except WorkflowModelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoWorkflowModelError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return result.model_dump()

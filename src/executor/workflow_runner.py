"""Top-level in-process workflow execution.

The workflow runner is the entry point for running a workflow model
against a request. It:

1. Selects the workflow model (explicit id or quality/content/platform)
2. Resolves the org's effective instructions
3. Injects custom and system instructions into the inputs
4. Runs the engine
5. Mirrors status, progress and the result onto the queue row, if any

Failures end in queue_manager.mark_failed(). The engine owns retries.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from src.blog_writer.client import BlogWriterClient
from src.content.excerpt import extract_excerpt
from src.executor import queue_manager
from src.instructions.resolver import resolve_effective_instructions
from src.instructions.schemas import EffectiveInstructions
from src.postprocessing.handlers import generate_images
from src.postprocessing.registry import PostProcessingContext
from src.workflows.engine import WorkflowEngine
from src.workflows.registry import (
    DEFAULT_QUALITY_LEVEL,
    WorkflowModelRegistry,
    get_workflow_model_registry,
)
from src.workflows.schemas import (
    WorkflowEngineConfig,
    WorkflowInput,
    WorkflowModel,
    WorkflowResult,
)

logger = logging.getLogger(__name__)

InstructionResolver = Callable[..., Awaitable[EffectiveInstructions]]


def select_workflow_model(
    inputs: WorkflowInput,
    model_id: Optional[str] = None,
    registry: Optional[WorkflowModelRegistry] = None,
) -> WorkflowModel:
    """Pick the workflow model for a request. Raises WorkflowError subclasses."""
    registry = registry or get_workflow_model_registry()
    return registry.select_model(
        quality_level=inputs.quality_level or DEFAULT_QUALITY_LEVEL,
        content_type=inputs.content_type,
        platform=inputs.platform,
        model_id=model_id,
    )


async def run_workflow(
    inputs: WorkflowInput,
    *,
    queue_id: Optional[str] = None,
    model_id: Optional[str] = None,
    registry: Optional[WorkflowModelRegistry] = None,
    config: Optional[WorkflowEngineConfig] = None,
    resolver: InstructionResolver = resolve_effective_instructions,
    engine_factory: Callable[..., WorkflowEngine] = WorkflowEngine,
) -> WorkflowResult:
    """Run one workflow to completion.

    Model selection errors are raised after the queue row (if any) is marked
    failed. Engine failures come back as WorkflowResult(success=False).
    """
    try:
        model = select_workflow_model(inputs, model_id, registry)
    except Exception as e:
        if queue_id:
            queue_manager.mark_failed(queue_id, str(e))
        raise

    effective = await resolver(
        inputs.org_id,
        workflow_model_id=model.id,
        platform=inputs.platform,
        content_type=inputs.content_type,
        per_request_instructions=inputs.custom_instructions,
    )
    prepared = inputs.model_copy(update={
        "custom_instructions": effective.instructions,
        "system_instructions": effective.system_prompt or "",
    })

    config = config or WorkflowEngineConfig()
    caller_progress = config.on_progress

    def on_progress(phase_id: str, progress: int, message: str) -> None:
        if queue_id:
            queue_manager.update_progress(queue_id, progress, phase_id)
        if caller_progress is not None:
            caller_progress(phase_id, progress, message)

    engine_config = WorkflowEngineConfig(
        on_progress=on_progress,
        stop_on_error=config.stop_on_error,
    )

    if queue_id:
        queue_manager.mark_generating(queue_id, stage=model.phases[0].id)
        queue_manager.update_metadata(queue_id, {"workflow_model_id": model.id})

    engine = engine_factory(model, prepared, engine_config)
    logger.info(
        f"Running workflow model '{model.id}' for org {inputs.org_id}"
        + (f" (queue {queue_id})" if queue_id else "")
    )
    result = await engine.execute()
    result.metadata["instruction_sources"] = [
        s.model_dump(exclude_none=True) for s in effective.sources
    ]

    if queue_id:
        if result.success:
            queue_manager.record_completion(
                queue_id,
                result.content,
                result.excerpt,
                metadata={
                    "workflow_id": result.metadata.get("workflow_id"),
                    "duration_ms": result.metadata.get("duration_ms"),
                },
            )
        else:
            queue_manager.mark_failed(queue_id, result.error or "Workflow failed")

    return result


async def run_image_job(
    queue_id: str,
    org_id: str,
    topic: str,
    keywords: Optional[list[str]] = None,
    *,
    post_id: Optional[str] = None,
    content: Optional[str] = None,
    image_style: str = "photographic",
    client: Optional[BlogWriterClient] = None,
) -> dict[str, Any]:
    """Generate the featured image for an existing draft and record it.

    Runs only the image_generation step; content generation is never called.
    """
    queue_manager.mark_generating(queue_id, stage="image_generation")
    outputs = {"topic": topic, "keywords": ", ".join(keywords or [])}
    context = PostProcessingContext(
        workflow_id=queue_id,
        model_id="images_only",
        step_id="image_generation",
        org_id=org_id,
    )
    config = {
        "generate_featured": True,
        "upload_to_cloudinary": True,
        "image_options": {"style": image_style},
    }

    try:
        result = await generate_images(outputs, config, context, client=client)
    except Exception as e:
        logger.error(f"Image job for queue item {queue_id} failed: {e}", exc_info=True)
        queue_manager.mark_failed(queue_id, str(e))
        return {}

    queue_manager.record_completion(
        queue_id,
        content or "",
        extract_excerpt(content or "") or None,
        metadata={**result, "post_id": post_id},
    )
    return result

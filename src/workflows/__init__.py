"""Workflow models for multi-phase blog generation.

A workflow model is a versioned, ordered list of LLM phases plus optional
post-processing steps. Phases pass data forward through a shared
phase_outputs map: each phase declares the keys it requires and the keys
it writes.

The engine lives in src.workflows.engine and is imported from there.
"""

from .errors import (
    MissingInputsError,
    NoWorkflowModelError,
    TemplateRenderError,
    WorkflowError,
    WorkflowModelNotFoundError,
)
from .registry import WorkflowModelRegistry, get_workflow_model_registry
from .schemas import (
    PostProcessingStep,
    StepType,
    WorkflowInput,
    WorkflowModel,
    WorkflowPhase,
    WorkflowResult,
    WorkflowState,
    WorkflowStatus,
)

__all__ = [
    "MissingInputsError",
    "NoWorkflowModelError",
    "PostProcessingStep",
    "StepType",
    "TemplateRenderError",
    "WorkflowError",
    "WorkflowInput",
    "WorkflowModel",
    "WorkflowModelNotFoundError",
    "WorkflowModelRegistry",
    "WorkflowPhase",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStatus",
    "get_workflow_model_registry",
]

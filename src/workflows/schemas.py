"""Workflow schemas for multi-phase blog generation.

A WorkflowModel is an immutable, versioned recipe: an ordered list of LLM
phases followed by optional post-processing steps. A WorkflowEngine runs one
model against one WorkflowInput, tracking progress in a WorkflowState and
producing a WorkflowResult.

Phases communicate only through the shared phase_outputs map: each phase
declares the keys it needs (required_inputs) and the keys it produces
(outputs). Output and template keys are snake_case.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StepType(str, Enum):
    """Kinds of post-processing step."""

    IMAGE_GENERATION = "image_generation"
    SEO_ENHANCEMENT = "seo_enhancement"
    INTERLINKING = "interlinking"
    PUBLISHING_PREP = "publishing_prep"
    CUSTOM = "custom"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowPhase(BaseModel):
    """A single LLM generation step within a workflow model."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Phase identifier, unique within the model")
    name: str = Field(..., description="Human-readable phase name")
    description: str = Field(default="", description="What this phase produces")
    model: str = Field(
        ...,
        description="LLM identifier, e.g. 'gpt-4o' or 'anthropic/claude-sonnet-4-5'",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    prompt_template: str = Field(..., description="User prompt with {{key}} placeholders")
    system_prompt: Optional[str] = Field(
        default=None, description="Optional system prompt, also templated"
    )
    required_inputs: list[str] = Field(
        default_factory=list,
        description="Keys that must already exist in phase_outputs",
    )
    outputs: list[str] = Field(
        default_factory=list,
        description="Keys this phase writes into phase_outputs",
    )
    retry_on_failure: bool = Field(default=False)
    max_retries: Optional[int] = Field(
        default=None,
        ge=1,
        description="Total attempts when retry_on_failure is set (engine default 3)",
    )
    timeout: Optional[int] = Field(
        default=None, gt=0, description="Per-attempt timeout in milliseconds"
    )
    strict_template: bool = Field(
        default=False,
        description="Fail the attempt if any placeholder is left unresolved",
    )

    @model_validator(mode="after")
    def validate_outputs(self) -> "WorkflowPhase":
        if not self.outputs:
            raise ValueError(f"Phase '{self.id}' must declare at least one output")
        return self


class PostProcessingStep(BaseModel):
    """A step run after all phases succeed.

    Handlers are resolved by name through the post-processor registry.
    For type 'custom', config['handler'] names the registered handler.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: StepType
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def handler_name(self) -> str:
        if self.type == StepType.CUSTOM:
            return str(self.config.get("handler", ""))
        return self.type.value

    @model_validator(mode="after")
    def validate_custom_handler(self) -> "PostProcessingStep":
        if self.type == StepType.CUSTOM:
            handler = self.config.get("handler")
            if not isinstance(handler, str) or not handler:
                raise ValueError(
                    f"Custom step '{self.id}' needs config.handler set to a registered handler name"
                )
        return self


class Range(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int = Field(..., ge=0)
    max: int = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "Range":
        if self.min > self.max:
            raise ValueError(f"Range min ({self.min}) exceeds max ({self.max})")
        return self


class LinkDistributionRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    internal_links: Optional[Range] = None
    external_links: Optional[Range] = None
    product_links: Optional[Range] = None
    max_links_per_section: Optional[int] = None
    no_consecutive_links: bool = False


class StructureRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_h2_sections: Optional[int] = None
    max_h2_sections: Optional[int] = None
    paragraphs_per_section: Optional[Range] = None
    introduction_paragraphs: Optional[Range] = None
    conclusion_word_count: Optional[Range] = None


class ContentRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_absolute_urls: bool = False
    include_comparison_chart: bool = False
    actionable_takeaways: Optional[Range] = None


class WorkflowRules(BaseModel):
    """Editorial constraints attached to a model (informational for prompts)."""

    model_config = ConfigDict(frozen=True)

    link_distribution: Optional[LinkDistributionRules] = None
    structure: Optional[StructureRules] = None
    content: Optional[ContentRules] = None


class WorkflowModel(BaseModel):
    """An immutable, versioned multi-phase workflow definition."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique model identifier")
    name: str
    description: str = ""
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+")
    quality_levels: list[str] = Field(default_factory=list)
    content_types: Optional[list[str]] = Field(
        default=None,
        description="Content types this model is specialised for (None = any)",
    )
    platforms: Optional[list[str]] = Field(
        default=None,
        description="Publishing platforms this model is limited to (None = any)",
    )
    phases: list[WorkflowPhase] = Field(..., min_length=1)
    post_processing: list[PostProcessingStep] = Field(default_factory=list)
    rules: WorkflowRules = Field(default_factory=WorkflowRules)
    author: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def validate_unique_phase_ids(self) -> "WorkflowModel":
        seen = set()
        for phase in self.phases:
            if phase.id in seen:
                raise ValueError(f"Duplicate phase id '{phase.id}' in model '{self.id}'")
            seen.add(phase.id)
        return self

    @property
    def has_post_processing(self) -> bool:
        return any(step.enabled for step in self.post_processing)


class WorkflowModelSummary(BaseModel):
    """Lightweight listing entry for a workflow model."""

    id: str
    name: str
    description: str
    version: str
    quality_levels: list[str]
    content_types: Optional[list[str]] = None
    platforms: Optional[list[str]] = None
    phase_count: int
    phases: list[str]


class WorkflowInput(BaseModel):
    """Caller-supplied input for one workflow execution.

    Unknown keys are kept and passed through to phase_outputs.
    """

    model_config = ConfigDict(extra="allow")

    topic: str
    keywords: list[str] = Field(default_factory=list)
    primary_keyword: Optional[str] = None
    secondary_keywords: Optional[list[str]] = None
    target_audience: Optional[str] = None
    tone: Optional[str] = None
    word_count: Optional[int] = Field(default=None, gt=0)
    article_goal: Optional[str] = None
    site_context: Optional[str] = None
    org_id: Optional[str] = None
    user_id: Optional[str] = None
    quality_level: Optional[str] = None
    content_type: Optional[str] = None
    platform: Optional[str] = None
    custom_instructions: Optional[str] = None
    system_instructions: Optional[str] = None

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("topic must not be blank")
        return v.strip()


class WorkflowState(BaseModel):
    """Mutable per-execution state. Only the engine writes to it."""

    workflow_id: str
    model_id: str
    current_phase: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    status: WorkflowStatus = WorkflowStatus.PENDING
    phase_outputs: dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None


class WorkflowResult(BaseModel):
    success: bool
    state: WorkflowState
    content: str = ""
    excerpt: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


ProgressCallback = Callable[[str, int, str], None]


@dataclass
class WorkflowEngineConfig:
    """Engine options.

    on_progress: called as (phase_id, progress, message) on every update.
    stop_on_error: make post-processing failures fatal.
    """

    on_progress: Optional[ProgressCallback] = None
    stop_on_error: bool = False

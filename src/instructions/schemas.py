"""Schemas for organization instruction sets and resolved instructions."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

WORKFLOW_WILDCARD = "all"
PLATFORM_WILDCARD = "any"
CONTENT_TYPE_WILDCARD = "any"


class InstructionScope(BaseModel):
    """Where an instruction set applies. Missing values act as wildcards."""

    workflow: Optional[str] = Field(
        default=WORKFLOW_WILDCARD,
        description="Workflow model id, or 'all'",
    )
    platform: Optional[str] = Field(
        default=PLATFORM_WILDCARD,
        description="Publishing platform (webflow, wordpress, shopify...), or 'any'",
    )
    content_type: Optional[str] = Field(
        default=CONTENT_TYPE_WILDCARD,
        description="Content type (comparison, review...), or 'any'",
    )


class WorkflowInstructionSet(BaseModel):
    """A row of workflow_instruction_sets."""

    instruction_set_id: str
    org_id: str
    enabled: bool = True
    scope: InstructionScope = Field(default_factory=InstructionScope)
    system_prompt: Optional[str] = None
    instructions: str = ""
    priority: int = 0
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class InstructionSource(BaseModel):
    type: Literal["org_instruction_set", "per_request"]
    id: Optional[str] = None
    priority: Optional[int] = None


class EffectiveInstructions(BaseModel):
    """Instructions to inject into a workflow run."""

    system_prompt: Optional[str] = None
    instructions: str = ""
    sources: list[InstructionSource] = Field(default_factory=list)

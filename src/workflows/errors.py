"""Exceptions raised by workflow selection, templating and execution."""


class WorkflowError(Exception):
    """Base class for workflow errors."""


class MissingInputsError(WorkflowError):
    """A phase was reached before its required inputs were produced."""

    def __init__(self, phase_id: str, missing: list[str]):
        self.phase_id = phase_id
        self.missing = missing
        super().__init__(
            f"Missing required inputs for phase {phase_id}: {', '.join(missing)}"
        )


class TemplateRenderError(WorkflowError):
    """A strict template still had placeholders after rendering."""

    def __init__(self, unresolved: list[str]):
        self.unresolved = unresolved
        super().__init__(
            f"Unresolved template placeholders: {', '.join(unresolved)}"
        )


class WorkflowModelNotFoundError(WorkflowError):
    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Workflow model not found: {model_id}")


class NoWorkflowModelError(WorkflowError):
    """No registered model matches the requested selection parameters."""

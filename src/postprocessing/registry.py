"""Named post-processing handlers.

Post-processing steps never carry code. A step names its handler (the step
type for built-in steps, config['handler'] for custom ones) and the registry
resolves that name to an async callable:

    async def handler(outputs: dict, config: dict, context: PostProcessingContext) -> dict

The returned dict is merged into the workflow's phase outputs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from src.workflows.schemas import PostProcessingStep

logger = logging.getLogger(__name__)


@dataclass
class PostProcessingContext:
    """What a handler knows about the run it belongs to."""

    workflow_id: str
    model_id: str
    step_id: str
    org_id: Optional[str] = None


PostProcessorHandler = Callable[
    [dict[str, Any], dict[str, Any], PostProcessingContext], Awaitable[dict[str, Any]]
]


class UnknownPostProcessorError(LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No post-processor registered under '{name}'")


class PostProcessorRegistry:
    """Lookup table from handler name to handler."""

    def __init__(self, handlers: Optional[dict[str, PostProcessorHandler]] = None):
        self._handlers: dict[str, PostProcessorHandler] = dict(handlers or {})

    def register(self, name: str, handler: PostProcessorHandler) -> None:
        if name in self._handlers:
            logger.warning(f"Replacing post-processor: {name}")
        self._handlers[name] = handler

    def get(self, name: str) -> PostProcessorHandler:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownPostProcessorError(name)
        return handler

    def names(self) -> list[str]:
        return list(self._handlers.keys())

    async def run(
        self,
        step: PostProcessingStep,
        outputs: dict[str, Any],
        context: PostProcessingContext,
    ) -> dict[str, Any]:
        """Run the handler a step names and return its result dict."""
        handler = self.get(step.handler_name)
        result = await handler(dict(outputs), dict(step.config), context)
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise TypeError(
                f"Post-processor '{step.handler_name}' returned "
                f"{type(result).__name__}, expected dict"
            )
        return result


# Global registry instance
_registry: Optional[PostProcessorRegistry] = None


def get_post_processor_registry() -> PostProcessorRegistry:
    """Get the global registry, pre-loaded with the built-in handlers."""
    global _registry
    if _registry is None:
        from src.postprocessing.handlers import build_default_handlers

        _registry = PostProcessorRegistry(build_default_handlers())
        logger.info(f"Post-processors registered: {_registry.names()}")
    return _registry

"""Post-processing steps run after a workflow's phases succeed.

Steps are resolved by handler name through PostProcessorRegistry, so step
lists stay plain data (JSON-serializable, storable, auditable).
"""

from src.postprocessing.registry import (
    PostProcessingContext,
    PostProcessorRegistry,
    UnknownPostProcessorError,
    get_post_processor_registry,
)

__all__ = [
    "PostProcessingContext",
    "PostProcessorRegistry",
    "UnknownPostProcessorError",
    "get_post_processor_registry",
]

"""Blog Workflow Service.

Queues multi-phase blog generations and runs declarative workflow models:
- Workflow models (phase recipes, registry, selection)
- Workflow engine (phases, retries, progress, post-processing)
- Organization instruction sets merged into prompts
"""

__version__ = "0.1.0"

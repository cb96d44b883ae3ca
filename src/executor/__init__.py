"""Execution layer for blog generation workflows.

Architecture (bottom-up):
- db: Postgres/SQLite access for the queue and org data
- phase_runner: Renders one phase's prompts and makes a single LLM call
- queue_manager: blog_generation_queue lifecycle, progress, cancellation
- workflow_runner: Model selection, instruction injection, engine run,
  queue mirroring
"""

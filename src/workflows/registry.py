"""Workflow model registry: loading, registration and selection."""

import json
import logging
from pathlib import Path
from typing import Optional

import yaml

from .errors import NoWorkflowModelError, WorkflowModelNotFoundError
from .schemas import WorkflowModel, WorkflowModelSummary

logger = logging.getLogger(__name__)

# Built-in definitions load first, in this order; any other definition
# files follow alphabetically. Registration order breaks selection ties.
BUILTIN_MODEL_ORDER = ["standard", "premium", "comparison"]

DEFINITION_SUFFIXES = (".json", ".yaml", ".yml")

DEFAULT_QUALITY_LEVEL = "standard"


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class WorkflowModelRegistry:
    """Registry for workflow models.

    Loads models from JSON or YAML files in the definitions directory and
    accepts models registered at runtime. Registered models are immutable.
    """

    def __init__(self, definitions_dir: Optional[Path] = None):
        self.definitions_dir = definitions_dir or (
            Path(__file__).parent / "definitions"
        )
        self._models: dict[str, WorkflowModel] = {}
        self._loaded = False

    def _definition_files(self) -> list[Path]:
        files = {
            f.stem: f
            for f in sorted(self.definitions_dir.iterdir())
            if f.suffix in DEFINITION_SUFFIXES
        }
        ordered = [files.pop(name) for name in BUILTIN_MODEL_ORDER if name in files]
        return ordered + [files[name] for name in sorted(files)]

    def load(self) -> None:
        """Load all workflow model definitions (JSON or YAML)."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            self._loaded = True
            return

        for definition_file in self._definition_files():
            try:
                with open(definition_file, "r") as f:
                    if definition_file.suffix == ".json":
                        data = json.load(f)
                    else:
                        data = yaml.safe_load(f)
                model = WorkflowModel.model_validate(data)
                self._models[model.id] = model
            except Exception as e:
                logger.error(f"Failed to load workflow model {definition_file}: {e}")

        self._loaded = True
        logger.debug(f"Loaded workflow models: {list(self._models)}")

    def register(self, model: WorkflowModel) -> None:
        """Register (or replace) a workflow model at runtime.

        Replacing keeps the original registration position.
        """
        self.load()
        if not model.phases:
            raise ValueError(f"Workflow model '{model.id}' has no phases")
        if model.id in self._models:
            logger.warning(f"Replacing registered workflow model: {model.id}")
        self._models[model.id] = model
        logger.info(f"Registered workflow model: {model.id} v{model.version}")

    def unregister(self, model_id: str) -> bool:
        self.load()
        if model_id not in self._models:
            return False
        del self._models[model_id]
        logger.info(f"Unregistered workflow model: {model_id}")
        return True

    def get(self, model_id: str) -> Optional[WorkflowModel]:
        """Get a workflow model by id."""
        self.load()
        return self._models.get(model_id)

    def list_all(self) -> list[WorkflowModelSummary]:
        """List all workflow model summaries in registration order."""
        self.load()
        return [self._summarize(m) for m in self._models.values()]

    def list_by_quality_level(self, quality_level: str) -> list[WorkflowModelSummary]:
        self.load()
        level = _norm(quality_level)
        return [
            self._summarize(m)
            for m in self._models.values()
            if level in {_norm(q) for q in m.quality_levels}
        ]

    def list_by_content_type(self, content_type: str) -> list[WorkflowModelSummary]:
        self.load()
        ctype = _norm(content_type)
        return [
            self._summarize(m)
            for m in self._models.values()
            if m.content_types and ctype in {_norm(c) for c in m.content_types}
        ]

    def get_model_ids(self) -> list[str]:
        self.load()
        return list(self._models.keys())

    def count(self) -> int:
        """Get total number of workflow models."""
        self.load()
        return len(self._models)

    def get_stats(self) -> dict:
        self.load()
        quality_levels = sorted({q for m in self._models.values() for q in m.quality_levels})
        content_types = sorted(
            {c for m in self._models.values() for c in (m.content_types or [])}
        )
        return {
            "models_loaded": len(self._models),
            "quality_levels": quality_levels,
            "content_types": content_types,
            "total_phases": sum(len(m.phases) for m in self._models.values()),
        }

    def select_model(
        self,
        quality_level: Optional[str] = None,
        content_type: Optional[str] = None,
        platform: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> WorkflowModel:
        """Choose the workflow model for a request.

        An explicit model_id wins outright. Otherwise a model is a candidate
        when its platform gate passes and it either lists the requested
        content type or (declaring no content types) lists the quality level.
        A request that names no platform passes every platform gate.
        Candidates score +2 for an explicit content-type match and +1 for an
        explicit platform match; the highest score wins, ties going to the
        earliest registered model.

        Raises:
            WorkflowModelNotFoundError: model_id given but not registered
            NoWorkflowModelError: no candidate matches
        """
        self.load()

        if model_id:
            model = self._models.get(model_id)
            if model is None:
                raise WorkflowModelNotFoundError(model_id)
            return model

        level = _norm(quality_level) or DEFAULT_QUALITY_LEVEL
        ctype = _norm(content_type)
        plat = _norm(platform)

        best: Optional[WorkflowModel] = None
        best_score = -1
        for model in self._models.values():
            score = 0

            # Platform gate applies only when the request names a platform
            if model.platforms and plat:
                if plat not in {_norm(p) for p in model.platforms}:
                    continue
                score += 1

            if model.content_types:
                if ctype not in {_norm(c) for c in model.content_types}:
                    continue
                score += 2
            elif level not in {_norm(q) for q in model.quality_levels}:
                continue

            if score > best_score:
                best, best_score = model, score

        if best is None:
            raise NoWorkflowModelError(
                f"No workflow model for these parameters "
                f"(quality_level={quality_level!r}, content_type={content_type!r}, "
                f"platform={platform!r})"
            )

        logger.info(
            f"Selected workflow model '{best.id}' "
            f"(quality_level={level}, content_type={ctype or '-'}, platform={plat or '-'})"
        )
        return best

    def reload(self) -> None:
        """Force reload all definitions. Runtime registrations are dropped."""
        self._loaded = False
        self._models.clear()
        self.load()

    @staticmethod
    def _summarize(model: WorkflowModel) -> WorkflowModelSummary:
        return WorkflowModelSummary(
            id=model.id,
            name=model.name,
            description=model.description,
            version=model.version,
            quality_levels=list(model.quality_levels),
            content_types=list(model.content_types) if model.content_types else None,
            platforms=list(model.platforms) if model.platforms else None,
            phase_count=len(model.phases),
            phases=[p.id for p in model.phases],
        )


# Global registry instance
_registry: Optional[WorkflowModelRegistry] = None


def get_workflow_model_registry() -> WorkflowModelRegistry:
    """Get the global workflow model registry instance."""
    global _registry
    if _registry is None:
        _registry = WorkflowModelRegistry()
    return _registry

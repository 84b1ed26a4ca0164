# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Curriculum catalog loaded from YAML.

The catalog is a read-only tree: tasks contain subtasks, subtasks contain
steps. It is loaded once from ``config/curriculum/tasks.yaml``.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from src.core.config.settings import get_settings
from src.core.config.yaml_loader import YAMLLoadError, load_yaml
from src.utils.logging import get_logger

logger = get_logger(__name__)


class CurriculumError(Exception):
    """Raised when the catalog cannot be loaded or a lookup fails."""

    pass


class LearningStep(BaseModel):
    """A single curriculum step.

    Attributes:
        id: Step id, unique across the catalog.
        number: Position within the subtask.
        step: Step label shown to the student.
        objective: What the student should achieve.
        validation_criteria: Criteria a submission is checked against.
        deliverables: Expected artifacts.
        primary_agent: Role of the persona leading the step.
    """

    id: str = Field(..., min_length=1)
    number: int = 0
    step: str = ""
    objective: str = ""
    validation_criteria: list[str] = Field(default_factory=list)
    deliverables: list[str] = Field(default_factory=list)
    primary_agent: Optional[str] = None


class LearningSubtask(BaseModel):
    """A group of steps within a task."""

    id: str = Field(..., min_length=1)
    number: int = 0
    name: str = ""
    description: str = ""
    steps: list[LearningStep] = Field(default_factory=list)


class LearningTask(BaseModel):
    """A top-level learning task.

    Attributes:
        id: Task id.
        number: Position in the curriculum.
        name: Display name.
        description: What the task is about.
        phase: Requirements engineering phase.
        objective: Learning objective.
        subtasks: Subtasks in order.
    """

    id: str = Field(..., min_length=1)
    number: int = 0
    name: str = ""
    description: str = ""
    phase: str = ""
    objective: str = ""
    subtasks: list[LearningSubtask] = Field(default_factory=list)

    def get_subtask(self, subtask_id: str) -> Optional[LearningSubtask]:
        return next((s for s in self.subtasks if s.id == subtask_id), None)


class CurriculumCatalog:
    """Read-only lookup over the learning tasks."""

    def __init__(self, tasks: list[LearningTask]) -> None:
        self._tasks = {task.id: task for task in tasks}

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "CurriculumCatalog":
        """Load the catalog from a YAML file with a top-level ``tasks:`` list.

        Raises:
            CurriculumError: If the file is missing or invalid.
        """
        path = path or get_settings().persona.curriculum_file
        try:
            data = load_yaml(path)
            tasks = [LearningTask.model_validate(t) for t in data.get("tasks") or []]
        except YAMLLoadError as e:
            raise CurriculumError(f"Failed to load curriculum: {e}") from e
        except ValidationError as e:
            raise CurriculumError(f"Invalid curriculum in {path}: {e}") from e

        logger.info("curriculum_loaded", path=str(path), tasks=len(tasks))
        return cls(tasks)

    def list_tasks(self) -> list[LearningTask]:
        return sorted(self._tasks.values(), key=lambda t: t.number)

    def get_task(self, task_id: str) -> Optional[LearningTask]:
        return self._tasks.get(task_id)

    def get_step(self, task_id: str, subtask_id: str, step_id: str) -> Optional[LearningStep]:
        """Look up a step by its full address."""
        task = self.get_task(task_id)
        subtask = task.get_subtask(subtask_id) if task else None
        if subtask is None:
            return None
        return next((s for s in subtask.steps if s.id == step_id), None)

    def require_step(
        self,
        task_id: str,
        subtask_id: str,
        step_id: str,
    ) -> tuple[LearningTask, LearningSubtask, LearningStep]:
        """Resolve a step address.

        Raises:
            CurriculumError: If any part of the address is unknown.
        """
        task = self.get_task(task_id)
        if task is None:
            raise CurriculumError(f"Unknown task: {task_id}")
        subtask = task.get_subtask(subtask_id)
        if subtask is None:
            raise CurriculumError(f"Unknown subtask: {task_id}/{subtask_id}")
        step = next((s for s in subtask.steps if s.id == step_id), None)
        if step is None:
            raise CurriculumError(f"Unknown step: {task_id}/{subtask_id}/{step_id}")
        return task, subtask, step


# Module-level singleton instance
_catalog: Optional[CurriculumCatalog] = None


def get_curriculum() -> CurriculumCatalog:
    """Get the singleton catalog, loading it on first use."""
    global _catalog
    if _catalog is None:
        _catalog = CurriculumCatalog.from_yaml()
    return _catalog


def reset_curriculum() -> None:
    """Reset the singleton catalog, primarily for testing."""
    global _catalog
    _catalog = None

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Curriculum catalog of learning tasks, subtasks and steps.

Usage:
    from src.core.curriculum import get_curriculum

    catalog = get_curriculum()
    task = catalog.get_task("stakeholder_identification_analysis")
    step = catalog.get_step(task.id, "stakeholder_identification", "comprehensive_stakeholder_list")
"""

from src.core.curriculum.catalog import (
    CurriculumCatalog,
    CurriculumError,
    LearningStep,
    LearningSubtask,
    LearningTask,
    get_curriculum,
    reset_curriculum,
)

__all__ = [
    "CurriculumCatalog",
    "CurriculumError",
    "LearningStep",
    "LearningSubtask",
    "LearningTask",
    "get_curriculum",
    "reset_curriculum",
]

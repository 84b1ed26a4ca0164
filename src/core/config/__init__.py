# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the StepWise memory core.

Settings are Pydantic-based and loaded from environment variables, each
subsystem with its own prefix.

Example:
    >>> from src.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.memory.context_char_budget
    8000
"""

from src.core.config.settings import (
    DocumentDatabaseSettings,
    EmbeddingSettings,
    LLMSettings,
    MemorySettings,
    PersonaSettings,
    QdrantSettings,
    RedisSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DocumentDatabaseSettings",
    "RedisSettings",
    "QdrantSettings",
    "LLMSettings",
    "EmbeddingSettings",
    "MemorySettings",
    "PersonaSettings",
]

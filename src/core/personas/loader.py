# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona YAML loader.

Personas are loaded from the ``config/personas`` directory, one file per
persona with a top-level ``persona:`` section, and validated against the
Persona model. The file stem is used as the id when the section has none.
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from src.core.config.settings import get_settings
from src.core.config.yaml_loader import YAMLLoadError, load_yaml, load_yaml_directory, section
from src.core.personas.models import Persona
from src.utils.logging import get_logger

logger = get_logger(__name__)


class PersonaLoadError(Exception):
    """Raised when a persona fails to load or validate."""

    pass


def get_personas_directory() -> Path:
    """Get the configured personas directory."""
    return get_settings().persona.personas_dir


def _build_persona(persona_id: str, data: dict[str, Any]) -> Persona:
    persona_data = dict(section(data, "persona") or {})
    persona_data.setdefault("id", persona_id)
    return Persona.model_validate(persona_data)


def load_persona(persona_id: str, personas_dir: Optional[Path] = None) -> Persona:
    """Load a single persona from its YAML file.

    Args:
        persona_id: The persona identifier (file name without .yaml).
        personas_dir: Optional personas directory, defaults to the configured one.

    Returns:
        Validated Persona object.

    Raises:
        PersonaLoadError: If the file doesn't exist or validation fails.
    """
    personas_dir = personas_dir or get_personas_directory()
    persona_file = personas_dir / f"{persona_id}.yaml"

    try:
        persona = _build_persona(persona_id, load_yaml(persona_file))
    except YAMLLoadError as e:
        raise PersonaLoadError(f"Failed to load persona '{persona_id}': {e}") from e
    except ValidationError as e:
        raise PersonaLoadError(f"Validation failed for persona '{persona_id}': {e}") from e

    logger.debug("loaded_persona", persona_id=persona.id, name=persona.name)
    return persona


def load_all_personas(personas_dir: Optional[Path] = None) -> dict[str, Persona]:
    """Load every enabled persona of the directory.

    Files that fail validation are skipped with a warning.

    Args:
        personas_dir: Optional personas directory, defaults to the configured one.

    Returns:
        Personas keyed by id, in file-name order.

    Raises:
        PersonaLoadError: If the directory is missing or unreadable.
    """
    personas_dir = personas_dir or get_personas_directory()

    try:
        all_data = load_yaml_directory(personas_dir)
    except YAMLLoadError as e:
        raise PersonaLoadError(f"Failed to load personas directory: {e}") from e

    personas: dict[str, Persona] = {}
    for persona_id, data in all_data.items():
        try:
            persona = _build_persona(persona_id, data)
        except (ValidationError, TypeError) as e:
            logger.warning("persona_validation_failed", persona_id=persona_id, error=str(e))
            continue

        if not persona.enabled:
            logger.debug("skipped_disabled_persona", persona_id=persona.id)
            continue
        personas[persona.id] = persona

    logger.info("personas_loaded", count=len(personas), persona_ids=list(personas))
    return personas

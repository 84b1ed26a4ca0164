# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona manager.

This module provides the PersonaManager class which loads and caches the
persona roster and resolves personas by id or by the free-text labels a
routing completion returns. It serves as the main interface for the
persona system.
"""

from pathlib import Path
from typing import Optional

from src.core.config.settings import get_settings
from src.core.personas.loader import load_all_personas
from src.core.personas.models import Persona
from src.utils.logging import get_logger

logger = get_logger(__name__)


class PersonaNotFoundError(Exception):
    """Raised when a requested persona is not found."""

    pass


class PersonaManager:
    """Manages persona loading, caching, and lookup.

    Attributes:
        default_persona_id: Persona used when routing cannot decide.
    """

    def __init__(
        self,
        personas_dir: Optional[Path] = None,
        default_persona_id: Optional[str] = None,
        auto_load: bool = True,
    ):
        """Initialize the PersonaManager.

        Args:
            personas_dir: Optional personas directory, defaults to the configured one.
            default_persona_id: Fallback persona, defaults to the configured one.
            auto_load: Whether to load the roster on init.

        Raises:
            PersonaLoadError: If auto_load is set and the roster cannot be read.
        """
        self._personas: dict[str, Persona] = {}
        self._personas_dir = personas_dir
        self._loaded = False
        self.default_persona_id = default_persona_id or get_settings().persona.default_persona_id

        if auto_load:
            self._load_personas()

    def _load_personas(self) -> None:
        self._personas = load_all_personas(self._personas_dir)
        self._loaded = True
        logger.info(
            "persona_manager_initialized",
            persona_count=len(self._personas),
            default_persona=self.default_persona_id,
        )

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._load_personas()

    def get_persona(self, persona_id: str) -> Persona:
        """Get a persona by its id.

        Raises:
            PersonaNotFoundError: If the persona is unknown or disabled.
        """
        self._ensure_loaded()
        persona = self._personas.get(persona_id)
        if persona is None:
            raise PersonaNotFoundError(f"Persona '{persona_id}' not found")
        return persona

    def has_persona(self, persona_id: Optional[str]) -> bool:
        """Check if a persona exists and is enabled."""
        self._ensure_loaded()
        return bool(persona_id) and persona_id in self._personas

    def list_personas(self, routable_only: bool = False) -> list[Persona]:
        """List personas in roster order.

        Args:
            routable_only: Only personas the router may select.
        """
        self._ensure_loaded()
        personas = list(self._personas.values())
        if routable_only:
            return [p for p in personas if p.routable]
        return personas

    def find_by_label(self, label: str, routable_only: bool = True) -> Optional[Persona]:
        """Resolve a role, id or display name to a persona.

        Returns:
            The first matching persona, or None.
        """
        for persona in self.list_personas(routable_only=routable_only):
            if persona.matches_label(label):
                return persona
        return None

    def get_default_persona(self) -> Persona:
        """Get the fallback persona.

        Falls back to the first routable persona when the configured
        default is missing.

        Raises:
            PersonaNotFoundError: If the roster has no routable persona.
        """
        if self.has_persona(self.default_persona_id):
            return self._personas[self.default_persona_id]

        routable = self.list_personas(routable_only=True)
        if not routable:
            raise PersonaNotFoundError("No routable persona configured")
        logger.warning(
            "default_persona_missing",
            default_persona=self.default_persona_id,
            fallback=routable[0].id,
        )
        return routable[0]

    def get_persona_summary(self, persona_id: str) -> dict:
        """Get a summary of a persona for display purposes.

        Raises:
            PersonaNotFoundError: If the persona is not found.
        """
        persona = self.get_persona(persona_id)
        return {
            "id": persona.id,
            "name": persona.name,
            "role": persona.role,
            "personality": persona.personality,
            "expertise": persona.expertise,
            "routable": persona.routable,
        }


# Module-level singleton instance
_manager: Optional[PersonaManager] = None


def get_persona_manager(
    personas_dir: Optional[Path] = None,
    default_persona_id: Optional[str] = None,
) -> PersonaManager:
    """Get the singleton PersonaManager instance."""
    global _manager
    if _manager is None:
        _manager = PersonaManager(
            personas_dir=personas_dir,
            default_persona_id=default_persona_id,
        )
    return _manager


def reset_persona_manager() -> None:
    """Reset the singleton PersonaManager instance.

    This is primarily useful for testing.
    """
    global _manager
    _manager = None

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona system.

Personas are the simulated project team members a student talks to. Each
one has a role, a profile used in its system prompt and a list of
expertise areas used for routing.

Available personas (loaded from config/personas/):
- product_owner, technical_lead, ux_designer, qa_lead
- student, lecturer, academic_advisor
- business_analyst: Routing fallback (default)
- project_guide: Writes step welcome messages, never routed to

Usage:
    from src.core.personas import PersonaRouter, get_persona_manager

    manager = get_persona_manager()
    persona = manager.get_persona("product_owner")

    router = PersonaRouter(manager, get_curriculum(), llm_client)
    persona_id = await router.route("Who pays for the meals?", "stakeholder_identification_analysis")
"""

from src.core.personas.loader import (
    PersonaLoadError,
    load_all_personas,
    load_persona,
)
from src.core.personas.manager import (
    PersonaManager,
    PersonaNotFoundError,
    get_persona_manager,
    reset_persona_manager,
)
from src.core.personas.models import Persona
from src.core.personas.router import PersonaRouter, normalize_label

__all__ = [
    # Models
    "Persona",
    # Loader
    "load_persona",
    "load_all_personas",
    "PersonaLoadError",
    # Manager
    "PersonaManager",
    "PersonaNotFoundError",
    "get_persona_manager",
    "reset_persona_manager",
    # Router
    "PersonaRouter",
    "normalize_label",
]

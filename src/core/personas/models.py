# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona data models.

A persona is one of the simulated project team members a student talks
to. Its profile feeds both the routing prompt (role, name, expertise) and
the persona's own system prompt (personality, communication style, work
approach, preferred frameworks and background).
"""

from pydantic import BaseModel, Field


class Persona(BaseModel):
    """Complete persona definition.

    Attributes:
        id: Unique identifier, also the YAML file stem.
        name: Display name (e.g., "Sarah Chen").
        role: Team role (e.g., "Product Owner").
        personality: Short personality description.
        expertise: Areas of expertise, used for routing.
        communication_style: How the persona talks.
        work_approach: How the persona works.
        preferred_frameworks: Frameworks the persona likes to suggest.
        detailed_persona: Background story.
        routable: Whether the router may pick this persona.
        enabled: Whether this persona is currently active.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the persona",
        min_length=1,
        pattern=r"^[a-z][a-z0-9_]*$",
    )
    name: str = Field(..., description="Display name of the persona", min_length=1)
    role: str = Field(..., description="Team role of the persona", min_length=1)
    personality: str = Field(default="", description="Short personality description")
    expertise: list[str] = Field(default_factory=list, description="Areas of expertise")
    communication_style: str = Field(default="", description="How the persona talks")
    work_approach: str = Field(default="", description="How the persona works")
    preferred_frameworks: list[str] = Field(
        default_factory=list,
        description="Frameworks the persona likes to suggest",
    )
    detailed_persona: str = Field(default="", description="Background story")
    routable: bool = Field(default=True, description="Whether routing may select it")
    enabled: bool = Field(default=True, description="Whether this persona is active")

    def roster_line(self) -> str:
        """One line describing the persona in the routing prompt."""
        return f"- {self.role} ({self.name}): {', '.join(self.expertise)}"

    def matches_label(self, label: str) -> bool:
        """Check a free-text label against role, id and name, ignoring case."""
        normalized = label.strip().lower()
        return normalized in {
            self.role.lower(),
            self.id.lower(),
            self.name.lower(),
            self.id.replace("_", " ").lower(),
        }

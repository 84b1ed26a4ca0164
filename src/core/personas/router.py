# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona router.

Chooses which team member answers a student message. A valid preferred
persona wins outright; otherwise one classification completion is asked
for the best role given the current task and the roster. Anything that
goes wrong (unknown task, unmatched label, failed completion) resolves to
the default persona, so ``route`` always returns an id from the roster.
"""

import re
from typing import Optional

from src.core.curriculum.catalog import CurriculumCatalog, LearningTask
from src.core.intelligence.llm import LLMClient
from src.core.memory.resilience import TRANSIENT_ERRORS, RetryPolicy, call_external
from src.core.personas.manager import PersonaManager
from src.utils.logging import get_logger

logger = get_logger(__name__)

ROUTING_PROMPT = """You are an intelligent routing agent for a requirements engineering learning system.

CURRENT TASK: {task_name} ({task_phase})
TASK DESCRIPTION: {task_description}
STUDENT MESSAGE: "{message}"

AVAILABLE TEAM MEMBERS:
{roster}

Based on the student's message and current task, which team member would be MOST helpful to respond?
Consider:
1. The team member's expertise alignment with the question
2. The current learning phase
3. The type of guidance needed

Respond with ONLY the role name (e.g., "Product Owner", "Business Analyst", etc.)"""

_PARENTHETICAL = re.compile(r"\s*\(.*?\)\s*")
_EDGE_CHARS = "\"'`*.,;:!?- \t"


def normalize_label(raw: str) -> str:
    """Reduce a routing reply to a bare label.

    Keeps the first non-empty line and strips quotes, markdown emphasis,
    trailing punctuation and parenthesised names.
    """
    line = next((ln for ln in raw.splitlines() if ln.strip()), "")
    line = line.strip().strip(_EDGE_CHARS)
    if line.lower().startswith("role:"):
        line = line[5:]
    line = _PARENTHETICAL.sub(" ", line)
    return line.strip().strip(_EDGE_CHARS)


class PersonaRouter:
    """Routes student messages to personas."""

    def __init__(
        self,
        personas: PersonaManager,
        curriculum: CurriculumCatalog,
        llm_client: LLMClient,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._personas = personas
        self._curriculum = curriculum
        self._llm = llm_client
        self._policy = policy or RetryPolicy()

    async def route(
        self,
        message: str,
        task_id: str,
        preferred_persona_id: Optional[str] = None,
    ) -> str:
        """Pick the persona that should answer a message.

        Args:
            message: The student's message.
            task_id: Task the student is working on.
            preferred_persona_id: Persona the student chose, if any.

        Returns:
            A persona id present in the roster.
        """
        if preferred_persona_id and self._personas.has_persona(preferred_persona_id):
            return preferred_persona_id
        if preferred_persona_id:
            logger.warning("preferred_persona_not_found", persona_id=preferred_persona_id)

        task = self._curriculum.get_task(task_id)
        if task is None:
            logger.warning("routing_unknown_task", task_id=task_id)
            return self._fallback()

        prompt = self.build_prompt(message, task)
        try:
            response = await call_external(
                "persona_routing",
                lambda: self._llm.complete(
                    message,
                    system_prompt=prompt,
                    temperature=0.0,
                    max_tokens=20,
                ),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("routing_completion_failed", task_id=task_id, error=str(e))
            return self._fallback()

        label = normalize_label(response.content)
        persona = self._personas.find_by_label(label)
        if persona is None:
            logger.info("routing_label_unmatched", label=label, raw=response.content[:100])
            return self._fallback()

        logger.info("message_routed", persona_id=persona.id, task_id=task_id)
        return persona.id

    def build_prompt(self, message: str, task: LearningTask) -> str:
        """Render the classification prompt for a task."""
        roster = "\n".join(p.roster_line() for p in self._personas.list_personas(routable_only=True))
        return ROUTING_PROMPT.format(
            task_name=task.name,
            task_phase=task.phase,
            task_description=task.description,
            message=message,
            roster=roster,
        )

    def _fallback(self) -> str:
        return self._personas.get_default_persona().id

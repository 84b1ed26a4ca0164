# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Context assembler.

Builds the context block a persona prompt is constructed from. For every
inbound message it:

1. Makes sure the user's semantic memory is fresh (never fatal).
2. Retrieves project knowledge for the query (falls back to a fixed notice).
3. Searches semantic memory and groups the results by content type,
   keeping at most 10 progress, 15 conversation and 5 insight snippets.

If the memory search fails the context is marked degraded and carries
project knowledge only. Rendering to text goes through
``AssembledContext.render`` with the configured character budget.
"""

from typing import Optional

from src.core.config.settings import MemorySettings
from src.core.memory.knowledge import NO_KNOWLEDGE_TEXT, ProjectKnowledgeRetriever
from src.core.memory.models import AssembledContext, ContentType, ScoredChunk
from src.core.memory.resilience import TRANSIENT_ERRORS
from src.core.memory.semantic_index import SemanticMemoryIndex
from src.utils.logging import get_logger

logger = get_logger(__name__)


class ContextAssembler:
    """Merges project knowledge and semantic memory for one message.

    Attributes:
        char_budget: Character budget used by ``render``.
    """

    def __init__(
        self,
        semantic_index: SemanticMemoryIndex,
        knowledge: Optional[ProjectKnowledgeRetriever],
        settings: MemorySettings,
    ) -> None:
        self._semantic = semantic_index
        self._knowledge = knowledge
        self._caps = {
            ContentType.PROGRESS: settings.max_progress_snippets,
            ContentType.CONVERSATION: settings.max_conversation_snippets,
            ContentType.INSIGHT: settings.max_insight_snippets,
        }
        self.char_budget = settings.context_char_budget

    async def assemble(
        self,
        user_id: str,
        persona_id: str,
        query_text: str,
        step_id: str,
    ) -> AssembledContext:
        """Assemble the context for a query.

        Args:
            user_id: User asking.
            persona_id: Persona that will answer.
            query_text: Standalone form of the user's message.
            step_id: Step the user is on.

        Returns:
            The grouped context. Never raises for backend failures.
        """
        try:
            await self._semantic.ensure_fresh(user_id, step_id)
        except TRANSIENT_ERRORS as e:
            logger.warning("context_refresh_failed", user_id=user_id, error=str(e))

        project_knowledge = await self._project_knowledge(query_text)

        try:
            results = await self._semantic.search(user_id, query_text)
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning(
                "context_memory_unavailable",
                user_id=user_id,
                persona_id=persona_id,
                error=str(e),
            )
            return AssembledContext(project_knowledge=project_knowledge, degraded=True)

        grouped = self.group_results(results)
        context = AssembledContext(
            project_knowledge=project_knowledge,
            progress_snippets=grouped[ContentType.PROGRESS],
            conversation_snippets=grouped[ContentType.CONVERSATION],
            insight_snippets=grouped[ContentType.INSIGHT],
        )
        logger.info(
            "context_assembled",
            user_id=user_id,
            persona_id=persona_id,
            step_id=step_id,
            progress=len(context.progress_snippets),
            conversations=len(context.conversation_snippets),
            insights=len(context.insight_snippets),
        )
        return context

    def group_results(self, results: list[ScoredChunk]) -> dict[ContentType, list[ScoredChunk]]:
        """Partition search results by content type and cap each group.

        Results keep their similarity order within a group.
        """
        grouped: dict[ContentType, list[ScoredChunk]] = {t: [] for t in ContentType}
        for result in sorted(results, key=lambda r: r.similarity, reverse=True):
            bucket = grouped[result.chunk.content_type]
            if len(bucket) < self._caps[result.chunk.content_type]:
                bucket.append(result)
        return grouped

    def render(self, context: AssembledContext) -> str:
        """Render a context within the configured character budget."""
        return context.render(self.char_budget)

    async def _project_knowledge(self, query_text: str) -> str:
        if self._knowledge is None:
            return NO_KNOWLEDGE_TEXT
        try:
            return await self._knowledge.knowledge_for(query_text)
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning("project_knowledge_unavailable", error=str(e))
            return NO_KNOWLEDGE_TEXT

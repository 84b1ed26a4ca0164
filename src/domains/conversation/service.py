# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tutoring chat service.

This service handles one student message end to end:

1. Resolve the step and route the message to a persona.
2. Load the step buffer and rewrite the message as a standalone question.
3. Assemble context (project knowledge plus semantic memory) for it.
4. Ask the persona for a reply.
5. Persist both turns to the learner records and the step buffer, record
   the exchange in semantic memory and update the persona's insight notes.

Only a failed reply completion fails the request. Every memory-side
failure is logged and the chat carries on with whatever context is
available.

Example:
    >>> service = ChatService(memory, personas, curriculum, llm_client, settings)
    >>> reply = await service.send_message(
    ...     "u-1",
    ...     "stakeholder_identification_analysis",
    ...     "stakeholder_identification",
    ...     "comprehensive_stakeholder_list",
    ...     "Who are the main stakeholders of the dining system?",
    ... )
    >>> reply.persona_id
    'product_owner'
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

from src.core.curriculum.catalog import (
    CurriculumCatalog,
    CurriculumError,
    LearningStep,
    LearningSubtask,
    LearningTask,
)
from src.core.intelligence.llm import LLMClient, Message
from src.core.memory.manager import MemoryManager
from src.core.memory.models import (
    ChatRecord,
    ChatReply,
    ConversationTurn,
    ProgressRecord,
    StepKey,
    TurnRole,
)
from src.core.memory.resilience import TRANSIENT_ERRORS, RetryPolicy, call_external
from src.core.personas.manager import PersonaManager, PersonaNotFoundError
from src.core.personas.models import Persona
from src.core.personas.router import PersonaRouter
from src.domains.conversation.prompts import (
    build_standalone_prompt,
    build_team_member_prompt,
    build_welcome_prompts,
)
from src.utils.datetime import utc_now
from src.utils.logging import bind_context, clear_context

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = logging.getLogger(__name__)

# Buffer turns used for the standalone rewrite and as chat history
HISTORY_TURNS = 4


class ChatServiceError(Exception):
    """Raised when a chat request cannot be served.

    Attributes:
        message: Error description.
        original_error: Original exception if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class ChatService:
    """Service for tutoring chat conversations.

    Attributes:
        welcome_persona_id: Persona that writes step welcome messages.
    """

    def __init__(
        self,
        memory: MemoryManager,
        personas: PersonaManager,
        curriculum: CurriculumCatalog,
        llm_client: LLMClient,
        settings: "Settings",
        router: Optional[PersonaRouter] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the chat service.

        Args:
            memory: Memory manager.
            personas: Persona roster.
            curriculum: Curriculum catalog.
            llm_client: Completion provider for replies and rewrites.
            settings: Application settings.
            router: Persona router, built from the other arguments if omitted.
            policy: Timeout and retry policy for backend calls.
        """
        self._memory = memory
        self._personas = personas
        self._curriculum = curriculum
        self._llm = llm_client
        self._policy = policy or RetryPolicy.from_settings(settings.memory)
        self._router = router or PersonaRouter(personas, curriculum, llm_client, self._policy)
        self.welcome_persona_id = settings.persona.welcome_persona_id

    # ========== Messages ==========

    async def send_message(
        self,
        user_id: str,
        task_id: str,
        subtask_id: str,
        step_id: str,
        message: str,
        persona_id: Optional[str] = None,
    ) -> ChatReply:
        """Answer a student message.

        Args:
            user_id: Student sending the message.
            task_id: Current task.
            subtask_id: Current subtask.
            step_id: Current step.
            message: The student's message.
            persona_id: Persona the student addressed, if any.

        Returns:
            The persona's reply with the context it was given.

        Raises:
            ChatServiceError: If the message is empty, the step is unknown
                or the reply cannot be generated.
        """
        if not message or not message.strip():
            raise ChatServiceError("Message cannot be empty")

        resolved = self._resolve_step(task_id, subtask_id, step_id)
        key = StepKey(user_id=user_id, task_id=task_id, subtask_id=subtask_id, step_id=step_id)
        bind_context(user_id=user_id, step=key.context_id)
        try:
            return await self._answer(key, resolved, message, persona_id)
        finally:
            clear_context()

    async def _answer(
        self,
        key: StepKey,
        resolved: tuple[LearningTask, LearningSubtask, LearningStep],
        message: str,
        persona_id: Optional[str],
    ) -> ChatReply:
        user_id, task_id, step_id = key.user_id, key.task_id, key.step_id
        task, subtask, step = resolved

        routed_id = await self._router.route(message, task_id, persona_id)
        persona = self._personas.get_persona(routed_id)

        state = await self._memory.step_buffer.load(key)
        recent = state.recent_turns[-HISTORY_TURNS:]
        standalone = await self.standalone_question(message, recent)

        context = await self._memory.assembler.assemble(user_id, persona.id, standalone, step_id)
        notes = await self._memory.insights.persona_context(user_id, persona.id, persona.role, task_id)

        system_prompt = build_team_member_prompt(
            persona=persona,
            colleagues=self._personas.list_personas(routable_only=True),
            task=task,
            subtask=subtask,
            step=step,
            context=self._memory.assembler.render(context),
            original_question=message,
            standalone_question=standalone,
            persona_notes=notes,
            conversation_summary=state.rolling_summary or None,
        )
        history = [
            Message(role="user" if t.role is TurnRole.USER else "assistant", content=t.content)
            for t in recent
        ]

        try:
            response = await call_external(
                "persona_reply",
                lambda: self._llm.complete(message, system_prompt=system_prompt, messages=history),
                self._policy,
            )
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.error("Reply generation failed for %s (%s): %s", persona.id, user_id, e)
            raise ChatServiceError(f"Failed to generate a reply from {persona.name}", e) from e

        user_turn = ConversationTurn(role=TurnRole.USER, content=message)
        agent_turn = ConversationTurn(role=TurnRole.AGENT, content=response.content, persona_id=persona.id)
        await self._persist_turn(key, user_turn)
        await self._persist_turn(key, agent_turn, persona)

        await self._memory.semantic.record_interaction(
            user_id,
            persona.id,
            message,
            response.content,
            step_id,
            persona_name=persona.name,
        )
        await self._memory.insights.record_exchange(user_id, persona.id, persona.role, message, response.content)

        logger.info(
            "Reply from %s for %s at %s (degraded=%s)",
            persona.id,
            user_id,
            key.context_id,
            context.degraded,
        )
        return ChatReply(
            persona_id=persona.id,
            persona_name=persona.name,
            content=response.content,
            message_id=agent_turn.id,
            context=context,
            timestamp=agent_turn.timestamp,
        )

    async def standalone_question(self, message: str, recent_turns: list[ConversationTurn]) -> str:
        """Rewrite a message as a self-contained retrieval query.

        Falls back to the raw message when the rewrite fails or is empty.
        """
        prompt = build_standalone_prompt(message, recent_turns)
        try:
            response = await call_external(
                "standalone_question",
                lambda: self._llm.complete(message, system_prompt=prompt, temperature=0.0, max_tokens=200),
                self._policy,
            )
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning("Standalone rewrite failed, using raw message: %s", e)
            return message

        question = response.content.strip().strip('"')
        return question or message

    async def create_welcome_message(
        self,
        user_id: str,
        task_id: str,
        subtask_id: str,
        step_id: str,
    ) -> ChatReply:
        """Write the Project Guide's introduction to a step.

        The message is stored as an agent turn of the step conversation.

        Raises:
            ChatServiceError: If the step or the guide persona is unknown,
                or the message cannot be generated.
        """
        task, subtask, step = self._resolve_step(task_id, subtask_id, step_id)
        key = StepKey(user_id=user_id, task_id=task_id, subtask_id=subtask_id, step_id=step_id)

        try:
            guide = self._personas.get_persona(self.welcome_persona_id)
        except PersonaNotFoundError as e:
            raise ChatServiceError("Welcome persona is not configured", e) from e

        query = (
            f"Give me information about this step: {step.step} which is part of the "
            f"subtask: {subtask.name} and task: {task.name}."
        )
        context = await self._memory.assembler.assemble(user_id, guide.id, query, step_id)
        system_prompt, user_prompt = build_welcome_prompts(
            guide,
            primary_agent=self._primary_agent_name(step),
            task=task,
            subtask=subtask,
            step=step,
            context=self._memory.assembler.render(context),
        )

        try:
            response = await call_external(
                "welcome_message",
                lambda: self._llm.complete(user_prompt, system_prompt=system_prompt),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.error("Welcome message failed for %s at %s: %s", user_id, key.context_id, e)
            raise ChatServiceError("Failed to create welcome message", e) from e

        timestamp = utc_now()
        turn = ConversationTurn(
            id=f"welcome_{int(timestamp.timestamp() * 1000)}",
            role=TurnRole.AGENT,
            content=response.content,
            persona_id=guide.id,
            timestamp=timestamp,
        )
        await self._persist_turn(key, turn, guide)

        return ChatReply(
            persona_id=guide.id,
            persona_name=guide.name,
            content=response.content,
            message_id=turn.id,
            context=context,
            timestamp=timestamp,
        )

    # ========== Step lifecycle ==========

    async def change_step(self, user_id: str, task_id: str, subtask_id: str, step_id: str) -> int:
        """Handle the student moving to another step.

        Drops the cached persona contexts; semantic memory refreshes on the
        next message because the step differs from the freshness marker.

        Returns:
            Number of cache entries removed.
        """
        self._resolve_step(task_id, subtask_id, step_id)
        removed = await self._memory.semantic.on_step_change(user_id)
        logger.info("Step changed for %s to %s/%s/%s", user_id, task_id, subtask_id, step_id)
        return removed

    async def restart_step(self, user_id: str, task_id: str, subtask_id: str, step_id: str) -> None:
        """Clear a step conversation from the buffer and the chat history.

        Raises:
            ChatServiceError: If the chat history cannot be reset.
        """
        self._resolve_step(task_id, subtask_id, step_id)
        key = StepKey(user_id=user_id, task_id=task_id, subtask_id=subtask_id, step_id=step_id)

        await self._memory.step_buffer.clear(key)
        try:
            await call_external(
                "chat_history_reset",
                lambda: self._memory.records.reset_chat_history(key),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            raise ChatServiceError("Failed to reset chat history", e) from e
        logger.info("Step restarted for %s at %s", user_id, key.context_id)

    async def submit_progress(
        self,
        user_id: str,
        task_id: str,
        subtask_id: str,
        step_id: str,
        student_response: str,
        is_completed: bool = True,
    ) -> ProgressRecord:
        """Store a student's submission for a step.

        Raises:
            ChatServiceError: If the step is unknown or the write fails.
        """
        task, subtask, step = self._resolve_step(task_id, subtask_id, step_id)
        try:
            record = await call_external(
                "progress_save",
                lambda: self._memory.records.save_step_progress(
                    user_id,
                    task_id,
                    subtask_id,
                    step_id,
                    step=step.step,
                    student_response=student_response,
                    is_completed=is_completed,
                    task_name=task.name,
                    subtask_name=subtask.name,
                ),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            raise ChatServiceError("Failed to save progress", e) from e

        # Cross-agent notes and summaries mention progress
        await self._memory.insights.invalidate_context(user_id)
        return record

    # ========== History ==========

    async def get_history(self, user_id: str, task_id: str, subtask_id: str, step_id: str) -> list[ChatRecord]:
        """Return the stored messages of a step conversation.

        Raises:
            ChatServiceError: If the records cannot be read.
        """
        key = StepKey(user_id=user_id, task_id=task_id, subtask_id=subtask_id, step_id=step_id)
        try:
            return await call_external(
                "chat_history_get",
                lambda: self._memory.records.get_chat_messages(key),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            raise ChatServiceError("Failed to load chat messages", e) from e

    async def get_chat_summary(
        self,
        user_id: str,
        task_id: str,
        subtask_id: str,
        step_id: str,
    ) -> dict[str, Any]:
        """Return message count and last message time of a step conversation.

        Raises:
            ChatServiceError: If the records cannot be read.
        """
        key = StepKey(user_id=user_id, task_id=task_id, subtask_id=subtask_id, step_id=step_id)
        try:
            return await call_external(
                "chat_summary_get",
                lambda: self._memory.records.get_chat_summary(key),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            raise ChatServiceError("Failed to get chat summary", e) from e

    # ========== Helpers ==========

    def _resolve_step(
        self,
        task_id: str,
        subtask_id: str,
        step_id: str,
    ) -> tuple[LearningTask, LearningSubtask, LearningStep]:
        try:
            return self._curriculum.require_step(task_id, subtask_id, step_id)
        except CurriculumError as e:
            raise ChatServiceError(str(e), e) from e

    def _primary_agent_name(self, step: LearningStep) -> str:
        if step.primary_agent:
            persona = self._personas.find_by_label(step.primary_agent, routable_only=False)
            if persona is not None:
                return persona.name
        return "one of our team members"

    async def _persist_turn(
        self,
        key: StepKey,
        turn: ConversationTurn,
        persona: Optional[Persona] = None,
    ) -> None:
        """Write a turn to the learner records and the step buffer.

        A failed records write is logged; the buffer keeps the turn either way.
        """
        record = ChatRecord(
            id=turn.id,
            role=turn.role,
            content=turn.content,
            persona_id=persona.id if persona else None,
            persona_name=persona.name if persona else None,
            timestamp=turn.timestamp,
            context_id=key.context_id,
        )
        try:
            await call_external(
                "chat_message_add",
                lambda: self._memory.records.add_chat_message(key, record),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("Failed to store chat message %s for %s: %s", turn.id, key.user_id, e)

        await self._memory.step_buffer.append_turn(key, turn)

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Step buffer memory (Tier 1).

Keeps the rolling window of the current step conversation in the cache
store under ``conv:{user}:{task}_{subtask}_{step}``. When the window grows
past the token budget, the oldest turns are folded into a rolling summary
by the completion provider and only the most recent turns stay verbatim.

Lifecycle of a step buffer:

    EMPTY -> ACTIVE -> SUMMARIZED -> (TTL) -> EMPTY

Every read and write re-sets the entry with the conversation TTL, so
active steps never expire mid-session. Operations on the same step are
serialized by a per-key lock; different steps proceed in parallel.

Example:
    buffer = StepBufferMemory(cache, llm_client, records, settings.memory)
    state = await buffer.append_turn(key, ConversationTurn(role="user", content="hello"))
    print(state.phase)  # StepPhase.ACTIVE
"""

from typing import Optional

from pydantic import ValidationError

from src.core.config.settings import MemorySettings
from src.core.intelligence.llm.client import LLMClient
from src.core.memory.keys import TTLClass, conversation_key, ttl_seconds
from src.core.memory.models import (
    ConversationTurn,
    StepKey,
    StepMemoryState,
    TurnRole,
)
from src.core.memory.records import LearnerRecords
from src.core.memory.resilience import (
    TRANSIENT_ERRORS,
    KeyedLocks,
    RetryPolicy,
    call_external,
)
from src.infrastructure.cache.redis_client import RedisClient
from src.utils.datetime import utc_now
from src.utils.logging import get_logger

logger = get_logger(__name__)

SUMMARY_PROMPT = """You are summarizing a conversation in a requirements engineering learning system.

STUDENT'S CURRENT PROGRESS:
{progress}

PREVIOUS SUMMARY: {previous_summary}

RECENT MESSAGES:
{messages}

Create a concise summary that:
1. Maintains important conversation details
2. References relevant completed work when applicable
3. Highlights key learning progress and decisions
4. Keeps context for future conversations

Focus on what's most relevant for continuing this student's learning journey."""


def format_turn(turn: ConversationTurn) -> str:
    """Render a turn as ``speaker: content``."""
    if turn.role is TurnRole.USER:
        return f"Student: {turn.content}"
    return f"{turn.persona_id or 'Assistant'}: {turn.content}"


class StepBufferMemory:
    """Rolling window plus summary of each step conversation.

    Attributes:
        token_limit: Token budget of the verbatim window.
        keep_recent: Turns kept verbatim after a fold.
    """

    def __init__(
        self,
        cache: RedisClient,
        llm_client: LLMClient,
        records: Optional[LearnerRecords],
        settings: MemorySettings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the step buffer.

        Args:
            cache: Cache store holding buffer state.
            llm_client: Completion provider used for summaries and token counts.
            records: Learner records used to add progress to summaries.
            settings: Memory settings.
            policy: Timeout and retry policy for backend calls.
        """
        self._cache = cache
        self._llm = llm_client
        self._records = records
        self._settings = settings
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._ttl = ttl_seconds(TTLClass.CONVERSATION, settings)
        self._locks = KeyedLocks()
        self.token_limit = settings.buffer_token_limit
        self.keep_recent = max(1, settings.buffer_keep_recent)

    # ========== Public contract ==========

    async def load(self, key: StepKey) -> StepMemoryState:
        """Load a step's buffer, refreshing its TTL.

        Never raises: an absent, unreadable or malformed entry yields the
        empty state.
        """
        async with self._locks.hold(conversation_key(key)):
            state = await self._read(key)
            if state is None:
                return StepMemoryState.empty(key)
            state.last_accessed = utc_now()
            await self._write(state)
            return state

    async def append_turn(self, key: StepKey, turn: ConversationTurn) -> StepMemoryState:
        """Append a turn and fold old turns into the summary when over budget.

        Args:
            key: Step to append to.
            turn: The new turn.

        Returns:
            The buffer state after the append. When the stored buffer cannot
            be read, nothing is written and the returned state holds only
            the new turn.
        """
        async with self._locks.hold(conversation_key(key)):
            state = await self._read(key)
            if state is None:
                # Writing now would overwrite the unread buffer
                logger.warning(
                    "step_buffer_append_skipped",
                    user_id=key.user_id,
                    context_id=key.context_id,
                    turn_id=turn.id,
                )
                return StepMemoryState.empty(key).model_copy(update={"recent_turns": [turn]})
            state.recent_turns.append(turn)

            if (
                len(state.recent_turns) > self.keep_recent
                and self.count_tokens(state.recent_turns) > self.token_limit
            ):
                state = await self._fold(state)

            state.last_accessed = utc_now()
            await self._write(state)
            return state

    async def summarize(self, key: StepKey) -> str:
        """Render the buffer as prompt text without folding.

        Returns:
            The rolling summary followed by the recent turns, or an empty
            string for an empty buffer.
        """
        state = await self.load(key)
        parts = []
        if state.rolling_summary:
            parts.append(f"Summary of earlier conversation:\n{state.rolling_summary}")
        if state.recent_turns:
            parts.append("\n".join(format_turn(t) for t in state.recent_turns))
        return "\n\n".join(parts)

    async def clear(self, key: StepKey) -> StepMemoryState:
        """Reset a step's buffer to the empty state."""
        async with self._locks.hold(conversation_key(key)):
            state = StepMemoryState.empty(key)
            await self._write(state)
            logger.info("step_buffer_cleared", user_id=key.user_id, context_id=key.context_id)
            return state

    # ========== Token accounting ==========

    def count_tokens(self, turns: list[ConversationTurn]) -> int:
        """Estimate the token size of a list of turns."""
        return sum(self._llm.count_tokens(format_turn(t)) for t in turns)

    # ========== Internals ==========

    async def _read(self, key: StepKey) -> Optional[StepMemoryState]:
        """Read a step's stored state.

        Returns:
            The stored state, the empty state for an absent or malformed
            entry, or None when the cache could not be read.
        """
        cache_key = conversation_key(key)
        try:
            raw = await call_external("step_buffer_get", lambda: self._cache.get(cache_key), self._policy)
        except TRANSIENT_ERRORS as e:
            logger.warning("step_buffer_read_failed", key=cache_key, error=str(e))
            return None

        if raw is None:
            return StepMemoryState.empty(key)

        try:
            state = StepMemoryState.model_validate(raw)
        except ValidationError as e:
            logger.warning("step_buffer_malformed", key=cache_key, error=str(e))
            return StepMemoryState.empty(key)

        if state.key != key:
            logger.warning("step_buffer_key_mismatch", key=cache_key)
            return StepMemoryState.empty(key)
        return state

    async def _write(self, state: StepMemoryState) -> None:
        cache_key = conversation_key(state.key)
        payload = state.model_dump(mode="json")
        try:
            await call_external(
                "step_buffer_set",
                lambda: self._cache.set(cache_key, payload, ttl_seconds=self._ttl),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("step_buffer_write_failed", key=cache_key, error=str(e))

    async def _fold(self, state: StepMemoryState) -> StepMemoryState:
        """Fold all but the most recent turns into the rolling summary.

        On any summarization failure the state is returned unchanged.
        """
        folded = state.recent_turns[: -self.keep_recent]
        kept = state.recent_turns[-self.keep_recent:]

        try:
            summary = await self._generate_summary(state.key, state.rolling_summary, folded)
        except TRANSIENT_ERRORS as e:
            logger.warning(
                "step_buffer_summarize_failed",
                user_id=state.key.user_id,
                context_id=state.key.context_id,
                error=str(e),
            )
            return state

        if not summary:
            # Folded turns would be lost; keep the summary and every raw turn
            logger.warning(
                "step_buffer_summary_empty",
                user_id=state.key.user_id,
                context_id=state.key.context_id,
            )
            return state

        logger.info(
            "step_buffer_folded",
            user_id=state.key.user_id,
            context_id=state.key.context_id,
            folded=len(folded),
            kept=len(kept),
        )
        return state.model_copy(update={"recent_turns": kept, "rolling_summary": summary})

    async def _generate_summary(
        self,
        key: StepKey,
        previous_summary: str,
        turns: list[ConversationTurn],
    ) -> str:
        progress = await self._progress_text(key.user_id)
        prompt = SUMMARY_PROMPT.format(
            progress=progress or "No previous progress available",
            previous_summary=previous_summary or "None",
            messages="\n".join(format_turn(t) for t in turns),
        )
        response = await call_external(
            "step_buffer_summary",
            lambda: self._llm.complete(prompt),
            self._policy,
        )
        return response.content.strip()

    async def _progress_text(self, user_id: str) -> Optional[str]:
        if self._records is None:
            return None
        try:
            return await call_external(
                "completed_progress",
                lambda: self._records.completed_progress_text(user_id),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("summary_progress_unavailable", user_id=user_id, error=str(e))
            return None

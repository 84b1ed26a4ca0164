# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Persona insight notes.

Each persona keeps a short running note per student made of the latest
question/answer pairs it handled. Notes are durable in the learner records,
cached for an hour under ``insights:{user}:{persona}``, and combined with
the notes of other personas into a per-task persona context that is cached
for five minutes under ``ctx:{user}:{persona}:{task}``.
"""

from typing import Optional

from src.core.config.settings import MemorySettings
from src.core.memory.keys import (
    TTLClass,
    context_key,
    context_prefix,
    insights_key,
    ttl_seconds,
)
from src.core.memory.models import InsightNote
from src.core.memory.records import LearnerRecords
from src.core.memory.resilience import TRANSIENT_ERRORS, RetryPolicy, call_external
from src.infrastructure.cache.redis_client import RedisClient
from src.utils.logging import get_logger

logger = get_logger(__name__)

QUESTION_CHARS = 100
ANSWER_CHARS = 150
NOTE_HISTORY_CHARS = 800
CROSS_AGENT_LIMIT = 2
CROSS_AGENT_MIN_CHARS = 50
CROSS_AGENT_PREVIEW_CHARS = 120


def format_exchange(question: str, answer: str) -> str:
    """Condense one exchange into a note line."""
    return f"Q: {question[:QUESTION_CHARS]} | A: {answer[:ANSWER_CHARS]}"


def append_to_note(existing: str, question: str, answer: str) -> str:
    """Append an exchange to a note, keeping only the tail of older text."""
    entry = format_exchange(question, answer)
    if not existing:
        return entry
    return f"{existing[-NOTE_HISTORY_CHARS:]}\n{entry}"


class InsightNotes:
    """Reads and maintains persona insight notes.

    Example:
        notes = InsightNotes(cache, records, settings.memory)
        await notes.record_exchange("u-1", "product_owner", "Product Owner", q, a)
        context = await notes.persona_context("u-1", "product_owner", "Product Owner", "home")
    """

    def __init__(
        self,
        cache: RedisClient,
        records: LearnerRecords,
        settings: MemorySettings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._cache = cache
        self._records = records
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._insights_ttl = ttl_seconds(TTLClass.INSIGHTS, settings)
        self._context_ttl = ttl_seconds(TTLClass.CONTEXT, settings)

    async def get_note(self, user_id: str, persona_id: str, agent_role: str) -> Optional[str]:
        """Return a persona's note about a user, through the insights cache."""
        key = insights_key(user_id, persona_id)
        try:
            cached = await call_external("insights_cache_get", lambda: self._cache.get(key), self._policy)
            if isinstance(cached, str):
                return cached or None
        except TRANSIENT_ERRORS as e:
            logger.warning("insights_cache_read_failed", key=key, error=str(e))

        try:
            note = await call_external(
                "insight_note_get",
                lambda: self._records.get_insight_note(user_id, agent_role),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("insight_note_read_failed", user_id=user_id, persona_id=persona_id, error=str(e))
            return None

        text = note.insights if note else ""
        await self._cache_set(key, text, self._insights_ttl)
        return text or None

    async def record_exchange(
        self,
        user_id: str,
        persona_id: str,
        agent_role: str,
        question: str,
        answer: str,
    ) -> Optional[InsightNote]:
        """Append an exchange to the persona's note.

        Failures are logged and return None; a lost note line never fails
        the chat request.
        """
        try:
            existing = await call_external(
                "insight_note_get",
                lambda: self._records.get_insight_note(user_id, agent_role),
                self._policy,
            )
            text = append_to_note(existing.insights if existing else "", question, answer)
            note = await call_external(
                "insight_note_save",
                lambda: self._records.save_insight_note(user_id, persona_id, agent_role, text),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("insight_note_save_failed", user_id=user_id, persona_id=persona_id, error=str(e))
            return None

        await self._cache_set(insights_key(user_id, persona_id), note.insights, self._insights_ttl)
        # Cross-agent notes of every persona context may have changed
        await self.invalidate_context(user_id)
        logger.debug("insight_note_saved", user_id=user_id, persona_id=persona_id, length=len(text))
        return note

    async def cross_agent_notes(self, user_id: str, agent_role: str) -> list[str]:
        """Return previews of other personas' notes about a user.

        At most two personas with notes longer than 50 characters are
        included, each cut to its first 120 characters.
        """
        try:
            notes = await call_external(
                "insight_notes_list",
                lambda: self._records.list_insight_notes(user_id),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("cross_agent_notes_failed", user_id=user_id, error=str(e))
            return []

        previews = []
        for note in notes:
            if note.agent_role.lower() == agent_role.lower():
                continue
            if len(note.insights) > CROSS_AGENT_MIN_CHARS:
                previews.append(f"{note.agent_role}: {note.insights[:CROSS_AGENT_PREVIEW_CHARS]}...")
            if len(previews) == CROSS_AGENT_LIMIT:
                break
        return previews

    async def persona_context(
        self,
        user_id: str,
        persona_id: str,
        agent_role: str,
        task_id: str,
    ) -> str:
        """Build the persona's own and cross-agent notes as prompt text.

        Cached for the context TTL under ``ctx:{user}:{persona}:{task}``.
        """
        key = context_key(user_id, persona_id, task_id)
        try:
            cached = await call_external("persona_context_get", lambda: self._cache.get(key), self._policy)
            if isinstance(cached, str):
                return cached
        except TRANSIENT_ERRORS as e:
            logger.warning("persona_context_cache_read_failed", key=key, error=str(e))

        parts = []
        own = await self.get_note(user_id, persona_id, agent_role)
        if own:
            parts.append(f"YOUR PREVIOUS INSIGHTS WITH THIS STUDENT:\n{own}")
        cross = await self.cross_agent_notes(user_id, agent_role)
        if cross:
            parts.append("INSIGHTS FROM OTHER TEAM MEMBERS:\n" + "\n".join(f"- {c}" for c in cross))

        text = "\n\n".join(parts)
        await self._cache_set(key, text, self._context_ttl)
        return text

    async def invalidate_context(self, user_id: str) -> int:
        """Drop every cached persona context of a user."""
        prefix = context_prefix(user_id)
        try:
            return await call_external(
                "persona_context_invalidate",
                lambda: self._cache.delete_by_prefix(prefix),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("persona_context_invalidate_failed", user_id=user_id, error=str(e))
            return 0

    async def _cache_set(self, key: str, value: str, ttl: Optional[int]) -> None:
        try:
            await call_external(
                "insights_cache_set",
                lambda: self._cache.set(key, value, ttl_seconds=ttl),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("insights_cache_write_failed", key=key, error=str(e))

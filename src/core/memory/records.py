# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learner record repository over the document store.

Durable records live in three collections, each keyed by user:

    chat_messages/{user}/{task}_{subtask}_{step}
        {"messages": [...], "message_count": int}
    user_progress/{user}/{task}
        {"name", "is_completed", "subtasks": {sub: {"name", "is_completed",
         "steps": {step: {"step", "student_response", "is_completed",
         "completed_at"}}}}}
    agent_insights/{user}/{persona_slug}
        {"agent_role", "persona_id", "insights"}

Every write stamps the document's ``updated_at``; the semantic memory uses
``has_changes_since`` over these collections to decide when to re-embed.
Records that fail validation are skipped with a warning so one bad document
never aborts a whole load.
"""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from src.core.memory.models import (
    ChatRecord,
    InsightNote,
    ProgressRecord,
    StepKey,
    UserMemoryData,
)
from src.infrastructure.documents.store import Document, SQLDocumentStore
from src.utils.datetime import format_iso, utc_now
from src.utils.logging import get_logger

logger = get_logger(__name__)

CHAT_COLLECTION = "chat_messages"
PROGRESS_COLLECTION = "user_progress"
INSIGHT_COLLECTION = "agent_insights"

MEMORY_COLLECTIONS = [CHAT_COLLECTION, PROGRESS_COLLECTION, INSIGHT_COLLECTION]


def persona_slug(role: str) -> str:
    """Document id of a persona's insight note: whitespace to ``_``, lowercase."""
    return re.sub(r"\s+", "_", role.strip()).lower()


class LearnerRecords:
    """Reads and writes a learner's chat, progress and insight records.

    Example:
        records = LearnerRecords(SQLDocumentStore(sessionmaker))
        await records.add_chat_message(key, ChatRecord(...))
        data = await records.load_user_data("u-1")
    """

    def __init__(self, store: SQLDocumentStore) -> None:
        self._store = store

    # ========== Chat messages ==========

    async def add_chat_message(self, key: StepKey, message: ChatRecord) -> None:
        """Append a message to a step's chat document.

        Raises:
            DatabaseError: If the write fails.
        """
        item = message.model_copy(update={"context_id": key.context_id})
        await self._store.append_to_array(
            CHAT_COLLECTION,
            key.user_id,
            key.context_id,
            field="messages",
            item=item.model_dump(mode="json"),
            counter_field="message_count",
            unique_by="id",
        )

    async def get_chat_messages(self, key: StepKey) -> list[ChatRecord]:
        """Return a step's chat messages in write order."""
        document = await self._store.get(CHAT_COLLECTION, key.user_id, key.context_id)
        if document is None:
            return []
        return self._parse_messages(document)

    async def get_chat_summary(self, key: StepKey) -> dict[str, Any]:
        """Return message count and last write time of a step chat."""
        document = await self._store.get(CHAT_COLLECTION, key.user_id, key.context_id)
        if document is None:
            return {"chat_message_count": 0, "last_chat_at": None}
        return {
            "chat_message_count": int(document.data.get("message_count") or 0),
            "last_chat_at": format_iso(document.updated_at),
        }

    async def reset_chat_history(self, key: StepKey) -> None:
        """Empty a step's chat document."""
        await self._store.set(
            CHAT_COLLECTION,
            key.user_id,
            key.context_id,
            {"messages": [], "message_count": 0},
        )

    async def list_conversations(self, user_id: str) -> list[ChatRecord]:
        """Return every chat message of a user across all steps."""
        documents = await self._store.list(CHAT_COLLECTION, user_id)
        messages: list[ChatRecord] = []
        for document in documents:
            messages.extend(self._parse_messages(document))
        return messages

    def _parse_messages(self, document: Document) -> list[ChatRecord]:
        messages: list[ChatRecord] = []
        for raw in document.data.get("messages") or []:
            try:
                record = ChatRecord.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "chat_message_malformed",
                    user_id=document.user_id,
                    context_id=document.doc_id,
                    error=str(e),
                )
                continue
            if not record.context_id:
                record = record.model_copy(update={"context_id": document.doc_id})
            messages.append(record)
        return messages

    # ========== Progress ==========

    async def save_step_progress(
        self,
        user_id: str,
        task_id: str,
        subtask_id: str,
        step_id: str,
        step: str,
        student_response: str,
        is_completed: bool = True,
        task_name: Optional[str] = None,
        subtask_name: Optional[str] = None,
        subtask_completed: Optional[bool] = None,
        task_completed: Optional[bool] = None,
    ) -> ProgressRecord:
        """Record a student's submission for a step.

        Args:
            user_id: Owning user.
            task_id: Task id.
            subtask_id: Subtask id.
            step_id: Step id.
            step: Human-readable step label.
            student_response: The submitted answer.
            is_completed: Whether the step passed validation.
            task_name: Task display name.
            subtask_name: Subtask display name.
            subtask_completed: New completion flag of the subtask, if known.
            task_completed: New completion flag of the task, if known.

        Returns:
            The stored progress record.

        Raises:
            DatabaseError: If the write fails.
        """
        existing = await self._store.get(PROGRESS_COLLECTION, user_id, task_id)
        data: dict[str, Any] = dict(existing.data) if existing else {}
        now = utc_now()

        subtasks = dict(data.get("subtasks") or {})
        subtask = dict(subtasks.get(subtask_id) or {})
        steps = dict(subtask.get("steps") or {})
        steps[step_id] = {
            "step": step,
            "student_response": student_response,
            "is_completed": is_completed,
            "completed_at": format_iso(now) if is_completed else None,
        }
        subtask["steps"] = steps
        if subtask_name:
            subtask["name"] = subtask_name
        if subtask_completed is not None:
            subtask["is_completed"] = subtask_completed
        subtasks[subtask_id] = subtask

        data["subtasks"] = subtasks
        if task_name:
            data["name"] = task_name
        if task_completed is not None:
            data["is_completed"] = task_completed

        document = await self._store.set(PROGRESS_COLLECTION, user_id, task_id, data)
        return ProgressRecord(
            task_id=task_id,
            subtask_id=subtask_id,
            step_id=step_id,
            step=step,
            student_response=student_response,
            is_completed=is_completed,
            completed_at=now if is_completed else None,
            updated_at=document.updated_at,
        )

    async def list_progress(self, user_id: str) -> list[ProgressRecord]:
        """Return every step submission of a user that has a response."""
        records: list[ProgressRecord] = []
        for document in await self._store.list(PROGRESS_COLLECTION, user_id):
            for subtask_id, step_id, raw in self._iter_steps(document):
                if not raw.get("student_response"):
                    continue
                try:
                    records.append(
                        ProgressRecord(
                            task_id=document.doc_id,
                            subtask_id=subtask_id,
                            step_id=step_id,
                            step=raw.get("step") or step_id,
                            student_response=raw["student_response"],
                            is_completed=bool(raw.get("is_completed")),
                            completed_at=raw.get("completed_at"),
                            updated_at=document.updated_at,
                        )
                    )
                except ValidationError as e:
                    logger.warning(
                        "progress_record_malformed",
                        user_id=user_id,
                        task_id=document.doc_id,
                        step_id=step_id,
                        error=str(e),
                    )
        return records

    def _iter_steps(self, document: Document):
        subtasks = document.data.get("subtasks")
        if not isinstance(subtasks, dict):
            if subtasks is not None:
                logger.warning(
                    "progress_document_malformed",
                    user_id=document.user_id,
                    task_id=document.doc_id,
                )
            return
        for subtask_id, subtask in subtasks.items():
            steps = subtask.get("steps") if isinstance(subtask, dict) else None
            if not isinstance(steps, dict):
                continue
            for step_id, raw in steps.items():
                if isinstance(raw, dict):
                    yield subtask_id, step_id, raw

    async def completed_progress_text(self, user_id: str) -> Optional[str]:
        """Render the user's completed work as an indented checklist.

        Returns:
            One line per task, subtask and completed step, or None when the
            user has not completed any step.
        """
        lines: list[str] = []
        for document in await self._store.list(PROGRESS_COLLECTION, user_id):
            data = document.data
            task_lines: list[str] = []
            for subtask_id, subtask in (data.get("subtasks") or {}).items():
                if not isinstance(subtask, dict):
                    continue
                step_lines = [
                    f'    ✅ Step "{raw.get("step") or step_id}": '
                    f'{str(raw["student_response"])[:150]}...'
                    for step_id, raw in (subtask.get("steps") or {}).items()
                    if isinstance(raw, dict)
                    and raw.get("is_completed")
                    and raw.get("student_response")
                ]
                if not step_lines:
                    continue
                name = subtask.get("name") or subtask_id
                marker = "✅ Completed Subtask" if subtask.get("is_completed") else "Subtask"
                task_lines.append(f"  {marker}: {name}")
                task_lines.extend(step_lines)
            if not task_lines:
                continue
            name = data.get("name") or document.doc_id
            marker = "✅ Completed Task" if data.get("is_completed") else "Task"
            lines.append(f"{marker}: {name}")
            lines.extend(task_lines)
        return "\n".join(lines) if lines else None

    # ========== Insight notes ==========

    async def get_insight_note(self, user_id: str, agent_role: str) -> Optional[InsightNote]:
        """Return a persona's note about a user, if any."""
        document = await self._store.get(INSIGHT_COLLECTION, user_id, persona_slug(agent_role))
        return self._parse_insight(document) if document else None

    async def save_insight_note(
        self,
        user_id: str,
        persona_id: str,
        agent_role: str,
        insights: str,
    ) -> InsightNote:
        """Replace a persona's note about a user.

        Raises:
            DatabaseError: If the write fails.
        """
        document = await self._store.set(
            INSIGHT_COLLECTION,
            user_id,
            persona_slug(agent_role),
            {"agent_role": agent_role, "persona_id": persona_id, "insights": insights},
        )
        return InsightNote(
            persona_id=persona_id,
            agent_role=agent_role,
            insights=insights,
            updated_at=document.updated_at,
        )

    async def list_insight_notes(self, user_id: str) -> list[InsightNote]:
        """Return every non-empty persona note about a user."""
        notes = []
        for document in await self._store.list(INSIGHT_COLLECTION, user_id):
            note = self._parse_insight(document)
            if note is not None and note.insights:
                notes.append(note)
        return notes

    def _parse_insight(self, document: Document) -> Optional[InsightNote]:
        try:
            return InsightNote(
                persona_id=document.data.get("persona_id") or document.doc_id,
                agent_role=document.data.get("agent_role") or document.doc_id,
                insights=document.data.get("insights") or "",
                updated_at=document.updated_at,
            )
        except ValidationError as e:
            logger.warning(
                "insight_note_malformed",
                user_id=document.user_id,
                doc_id=document.doc_id,
                error=str(e),
            )
            return None

    # ========== Aggregates ==========

    async def has_changes_since(self, user_id: str, since: datetime) -> bool:
        """Check whether any chat, progress or insight record changed after a time."""
        return await self._store.exists_modified_since(user_id, since, MEMORY_COLLECTIONS)

    async def load_user_data(self, user_id: str) -> UserMemoryData:
        """Load everything the semantic memory embeds for a user.

        ``loaded_at`` is taken before the first read, so a write racing with
        the load is always newer than it.
        """
        loaded_at = utc_now()
        data = UserMemoryData(
            progress=await self.list_progress(user_id),
            conversations=await self.list_conversations(user_id),
            insights=await self.list_insight_notes(user_id),
            loaded_at=loaded_at,
        )
        logger.debug(
            "user_data_loaded",
            user_id=user_id,
            progress=len(data.progress),
            conversations=len(data.conversations),
            insights=len(data.insights),
        )
        return data

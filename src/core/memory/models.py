# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for the tiered conversational memory.

Tier 1 (step buffer) state is serialized into the cache store as JSON via
``model_dump(mode="json")``; Tier 2 chunks live in the vector index with
their fields flattened into the point payload.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.utils.datetime import utc_now


class TurnRole(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    AGENT = "agent"


class ContentType(str, Enum):
    """Kind of learner artifact a memory chunk was built from."""

    PROGRESS = "progress"
    CONVERSATION = "conversation"
    INSIGHT = "insight"


class StepPhase(str, Enum):
    """Lifecycle phase of a step buffer."""

    EMPTY = "empty"
    ACTIVE = "active"
    SUMMARIZED = "summarized"


class ConversationTurn(BaseModel):
    """A single message in a step conversation.

    Turns are immutable once written.

    Attributes:
        id: Unique turn id.
        role: Who wrote the turn.
        content: Message text.
        persona_id: Persona that authored an agent turn.
        timestamp: Write time (UTC).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: TurnRole
    content: str
    persona_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class StepKey(BaseModel):
    """Address of a curriculum step conversation for one user."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    task_id: str = Field(..., min_length=1)
    subtask_id: str = Field(..., min_length=1)
    step_id: str = Field(..., min_length=1)

    @property
    def context_id(self) -> str:
        """Document id of the step conversation: ``{task}_{subtask}_{step}``."""
        return f"{self.task_id}_{self.subtask_id}_{self.step_id}"


class StepMemoryState(BaseModel):
    """Rolling window plus summary of one step conversation.

    Attributes:
        key: The step this state belongs to.
        recent_turns: Turns kept verbatim, oldest first.
        rolling_summary: Summary of turns folded out of the window.
        last_accessed: Time of the last read or write.
    """

    key: StepKey
    recent_turns: list[ConversationTurn] = Field(default_factory=list)
    rolling_summary: str = ""
    last_accessed: datetime = Field(default_factory=utc_now)

    @property
    def phase(self) -> StepPhase:
        """Current lifecycle phase derived from the stored content."""
        if self.rolling_summary:
            return StepPhase.SUMMARIZED
        if self.recent_turns:
            return StepPhase.ACTIVE
        return StepPhase.EMPTY

    @classmethod
    def empty(cls, key: StepKey) -> "StepMemoryState":
        """Build the zero-value state for a step."""
        return cls(key=key)


class MemoryChunk(BaseModel):
    """A bounded span of learner history with its embedding.

    Attributes:
        id: Point id in the vector index.
        user_id: Owning user.
        content: Chunk text.
        content_type: Source artifact kind.
        persona_id: Persona involved, if any.
        step_id: Curriculum step the artifact belongs to, if any.
        generation: Refresh that wrote the chunk; "incremental" for single
            exchanges recorded between refreshes.
        embedding: Embedding vector.
        metadata: Extra payload fields.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    content: str
    content_type: ContentType
    persona_id: Optional[str] = None
    step_id: Optional[str] = None
    generation: str = "incremental"
    embedding: list[float] = Field(default_factory=list, repr=False)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScoredChunk(BaseModel):
    """A memory chunk returned by similarity search."""

    chunk: MemoryChunk
    similarity: float


class FreshnessMarker(BaseModel):
    """Bookkeeping record for a user's semantic memory.

    Attributes:
        user_id: Owning user.
        last_embedded_at: Time the last successful refresh started reading.
        last_seen_step_id: Step the user was on at that refresh.
        generation: Id of the refresh whose chunks are current.
        chunk_count: Number of chunks that refresh wrote.
    """

    user_id: str
    last_embedded_at: datetime
    last_seen_step_id: Optional[str] = None
    generation: Optional[str] = None
    chunk_count: int = 0


class ProgressRecord(BaseModel):
    """A student's submission for one curriculum step."""

    task_id: str
    subtask_id: str
    step_id: str
    step: str = ""
    student_response: str = ""
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InsightNote(BaseModel):
    """Running notes a persona keeps about a student."""

    persona_id: str
    agent_role: str
    insights: str = ""
    updated_at: Optional[datetime] = None


class ChatRecord(BaseModel):
    """A durable chat message as stored in the learner records."""

    id: str
    role: TurnRole
    content: str
    persona_id: Optional[str] = None
    persona_name: Optional[str] = None
    timestamp: datetime
    context_id: str = ""


class UserMemoryData(BaseModel):
    """Everything the semantic index embeds for one user.

    Attributes:
        progress: All progress records.
        conversations: All chat messages across steps.
        insights: All persona insight notes.
        loaded_at: Time the data was read from the learner records.
    """

    progress: list[ProgressRecord] = Field(default_factory=list)
    conversations: list[ChatRecord] = Field(default_factory=list)
    insights: list[InsightNote] = Field(default_factory=list)
    loaded_at: datetime = Field(default_factory=utc_now)


PROJECT_CONTEXT_START = "=== PROJECT CONTEXT ==="
PROJECT_CONTEXT_END = "=== END PROJECT CONTEXT ==="
PREVIOUS_WORK_START = "=== STUDENT'S PREVIOUS WORK ==="
PREVIOUS_WORK_END = "=== END PREVIOUS WORK ==="
CONVERSATIONS_START = "=== RELEVANT PAST CONVERSATIONS ==="
CONVERSATIONS_END = "=== END PAST CONVERSATIONS ==="
INSIGHTS_START = "=== RELEVANT AGENT INSIGHTS ==="
INSIGHTS_END = "=== END AGENT INSIGHTS ==="
DEGRADED_MARKER = "=== MEMORY UNAVAILABLE (degraded context) ==="
TRUNCATION_NOTICE = "\n\n... (Context truncated due to length) ..."

SECTION_MARKERS = (
    (PREVIOUS_WORK_START, PREVIOUS_WORK_END),
    (CONVERSATIONS_START, CONVERSATIONS_END),
    (INSIGHTS_START, INSIGHTS_END),
)
SECTION_START_MARKERS = tuple(start for start, _ in SECTION_MARKERS)


def format_snippet(scored: ScoredChunk) -> str:
    """Render one retrieved chunk as a bullet line."""
    return f"• {scored.chunk.content} (Similarity: {scored.similarity:.2f})"


class AssembledContext(BaseModel):
    """Merged knowledge handed to persona prompt construction.

    Attributes:
        project_knowledge: Domain-knowledge text, never truncated.
        progress_snippets: Scored progress chunks.
        conversation_snippets: Scored conversation chunks.
        insight_snippets: Scored insight chunks.
        degraded: True when semantic memory was unavailable.
    """

    project_knowledge: str = ""
    progress_snippets: list[ScoredChunk] = Field(default_factory=list)
    conversation_snippets: list[ScoredChunk] = Field(default_factory=list)
    insight_snippets: list[ScoredChunk] = Field(default_factory=list)
    degraded: bool = False

    @property
    def has_memory(self) -> bool:
        """True when any semantic snippet was retrieved."""
        return bool(self.progress_snippets or self.conversation_snippets or self.insight_snippets)

    def knowledge_section(self) -> str:
        """The project-knowledge block, with the degraded label if set."""
        section = f"{PROJECT_CONTEXT_START}\n{self.project_knowledge.strip()}\n{PROJECT_CONTEXT_END}"
        if self.degraded:
            return f"{DEGRADED_MARKER}\n{section}"
        return section

    def memory_blocks(self) -> list[tuple[str, list[str], str]]:
        """The non-empty memory blocks in fixed order as (start, bullets, end)."""
        blocks = []
        for (start, end), snippets in zip(
            SECTION_MARKERS,
            (self.progress_snippets, self.conversation_snippets, self.insight_snippets),
        ):
            if snippets:
                blocks.append((start, [format_snippet(s) for s in snippets], end))
        return blocks

    def render(self, budget: int) -> str:
        """Serialize to one string of at most ``budget`` characters.

        The project-knowledge block is always kept whole. Memory blocks are
        kept in order while they fit. The first block that does not fit
        keeps as many whole bullets as fit between its start and end
        markers, later blocks are dropped, and the truncation notice is
        appended.

        Args:
            budget: Character budget.

        Returns:
            The bounded context text.
        """
        head = self.knowledge_section()
        blocks = self.memory_blocks()
        sections = ["\n".join([start, *bullets, end]) for start, bullets, end in blocks]
        full = "\n\n".join([head, *sections])
        if len(full) <= budget:
            return full

        remaining = budget - len(head)
        kept: list[str] = []
        for section, (start, bullets, end) in zip(sections, blocks):
            if len(section) + 2 <= remaining:
                kept.append(section)
                remaining -= len(section) + 2
                continue

            # Separator and both markers come first
            room = remaining - (2 + len(start) + 1 + len(end))
            fitted: list[str] = []
            for bullet in bullets:
                if len(bullet) + 1 > room:
                    break
                fitted.append(bullet)
                room -= len(bullet) + 1
            if fitted:
                kept.append("\n".join([start, *fitted, end]))
            break

        return "\n\n".join([head, *kept]) + TRUNCATION_NOTICE


class ChatReply(BaseModel):
    """Result of handling one inbound chat message."""

    persona_id: str
    persona_name: str
    content: str
    message_id: str
    context: AssembledContext
    timestamp: datetime = Field(default_factory=utc_now)

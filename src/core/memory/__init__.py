# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tiered conversational memory for the tutoring chat.

This package implements a two-tier memory:
- Step buffer (Tier 1): Rolling window plus summary of the current step
  conversation, kept in the cache store
- Semantic memory (Tier 2): The user's whole learning history embedded
  into the vector index, refreshed when it goes stale

Around the tiers sit the learner records (durable source of truth),
persona insight notes, project knowledge retrieval and the context
assembler that merges everything for one message.

Example:
    from src.core.memory import MemoryManager, StepKey

    manager = MemoryManager(settings, cache, qdrant, store, llm, embedder)

    key = StepKey(
        user_id="u-1",
        task_id="stakeholder_identification_analysis",
        subtask_id="stakeholder_identification",
        step_id="comprehensive_stakeholder_list",
    )
    state = await manager.step_buffer.load(key)
    context = await manager.assembler.assemble("u-1", "product_owner", "...", key.step_id)
"""

from src.core.memory.assembler import ContextAssembler
from src.core.memory.insights import InsightNotes
from src.core.memory.knowledge import ProjectKnowledgeRetriever
from src.core.memory.manager import MemoryManager
from src.core.memory.models import (
    AssembledContext,
    ChatRecord,
    ChatReply,
    ContentType,
    ConversationTurn,
    FreshnessMarker,
    MemoryChunk,
    ScoredChunk,
    StepKey,
    StepMemoryState,
    StepPhase,
    TurnRole,
)
from src.core.memory.records import LearnerRecords
from src.core.memory.semantic_index import SemanticMemoryIndex
from src.core.memory.step_buffer import StepBufferMemory

__all__ = [
    # Components
    "ContextAssembler",
    "InsightNotes",
    "LearnerRecords",
    "MemoryManager",
    "ProjectKnowledgeRetriever",
    "SemanticMemoryIndex",
    "StepBufferMemory",
    # Models
    "AssembledContext",
    "ChatRecord",
    "ChatReply",
    "ContentType",
    "ConversationTurn",
    "FreshnessMarker",
    "MemoryChunk",
    "ScoredChunk",
    "StepKey",
    "StepMemoryState",
    "StepPhase",
    "TurnRole",
]

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache key builders and TTL classes for the memory core.

Every key starts with a kind prefix followed by the user id, so all cache
entries are user-namespaced:

    conv:{user}:{task}_{subtask}_{step}   step buffer state       24h
    ctx:{user}:{persona}:{task}           derived persona context  5m
    user:{user}:data                      aggregated learner data  4h
    insights:{user}:{persona}             persona insight notes    1h
    memory:{user}:freshness               freshness marker         no expiry
"""

from enum import Enum
from typing import Optional

from src.core.config.settings import MemorySettings
from src.core.memory.models import StepKey


class TTLClass(str, Enum):
    """Lifetime classes of cache entries."""

    CONVERSATION = "conversation"
    CONTEXT = "context"
    USER_DATA = "user_data"
    INSIGHTS = "insights"
    BOOKKEEPING = "bookkeeping"


def ttl_seconds(ttl_class: TTLClass, settings: MemorySettings) -> Optional[int]:
    """Resolve a TTL class to seconds.

    Args:
        ttl_class: Lifetime class of the entry.
        settings: Memory settings holding the configured TTLs.

    Returns:
        TTL in seconds, or None for entries that never expire.
    """
    if ttl_class is TTLClass.CONVERSATION:
        return settings.conversation_ttl_seconds
    if ttl_class is TTLClass.CONTEXT:
        return settings.context_ttl_seconds
    if ttl_class is TTLClass.USER_DATA:
        return settings.user_data_ttl_seconds
    if ttl_class is TTLClass.INSIGHTS:
        return settings.insights_ttl_seconds
    return None


def conversation_key(key: StepKey) -> str:
    """Key of a step buffer state."""
    return f"conv:{key.user_id}:{key.context_id}"


def context_key(user_id: str, persona_id: str, task_id: str) -> str:
    """Key of the cached persona context for a task."""
    return f"ctx:{user_id}:{persona_id}:{task_id}"


def context_prefix(user_id: str) -> str:
    """Prefix matching every persona context entry of a user."""
    return f"ctx:{user_id}:"


def user_data_key(user_id: str) -> str:
    """Key of the aggregated learner data cache."""
    return f"user:{user_id}:data"


def insights_key(user_id: str, persona_id: str) -> str:
    """Key of a persona's cached insight note."""
    return f"insights:{user_id}:{persona_id}"


def insights_prefix(user_id: str) -> str:
    """Prefix matching every cached insight note of a user."""
    return f"insights:{user_id}:"


def freshness_key(user_id: str) -> str:
    """Key of the semantic memory freshness marker."""
    return f"memory:{user_id}:freshness"


def conversation_prefix(user_id: str) -> str:
    """Prefix matching every step buffer of a user."""
    return f"conv:{user_id}:"


def user_prefixes(user_id: str) -> list[str]:
    """All key prefixes owned by a user."""
    return [
        conversation_prefix(user_id),
        context_prefix(user_id),
        insights_prefix(user_id),
        f"user:{user_id}:",
        f"memory:{user_id}:",
    ]

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Timeouts, retries and per-key serialization for backend calls.

Every call the memory core makes to the cache, document store, vector
index, embedding or completion provider goes through ``call_external``:
the call is bounded by ``asyncio.wait_for`` and a transient failure is
retried with exponential backoff by tenacity before the error reaches the
component, which then applies its degraded mode.

Example:
    policy = RetryPolicy.from_settings(settings.memory)
    vector = await call_external(
        "embed_query",
        lambda: embedding_service.embed_text(query),
        policy,
    )
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config.settings import MemorySettings
from src.core.intelligence.embeddings.service import EmbeddingError
from src.core.intelligence.llm.client import LLMError
from src.infrastructure.cache.redis_client import RedisError
from src.infrastructure.database.connection import DatabaseError
from src.infrastructure.vectors.qdrant_client import QdrantError
from src.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Failures worth a second attempt. Programming errors are not retried.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    ConnectionError,
    RedisError,
    QdrantError,
    DatabaseError,
    EmbeddingError,
    LLMError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """How a backend call is bounded and retried.

    Attributes:
        attempts: Total attempts, including the first one.
        backoff_seconds: Multiplier of the exponential backoff.
        timeout_seconds: Timeout of a single attempt.
    """

    attempts: int = 2
    backoff_seconds: float = 0.5
    timeout_seconds: float = 15.0

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> "RetryPolicy":
        """Build the policy from memory settings."""
        return cls(
            attempts=max(1, settings.retry_attempts),
            backoff_seconds=settings.retry_backoff_seconds,
            timeout_seconds=settings.external_timeout_seconds,
        )


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "external_call_retrying",
            operation=operation,
            attempt=state.attempt_number,
            error=str(error),
        )

    return before_sleep


async def call_external(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """Run a backend call with a timeout and retry on transient failure.

    Args:
        operation: Short name used in log events.
        func: Zero-argument callable returning a fresh awaitable per attempt.
        policy: Timeout and retry configuration.

    Returns:
        The call result.

    Raises:
        Exception: The last error once attempts are exhausted, or any
            non-transient error immediately.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.backoff_seconds, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_retry(operation),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await asyncio.wait_for(func(), timeout=policy.timeout_seconds)
    return result


class KeyedLocks:
    """Registry of asyncio locks created lazily per key.

    Locks are dropped again once no task holds or waits for them, so the
    registry only grows with the number of keys in active use.

    Example:
        locks = KeyedLocks()
        async with locks.hold("conv:u-1:home_intro_hello"):
            ...
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquire the lock for a key for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        """Check whether a task currently holds the lock for a key."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

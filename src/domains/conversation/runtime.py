# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Process lifecycle for the tutoring chat.

Connects the backends once, builds the memory manager and the chat
service over them, and closes everything on exit. Hosts (a web app, a
worker, a script) enter ``chat_runtime`` around their own lifetime.

Example:
    async with chat_runtime() as chat:
        reply = await chat.send_message(
            "u-1",
            "stakeholder_identification_analysis",
            "stakeholder_analysis_prioritization",
            "comprehensive_stakeholder_list",
            "Who are the key stakeholders?",
        )
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from src.core.config.settings import Settings, get_settings
from src.core.curriculum import get_curriculum
from src.core.intelligence.embeddings import EmbeddingService
from src.core.intelligence.llm import LLMClient
from src.core.memory.manager import MemoryManager
from src.core.personas import get_persona_manager
from src.domains.conversation.service import ChatService
from src.infrastructure.cache import close_redis, get_redis, init_redis
from src.infrastructure.database import (
    check_document_database_connection,
    close_document_database,
    get_document_sessionmaker,
    init_document_database,
)
from src.infrastructure.documents import SQLDocumentStore
from src.infrastructure.vectors import close_qdrant, get_qdrant, init_qdrant
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def chat_runtime(
    settings: Optional[Settings] = None,
    create_tables: bool = False,
) -> AsyncIterator[ChatService]:
    """Connect the backends and yield a ready chat service.

    Args:
        settings: Application settings. Defaults to the cached settings.
        create_tables: Whether to create the learner records table.

    Yields:
        ChatService wired to the connected backends.

    Raises:
        DatabaseError, RedisError, QdrantError: If a backend cannot be
            reached at startup. Backends already connected are closed.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    logger.info("Starting chat runtime (environment=%s)", settings.environment)

    try:
        await init_document_database(settings, create_tables=create_tables)
        await init_redis(settings)
        await init_qdrant(settings)

        llm = LLMClient(settings.llm)
        memory = MemoryManager(
            settings=settings,
            cache=get_redis(),
            qdrant_client=get_qdrant(),
            document_store=SQLDocumentStore(get_document_sessionmaker()),
            llm_client=llm,
            embedding_service=EmbeddingService(settings),
        )
        await memory.ensure_collections()

        chat = ChatService(
            memory=memory,
            personas=get_persona_manager(
                settings.persona.personas_dir,
                settings.persona.default_persona_id,
            ),
            curriculum=get_curriculum(),
            llm_client=llm,
            settings=settings,
        )
        yield chat
    finally:
        await close_qdrant()
        await close_redis()
        await close_document_database()
        logger.info("Chat runtime stopped")


async def check_backends() -> dict[str, bool]:
    """Report which backends of the running process are reachable.

    Returns:
        Mapping of backend name to reachability.
    """
    status = {"document_db": await check_document_database_connection()}
    try:
        status["redis"] = await get_redis().ping()
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        status["redis"] = False
    try:
        status["qdrant"] = await get_qdrant().ping()
    except Exception as e:
        logger.warning("Qdrant health check failed: %s", e)
        status["qdrant"] = False
    return status

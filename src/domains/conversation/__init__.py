# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Conversation domain services.

This module provides the tutoring chat service that routes student
messages to personas and keeps the tiered memory up to date, plus the
runtime that connects its backends.
"""

from src.domains.conversation.runtime import chat_runtime, check_backends
from src.domains.conversation.service import ChatService, ChatServiceError

__all__ = ["ChatService", "ChatServiceError", "chat_runtime", "check_backends"]

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Completion provider built on LiteLLM.

Example:
    >>> from src.core.intelligence.llm import LLMClient
    >>> client = LLMClient(get_settings().llm)
    >>> response = await client.complete("What is a stakeholder?")
    >>> print(response.content)
"""

from src.core.intelligence.llm.client import (
    LLMClient,
    LLMError,
    LLMResponse,
    Message,
)

__all__ = [
    "LLMClient",
    "LLMError",
    "LLMResponse",
    "Message",
]

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Common base for backend client exceptions."""

from typing import Optional


class BackendError(Exception):
    """A cache, document database or vector database call failed.

    Attributes:
        message: Human-readable error description.
        original_error: The library exception this error was raised from.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error is None:
            return self.message
        return f"{self.message}: {self.original_error}"

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Completion provider using LiteLLM for multi-provider support.

The memory core treats the language model as an opaque completion
provider: persona replies, conversation summaries, standalone-question
rewrites, routing decisions and welcome messages all go through
``LLMClient.complete``. Token counting for the step buffer budget uses
LiteLLM's tokenizer with a character-based fallback.

API keys and endpoints come from LLMSettings and are passed directly to
LiteLLM's acompletion() rather than through environment variables.

Example:
    >>> from src.core.intelligence.llm import LLMClient
    >>> client = LLMClient(get_settings().llm)
    >>> response = await client.complete(
    ...     "Summarize the stakeholder list",
    ...     system_prompt="You are Sarah Chen, Product Owner.",
    ... )
    >>> print(response.content)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import litellm
from litellm import acompletion, token_counter

from src.core.config.settings import LLMSettings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from an LLM completion.

    Attributes:
        content: The generated text content.
        model: The model that generated the response.
        tokens_input: Number of input tokens used.
        tokens_output: Number of output tokens generated.
        finish_reason: Why generation stopped (stop, length, etc.).
        raw_response: Original response object from LiteLLM.
    """

    content: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str = "stop"
    raw_response: Optional[object] = field(default=None, repr=False)

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.tokens_input + self.tokens_output


class LLMError(Exception):
    """Exception raised when an LLM operation fails.

    Attributes:
        message: Error description.
        model: Model that caused the error.
        original_error: Original exception if any.
    """

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.model = model
        self.original_error = original_error
        super().__init__(self.message)


@dataclass
class Message:
    """A message in a conversation.

    Attributes:
        role: Message role (system, user, assistant).
        content: Message text content.
    """

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary format for LiteLLM."""
        return {"role": self.role, "content": self.content}


class LLMClient:
    """Client for completions via LiteLLM.

    Attributes:
        model: Default model to use for completions.
        timeout: Request timeout in seconds.
        max_retries: Retry attempts delegated to LiteLLM.
        temperature: Default sampling temperature.
    """

    def __init__(
        self,
        settings: LLMSettings,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        """Initialize the LLM client.

        Args:
            settings: LLM provider settings.
            model: Default model in LiteLLM format. Falls back to the provider default.
            timeout: Request timeout in seconds. Falls back to settings.
            max_retries: LiteLLM retry attempts. Falls back to settings.
        """
        self._settings = settings
        self._model = model or settings.get_default_model()
        self._timeout = timeout or settings.request_timeout
        self._max_retries = settings.max_retries if max_retries is None else max_retries

        litellm.set_verbose = False
        litellm.drop_params = True

        logger.info(
            "LLMClient initialized with model=%s, timeout=%.1fs, max_retries=%d",
            self._model,
            self._timeout,
            self._max_retries,
        )

    @property
    def model(self) -> str:
        """Default model identifier in LiteLLM format."""
        return self._model

    @property
    def timeout(self) -> float:
        """Request timeout in seconds."""
        return self._timeout

    @property
    def max_retries(self) -> int:
        """Retry attempts delegated to LiteLLM."""
        return self._max_retries

    @property
    def temperature(self) -> float:
        """Default sampling temperature."""
        return self._settings.temperature

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        messages: Optional[list[Message]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 1024,
        **kwargs,
    ) -> LLMResponse:
        """Generate a completion for the given prompt.

        Args:
            prompt: User prompt text.
            system_prompt: Optional system prompt to set context.
            messages: Earlier conversation messages placed before the prompt.
            model: Override default model for this request.
            temperature: Sampling temperature. Falls back to settings.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional LiteLLM parameters.

        Returns:
            LLMResponse with generated content and metadata.

        Raises:
            LLMError: If generation fails.
            ValueError: If prompt is empty.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        chat_messages: list[dict[str, str]] = []
        if system_prompt:
            chat_messages.append({"role": "system", "content": system_prompt})
        if messages:
            chat_messages.extend(m.to_dict() for m in messages)
        chat_messages.append({"role": "user", "content": prompt})

        return await self.complete_with_messages(
            chat_messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

    async def complete_with_messages(
        self,
        messages: list[dict[str, Any]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 1024,
        **kwargs,
    ) -> LLMResponse:
        """Generate a completion from a list of OpenAI-format messages.

        Args:
            messages: Conversation messages with 'role' and 'content' keys.
            model: Override default model for this request.
            temperature: Sampling temperature. Falls back to settings.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional LiteLLM parameters.

        Returns:
            LLMResponse with generated content and metadata.

        Raises:
            LLMError: If completion fails.
            ValueError: If messages list is empty.
        """
        if not messages:
            raise ValueError("Messages list cannot be empty")

        use_model = model or self._model
        provider_params = self._settings.get_provider_params(use_model)

        try:
            response = await acompletion(
                model=use_model,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens,
                timeout=self._timeout,
                num_retries=self._max_retries,
                **provider_params,
                **kwargs,
            )
        except Exception as e:
            logger.error(
                "Completion failed: model=%s, messages=%d, error=%s",
                use_model,
                len(messages),
                str(e),
            )
            raise LLMError(
                message=f"Completion failed: {str(e)}",
                model=use_model,
                original_error=e,
            ) from e

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        result = LLMResponse(
            content=(choice.message.content or "").strip(),
            model=use_model,
            tokens_input=getattr(usage, "prompt_tokens", 0) or 0,
            tokens_output=getattr(usage, "completion_tokens", 0) or 0,
            finish_reason=choice.finish_reason or "stop",
            raw_response=response,
        )

        logger.debug(
            "Completion generated: model=%s, tokens_in=%d, tokens_out=%d",
            use_model,
            result.tokens_input,
            result.tokens_output,
        )
        return result

    def count_tokens(self, text: str, model: Optional[str] = None) -> int:
        """Count the number of tokens in a text.

        Uses LiteLLM's token counter, which picks the tokenizer by model.

        Args:
            text: Text to count tokens for.
            model: Model to use for tokenization.

        Returns:
            Number of tokens.
        """
        if not text:
            return 0
        try:
            return token_counter(model=model or self._model, text=text)
        except Exception:
            # Roughly 4 characters per token on average
            return len(text) // 4

    def __repr__(self) -> str:
        return f"LLMClient(model={self._model!r}, timeout={self._timeout})"

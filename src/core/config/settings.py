# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the
StepWise memory core. Settings are loaded from environment variables with
sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.memory.buffer_token_limit)
    2000
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Repository root, used to locate the bundled YAML configuration
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


class DocumentDatabaseSettings(BaseSettings):
    """Document database configuration for durable learner records.

    Chat turns, progress submissions and persona insight notes are stored
    as JSON documents in a single PostgreSQL table.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        dsn: Optional full SQLAlchemy URL, overrides the components.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCUMENT_DB_",
        extra="ignore",
    )

    user: str = "stepwise"
    password: SecretStr = SecretStr("stepwise_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "stepwise"
    dsn: str | None = None
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for conversation state and derived caches.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is not None:
            pwd = self.password.get_secret_value()
            return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"
        return f"redis://{self.host}:{self.port}/{self.database}"


class QdrantSettings(BaseSettings):
    """Qdrant vector database configuration.

    Attributes:
        host: Qdrant server host.
        http_port: HTTP API port.
        grpc_port: gRPC API port.
        api_key: Optional API key for authentication.
        prefer_grpc: Whether to prefer gRPC over HTTP.
        timeout: Request timeout in seconds.
        memory_collection: Collection holding per-user memory chunks.
        knowledge_collection: Shared collection holding project documents.
    """

    model_config = SettingsConfigDict(
        env_prefix="QDRANT_",
        extra="ignore",
    )

    host: str = "localhost"
    http_port: int = 6333
    grpc_port: int = 6334
    api_key: SecretStr | None = None
    prefer_grpc: bool = False
    timeout: float = 30.0
    memory_collection: str = "user_memory_chunks"
    knowledge_collection: str = "project_documents"

    @property
    def url(self) -> str:
        """Build the Qdrant HTTP URL."""
        return f"http://{self.host}:{self.http_port}"


class LLMSettings(BaseSettings):
    """LLM provider configuration using LiteLLM.

    Persona replies, summaries and routing run on a local Ollama model by
    default; OpenAI and Anthropic are selectable. LiteLLM routes on the
    model prefix.

    Attributes:
        default_provider: Default LLM provider to use.
        ollama_base_url: Base URL for the Ollama server.
        ollama_api_key: API key for remote Ollama instances.
        ollama_default_model: Default Ollama model.
        openai_api_key: OpenAI API key.
        openai_default_model: Default OpenAI model.
        anthropic_api_key: Anthropic API key.
        anthropic_default_model: Default Anthropic model.
        temperature: Sampling temperature for chat replies.
        request_timeout: Request timeout in seconds.
        max_retries: Retry attempts delegated to LiteLLM.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    default_provider: Literal["ollama", "openai", "anthropic"] = Field(
        default="ollama",
        validation_alias="LLM_DEFAULT_PROVIDER",
    )

    # Ollama (local or remote)
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        validation_alias="OLLAMA_BASE_URL",
    )
    ollama_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="OLLAMA_API_KEY",
    )
    ollama_default_model: str = Field(
        default="qwen2.5:7b",
        validation_alias="OLLAMA_DEFAULT_MODEL",
    )

    # OpenAI
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
    )
    openai_default_model: str = Field(
        default="gpt-4o-mini",
        validation_alias="OPENAI_DEFAULT_MODEL",
    )

    # Anthropic
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="ANTHROPIC_API_KEY",
    )
    anthropic_default_model: str = Field(
        default="claude-3-5-sonnet-20241022",
        validation_alias="ANTHROPIC_DEFAULT_MODEL",
    )

    temperature: float = Field(default=0.0, validation_alias="LLM_TEMPERATURE")
    request_timeout: float = Field(default=60.0, validation_alias="LLM_REQUEST_TIMEOUT")
    max_retries: int = Field(default=0, validation_alias="LLM_MAX_RETRIES")

    def get_default_model(self) -> str:
        """Get the default model for the configured provider.

        Returns:
            Model identifier string for the default provider.
        """
        models = {
            "ollama": f"ollama/{self.ollama_default_model}",
            "openai": self.openai_default_model,
            "anthropic": self.anthropic_default_model,
        }
        return models[self.default_provider]

    def get_provider_params(self, model: str) -> dict[str, str]:
        """Get api_base/api_key parameters for a LiteLLM model string.

        Args:
            model: Model string in LiteLLM format.

        Returns:
            Dictionary with api_base and/or api_key when configured.
        """
        params: dict[str, str] = {}
        if model.startswith(("ollama/", "ollama_chat/")):
            params["api_base"] = self.ollama_base_url
            if self.ollama_api_key:
                params["api_key"] = self.ollama_api_key.get_secret_value()
        elif model.startswith("claude"):
            if self.anthropic_api_key:
                params["api_key"] = self.anthropic_api_key.get_secret_value()
        elif self.openai_api_key:
            params["api_key"] = self.openai_api_key.get_secret_value()
        return params


class EmbeddingSettings(BaseSettings):
    """Embedding model configuration.

    Uses LiteLLM for API-based embedding generation, with a direct
    httpx path for Ollama endpoints.

    Attributes:
        model: Model name in LiteLLM format (e.g., 'ollama/nomic-embed-text').
        dimension: Vector dimension (must match model output).
        batch_size: Batch size for embedding generation.
        request_timeout: Timeout for a single embedding request in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        extra="ignore",
    )

    model: str = "ollama/nomic-embed-text"
    dimension: int = 768
    batch_size: int = 32
    request_timeout: float = 60.0


class MemorySettings(BaseSettings):
    """Tuning knobs for the tiered memory and context assembly.

    Attributes:
        buffer_token_limit: Token budget of the step buffer before folding.
        buffer_keep_recent: Turns kept verbatim after a fold.
        conversation_ttl_seconds: TTL of step conversation state.
        context_ttl_seconds: TTL of derived persona context.
        user_data_ttl_seconds: TTL of the aggregated learner data cache.
        insights_ttl_seconds: TTL of cached persona insight notes.
        chunk_size: Character size of memory chunks.
        chunk_overlap: Character overlap between consecutive chunks.
        embedding_concurrency: Embedding calls in flight during a refresh.
        similarity_threshold: Minimum similarity for search results.
        search_limit: Maximum number of search results.
        max_progress_snippets: Progress snippets kept by the assembler.
        max_conversation_snippets: Conversation snippets kept by the assembler.
        max_insight_snippets: Insight snippets kept by the assembler.
        context_char_budget: Character budget of the assembled context.
        knowledge_top_k: Project documents retrieved per query.
        external_timeout_seconds: Timeout applied to every backend call.
        retry_attempts: Total attempts for a transient backend failure.
        retry_backoff_seconds: Initial backoff between attempts.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_",
        extra="ignore",
    )

    buffer_token_limit: int = 2000
    buffer_keep_recent: int = 4
    conversation_ttl_seconds: int = 86400
    context_ttl_seconds: int = 300
    user_data_ttl_seconds: int = 14400
    insights_ttl_seconds: int = 3600
    chunk_size: int = 500
    chunk_overlap: int = 50
    embedding_concurrency: int = 10
    similarity_threshold: float = 0.3
    search_limit: int = 20
    max_progress_snippets: int = 10
    max_conversation_snippets: int = 15
    max_insight_snippets: int = 5
    context_char_budget: int = 8000
    knowledge_top_k: int = 3
    external_timeout_seconds: float = 15.0
    retry_attempts: int = 2
    retry_backoff_seconds: float = 0.5


class PersonaSettings(BaseSettings):
    """Persona roster and curriculum configuration.

    Attributes:
        personas_dir: Directory holding persona YAML files.
        curriculum_file: YAML file holding the task catalog.
        default_persona_id: Persona used when routing cannot decide.
        welcome_persona_id: Persona that introduces new steps.
    """

    model_config = SettingsConfigDict(
        env_prefix="PERSONA_",
        extra="ignore",
    )

    personas_dir: Path = PROJECT_ROOT / "config" / "personas"
    curriculum_file: Path = PROJECT_ROOT / "config" / "curriculum" / "tasks.yaml"
    default_persona_id: str = "business_analyst"
    welcome_persona_id: str = "project_guide"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        document_db: Document database settings.
        redis: Redis settings.
        qdrant: Qdrant settings.
        llm: LLM provider settings.
        embedding: Embedding model settings.
        memory: Memory tuning settings.
        persona: Persona and curriculum settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Subsettings - loaded with their own env prefixes
    document_db: DocumentDatabaseSettings = Field(default_factory=DocumentDatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    persona: PersonaSettings = Field(default_factory=PersonaSettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()

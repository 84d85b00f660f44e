"""
Configuration Management
========================

All tunables of the orchestration core live here and are read from the
environment (optionally via a .env file). Values are grouped into frozen
dataclasses and loaded once through get_config().

Sections:
    openai     - model names and credentials for completions/embeddings
    memory     - store location and context-assembly tunables
    execution  - timeouts, retry budgets and batch concurrency

Usage:
    from memagent.utils.config import get_config

    config = get_config()
    config.memory.max_results          # 10
    config.execution.tool_timeout      # 30.0
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from memagent.utils.logger import Logger

logger = Logger("Config")


def _required(name: str) -> str:
    """
    Get a required environment variable.

    Raises:
        ValueError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        raise ValueError(
            f"Missing required environment variable: {name}\n"
            f"Please ensure {name} is set in your .env file."
        )
    return value


def _optional(name: str, default: str) -> str:
    return os.getenv(name, default)


def _optional_int(name: str, default: int) -> int:
    """Read an integer, falling back to the default on absent or invalid values."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Read a float, falling back to the default on absent or invalid values."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"{name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI API configuration."""
    api_key: str | None     # Only needed when OpenAI-backed clients are built
    model: str              # Chat completion model
    embedding_model: str    # Embedding model for semantic memory
    base_url: str | None    # Alternative OpenAI-compatible endpoint


@dataclass(frozen=True)
class MemoryConfig:
    """Memory stores and context assembly."""
    directory: Path               # Where the episodic and vector stores persist
    persist: bool                 # False keeps both stores in process memory
    max_results: int              # Cap on episodic + semantic records per context
    similarity_threshold: float   # Minimum similarity for semantic hits
    recency_weight: float         # Episodic score weight for recency
    importance_weight: float      # Episodic score weight for metadata.importance
    candidate_limit: int          # Records fetched per store before ranking
    lookup_timeout: float         # Seconds per store lookup


@dataclass(frozen=True)
class ExecutionConfig:
    """Timeouts and retry budgets for external calls."""
    classification_timeout: float
    completion_timeout: float
    completion_retries: int
    tool_timeout: float
    tool_retries: int
    batch_concurrency: int
    classifier_temperature: float


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

        config = get_config()
        config.openai.model
        config.memory.similarity_threshold
        config.execution.batch_concurrency
    """
    openai: OpenAIConfig
    memory: MemoryConfig
    execution: ExecutionConfig
    log_level: str

    def require_openai_key(self) -> str:
        """Return the OpenAI key or fail the same way a missing required variable does."""
        if self.openai.api_key:
            return self.openai.api_key
        return _required("OPENAI_API_KEY")


def load_config() -> Config:
    """
    Load configuration from the environment.

    Reads .env first (without overriding variables already set), then
    builds every section with its defaults.
    """
    load_dotenv()

    return Config(
        openai=OpenAIConfig(
            api_key=os.getenv("OPENAI_API_KEY") or None,
            model=_optional("OPENAI_MODEL", "gpt-4o-mini"),
            embedding_model=_optional("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            base_url=os.getenv("OPENAI_BASE_URL") or None,
        ),
        memory=MemoryConfig(
            directory=Path(_optional("MEMORY_DIR", "data/memory")),
            persist=_optional_bool("MEMORY_PERSIST", True),
            max_results=_optional_int("MEMORY_MAX_RESULTS", 10),
            similarity_threshold=_optional_float("MEMORY_SIMILARITY_THRESHOLD", 0.7),
            recency_weight=_optional_float("MEMORY_RECENCY_WEIGHT", 0.5),
            importance_weight=_optional_float("MEMORY_IMPORTANCE_WEIGHT", 0.5),
            candidate_limit=_optional_int("MEMORY_CANDIDATE_LIMIT", 50),
            lookup_timeout=_optional_float("MEMORY_LOOKUP_TIMEOUT_SECONDS", 10.0),
        ),
        execution=ExecutionConfig(
            classification_timeout=_optional_float("CLASSIFICATION_TIMEOUT_SECONDS", 20.0),
            completion_timeout=_optional_float("COMPLETION_TIMEOUT_SECONDS", 60.0),
            completion_retries=_optional_int("COMPLETION_RETRIES", 1),
            tool_timeout=_optional_float("TOOL_TIMEOUT_SECONDS", 30.0),
            tool_retries=_optional_int("TOOL_RETRIES", 1),
            batch_concurrency=_optional_int("BATCH_CONCURRENCY", 4),
            classifier_temperature=_optional_float("CLASSIFIER_TEMPERATURE", 0.1),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Forget the loaded configuration so the next get_config() re-reads the environment."""
    global _config_instance
    _config_instance = None

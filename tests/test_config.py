"""Tests for environment-driven configuration.

Coverage:
- Defaults when nothing is set
- Overrides and invalid numeric values
- Singleton reset
- OpenAI key requirement
"""

from __future__ import annotations

from pathlib import Path

import pytest

from memagent.utils import config as config_module
from memagent.utils.config import get_config, load_config, reset_config

VARIABLES = [
    "OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_EMBEDDING_MODEL", "OPENAI_BASE_URL",
    "MEMORY_DIR", "MEMORY_PERSIST", "MEMORY_MAX_RESULTS", "MEMORY_SIMILARITY_THRESHOLD",
    "MEMORY_RECENCY_WEIGHT", "MEMORY_IMPORTANCE_WEIGHT", "MEMORY_CANDIDATE_LIMIT",
    "MEMORY_LOOKUP_TIMEOUT_SECONDS", "CLASSIFICATION_TIMEOUT_SECONDS", "COMPLETION_TIMEOUT_SECONDS",
    "COMPLETION_RETRIES", "TOOL_TIMEOUT_SECONDS", "TOOL_RETRIES", "BATCH_CONCURRENCY",
    "CLASSIFIER_TEMPERATURE", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "load_dotenv", lambda: False)
    reset_config()
    yield
    reset_config()


class TestLoadConfig:

    def test_defaults(self):
        config = load_config()

        assert config.openai.api_key is None
        assert config.openai.model == "gpt-4o-mini"
        assert config.openai.embedding_model == "text-embedding-3-small"
        assert config.memory.directory == Path("data/memory")
        assert config.memory.persist is True
        assert config.memory.max_results == 10
        assert config.memory.similarity_threshold == 0.7
        assert config.memory.recency_weight == 0.5
        assert config.execution.completion_retries == 1
        assert config.execution.batch_concurrency == 4
        assert config.execution.classifier_temperature == 0.1
        assert config.log_level == "info"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
        monkeypatch.setenv("MEMORY_PERSIST", "false")
        monkeypatch.setenv("MEMORY_MAX_RESULTS", "3")
        monkeypatch.setenv("MEMORY_SIMILARITY_THRESHOLD", "0.25")
        monkeypatch.setenv("MEMORY_IMPORTANCE_WEIGHT", "2")
        monkeypatch.setenv("TOOL_TIMEOUT_SECONDS", "5.5")

        config = load_config()

        assert config.openai.model == "gpt-4o"
        assert config.memory.persist is False
        assert config.memory.max_results == 3
        assert config.memory.similarity_threshold == 0.25
        assert config.memory.importance_weight == 2.0
        assert config.execution.tool_timeout == 5.5

    def test_invalid_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("MEMORY_MAX_RESULTS", "many")
        monkeypatch.setenv("TOOL_TIMEOUT_SECONDS", "soon")

        config = load_config()

        assert config.memory.max_results == 10
        assert config.execution.tool_timeout == 30.0

    def test_config_is_frozen(self):
        config = load_config()
        with pytest.raises(AttributeError):
            config.memory.max_results = 1


class TestSingleton:

    def test_cached_until_reset(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("OPENAI_MODEL", "other-model")

        assert get_config() is first

        reset_config()
        assert get_config().openai.model == "other-model"

    def test_require_openai_key(self, monkeypatch):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            load_config().require_openai_key()

        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert load_config().require_openai_key() == "sk-test"

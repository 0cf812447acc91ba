"""
Tests for configuration loading and the error hierarchy
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from brain.core.config import BrainConfig, load_config
from brain.core.errors import (
    BrainError, ConfigurationError, EmbeddingTimeoutError,
    NoteEmbeddingFailedError, EmbeddingBackendError
)


class TestBrainConfig:
    """Tests for BrainConfig defaults and clamping."""

    def test_defaults(self):
        config = BrainConfig()

        assert config.embedding_concurrency == 4
        assert config.embedding_timeout_ms == 60000
        assert config.chunk_target_size == 2000
        assert config.chunk_overlap == 200
        assert config.full_content_char_limit == 5000
        assert config.search_default_limit == 10
        assert config.search_default_threshold == 0.7

    def test_clamping(self):
        config = BrainConfig(embedding_concurrency=0, embedding_timeout_ms=10**7)

        assert config.embedding_concurrency == 1
        assert config.embedding_timeout_ms == 600000

    def test_invalid_overlap(self):
        with pytest.raises(ConfigurationError):
            BrainConfig(chunk_target_size=100, chunk_overlap=100)

    def test_invalid_threshold(self):
        with pytest.raises(ConfigurationError):
            BrainConfig(search_default_threshold=1.5)

    def test_db_path_expanded(self):
        assert "~" not in str(BrainConfig().db_path)


class TestLoadConfig:
    """Tests for load_config."""

    def test_env_only(self):
        config = load_config(env={
            "BRAIN_EMBEDDING_CONCURRENCY": "8",
            "BRAIN_LOG_JSON": "true",
            "BRAIN_SEARCH_DEFAULT_THRESHOLD": "0.5",
            "UNRELATED": "x",
        })

        assert config.embedding_concurrency == 8
        assert config.log_json is True
        assert config.search_default_threshold == 0.5

    def test_yaml_section(self, tmp_path):
        path = tmp_path / "brain.yaml"
        path.write_text(
            "brain:\n"
            "  embedding_model: mxbai-embed-large\n"
            "  embedding_dimension: 1024\n"
            "  unknown_knob: 1\n"
            "  db_path: /ignored\n"
        )

        config = load_config(path, env={})

        assert config.embedding_model == "mxbai-embed-large"
        assert config.embedding_dimension == 1024

    def test_flat_yaml_and_env_override(self, tmp_path):
        path = tmp_path / "brain.yaml"
        path.write_text("embedding_concurrency: 2\nchunk_overlap: 100\n")

        config = load_config(path, env={"BRAIN_EMBEDDING_CONCURRENCY": "6"})

        assert config.embedding_concurrency == 6
        assert config.chunk_overlap == 100

    def test_env_values_clamped(self):
        assert load_config(env={"BRAIN_EMBEDDING_CONCURRENCY": "99"}).embedding_concurrency == 16

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml", env={})

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "brain.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_config(path, env={})

    def test_bad_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(env={"BRAIN_EMBEDDING_CONCURRENCY": "lots"})

        assert exc_info.value.details["knob"] == "embedding_concurrency"


class TestErrors:
    """Tests for the BrainError hierarchy."""

    def test_to_dict(self):
        error = ConfigurationError("bad knob", knob="x")

        assert error.to_dict() == {
            "error": "configuration_error",
            "message": "bad knob",
            "details": {"knob": "x"},
        }

    def test_default_message(self):
        assert str(BrainError()) == "An unexpected error occurred"

    def test_timeout_message_includes_elapsed(self):
        error = EmbeddingTimeoutError(61234.5, 60000)

        assert "61234ms" in str(error) or "61235ms" in str(error)
        assert "60000ms" in str(error)

    def test_note_embedding_failed_wraps_cause(self):
        cause = EmbeddingBackendError(500)
        error = NoteEmbeddingFailedError("features/auth", cause)

        assert error.cause is cause
        assert str(error).startswith("features/auth: ")
        assert error.details["cause"] == "EmbeddingBackendError"

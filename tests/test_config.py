"""Tests for session configuration."""

from dataclasses import replace
from pathlib import Path

import pytest

from lib.config import (
    DEFAULT_MLX_MODEL,
    REMOTE_API_KEY_ENV,
    REMOTE_API_MODEL,
    TranscriptionConfig,
    ensure_temp_dir,
)


class TestValidate:
    def test_defaults_are_valid(self) -> None:
        config = TranscriptionConfig(backend="mlx", failure_policy="abort", max_concurrent_chunks=1)

        assert config.validate() is config
        assert config.max_chunk_duration > 2 * config.overlap_duration

    @pytest.mark.parametrize("overrides", [
        {"max_chunk_duration": 0},
        {"overlap_duration": -1},
        {"max_chunk_duration": 60, "overlap_duration": 30},
        {"max_bytes": 0},
        {"max_concurrent_chunks": 0},
        {"max_concurrent_chunks": 4},
        {"failure_policy": "ignore"},
        {"chunk_retries": -1},
        {"backend": "vosk"},
        {"overlap_tail_words": 0},
    ])
    def test_rejects_out_of_range(self, overrides) -> None:
        config = TranscriptionConfig(backend="mlx", failure_policy="abort", max_concurrent_chunks=1)

        with pytest.raises(ValueError):
            replace(config, **overrides).validate()


class TestDerivedValues:
    @pytest.mark.parametrize("language, expected", [("auto", None), ("", None), ("sv", "sv")])
    def test_language_hint(self, language, expected) -> None:
        assert TranscriptionConfig(language=language).language_hint == expected

    def test_model_name_defaults_per_backend(self) -> None:
        assert TranscriptionConfig(backend="mlx").model_name == DEFAULT_MLX_MODEL
        assert TranscriptionConfig(backend="remote").model_name == REMOTE_API_MODEL
        assert TranscriptionConfig(backend="remote", model="whisper-1").model_name == "whisper-1"


class TestFromEnv:
    def test_reads_api_key(self, monkeypatch) -> None:
        monkeypatch.setenv(REMOTE_API_KEY_ENV, "from-env")

        assert TranscriptionConfig.from_env().api_key == "from-env"

    def test_overrides_win(self, monkeypatch) -> None:
        monkeypatch.setenv(REMOTE_API_KEY_ENV, "from-env")

        config = TranscriptionConfig.from_env(api_key="explicit", language="sv")

        assert config.api_key == "explicit"
        assert config.language == "sv"

    def test_config_is_immutable(self) -> None:
        config = TranscriptionConfig()

        with pytest.raises(AttributeError):
            config.language = "sv"


def test_ensure_temp_dir_creates_directory(tmp_path) -> None:
    target = tmp_path / "nested" / "chunks"

    assert ensure_temp_dir(target) == Path(target)
    assert target.is_dir()

"""Tests for constants module.

Tests settings validation, the settings manager and derived constants.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from pydantic import ValidationError

from core.constants import (
    MODEL_CONFIGS,
    REASONING_MODELS,
    MCPServerSetting,
    Settings,
    _get_env_files,
    _SettingsManager,
)


@pytest.fixture(autouse=True)
def isolated_env() -> Generator[None, None, None]:
    """Settings read only what the test passes in."""
    with patch.dict("os.environ", {}, clear=True), patch("core.constants._get_env_files", return_value=[]):
        yield


def _settings(**overrides: Any) -> Settings:
    return Settings(**overrides)


class TestConstants:
    def test_reasoning_models_derived_from_configs(self) -> None:
        assert "o3" in REASONING_MODELS
        assert "gpt-4o" not in REASONING_MODELS
        assert REASONING_MODELS == {m.id for m in MODEL_CONFIGS if m.supports_reasoning}

    def test_model_ids_unique(self) -> None:
        ids = [m.id for m in MODEL_CONFIGS]
        assert len(ids) == len(set(ids))


class TestSettingsDefaults:
    def test_defaults(self) -> None:
        settings = _settings()

        assert settings.app_env == "development"
        assert settings.primary_model == "o3"
        assert settings.fallback_model == "gpt-4-turbo-preview"
        assert settings.redis_url is None
        assert settings.mcp_servers == []
        assert settings.is_development

    def test_missing_key_means_offline(self) -> None:
        settings = _settings()

        assert settings.openai_api_key is None
        assert settings.has_openai_credentials is False

    def test_blank_key_treated_as_missing(self) -> None:
        assert _settings(openai_api_key="   ").has_openai_credentials is False

    def test_environment_variables(self) -> None:
        env = {
            "OPENAI_API_KEY": "sk-test-key-123456",
            "MAX_TOOL_ITERATIONS": "3",
            "MCP_SERVERS": '[{"key": "weather", "url": "ws://weather:8081/ws"}]',
        }
        with patch.dict("os.environ", env):
            settings = _settings()

        assert settings.has_openai_credentials
        assert settings.max_tool_iterations == 3
        assert settings.mcp_servers == [MCPServerSetting(key="weather", url="ws://weather:8081/ws")]


class TestSettingsValidation:
    def test_short_api_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid OpenAI API key format"):
            _settings(openai_api_key="short")

    def test_reasoning_effort_normalized(self) -> None:
        assert _settings(reasoning_effort="HIGH").reasoning_effort == "high"

        with pytest.raises(ValidationError, match="reasoning_effort"):
            _settings(reasoning_effort="extreme")

    def test_app_env_normalized(self) -> None:
        settings = _settings(app_env="TEST")

        assert settings.app_env == "test"
        assert settings.is_test

        with pytest.raises(ValidationError):
            _settings(app_env="staging")

    def test_short_jwt_secret_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 8 characters"):
            _settings(jwt_secret="short")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_prompt_length": 0},
            {"max_tool_iterations": 0},
            {"tool_call_timeout": 0},
            {"turn_timeout": -1},
            {"turn_ttl_seconds": 0},
        ],
    )
    def test_invalid_limits(self, overrides: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            _settings(**overrides)

    def test_production_requires_real_secret(self) -> None:
        with pytest.raises(ValidationError, match="jwt_secret must be changed"):
            _settings(app_env="production", allow_localhost_noauth=False)

    def test_production_rejects_localhost_bypass(self) -> None:
        with pytest.raises(ValidationError, match="allow_localhost_noauth"):
            _settings(app_env="production", jwt_secret="a-real-production-secret")

    def test_valid_production(self) -> None:
        settings = _settings(
            app_env="production", jwt_secret="a-real-production-secret", allow_localhost_noauth=False
        )

        assert settings.is_production


class TestSettingsManager:
    def test_caches_instance(self) -> None:
        manager = _SettingsManager()

        assert manager.get() is manager.get()

    def test_hot_reload_rebuilds(self) -> None:
        manager = _SettingsManager()
        with patch.dict("os.environ", {"CONFIG_HOT_RELOAD": "true"}):
            first = manager.get()
            second = manager.get()

        assert first is not second

    def test_reload_and_clear(self) -> None:
        manager = _SettingsManager()
        first = manager.get()

        assert manager.reload() is not first

        manager.clear()
        assert manager._instance is None


class TestEnvFiles:
    def test_only_existing_files(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("DEBUG=false\n")
        (tmp_path / ".env.test").write_text("DEBUG=true\n")

        with patch("core.constants._BACKEND_DIR", tmp_path), patch.dict("os.environ", {"APP_ENV": "test"}):
            assert _get_env_files() == [tmp_path / ".env", tmp_path / ".env.test"]

    def test_unknown_env_falls_back_to_development(self, tmp_path: Path) -> None:
        (tmp_path / ".env.development").write_text("")

        with patch("core.constants._BACKEND_DIR", tmp_path), patch.dict("os.environ", {"APP_ENV": "staging"}):
            assert _get_env_files() == [tmp_path / ".env.development"]

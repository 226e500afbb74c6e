"""Tests for layered runtime configuration."""

import logging

import pytest

from flowbridge.config.runtime_config import (
    ENV_CONFIG_PATH,
    ENV_DEFAULT_MODEL,
    ENV_ENABLE_CORS,
    ENV_FALLBACK_COMPONENT,
    get_config,
    get_default,
    get_default_model,
    get_fallback_component,
    get_layout,
    get_schema_uri,
    get_store_path,
    is_cors_enabled,
    reset_config,
)


def _write_config(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Built-in values with no file and no environment."""

    def test_defaults(self):
        assert get_default_model() == "gpt-4"
        assert get_fallback_component() == "/builtin/openai"
        assert get_schema_uri() == "https://stepflow.org/schemas/v1/flow.json"
        assert get_layout() == (250, 50, 150)
        assert get_default("temperature") == 0.7
        assert get_default("retry_max_attempts") == 3
        assert get_default("compare_models") == ["gpt-4", "claude-3-opus"]
        assert is_cors_enabled() is True
        assert get_store_path() is None

    def test_get_default_fallback(self):
        assert get_default("nope", 42) == 42

    def test_get_config_returns_copy(self):
        config = get_config()
        config["defaults"]["model"] = "changed"
        assert get_default_model() == "gpt-4"


class TestEnvironment:
    """FLOWBRIDGE_* overrides."""

    def test_default_model(self, monkeypatch):
        monkeypatch.setenv(ENV_DEFAULT_MODEL, "claude-3-sonnet")
        assert get_default_model() == "claude-3-sonnet"

    def test_fallback_component(self, monkeypatch):
        monkeypatch.setenv(ENV_FALLBACK_COMPONENT, "/python/local_llm")
        assert get_fallback_component() == "/python/local_llm"

    @pytest.mark.parametrize("value,expected", [("false", False), ("0", False), ("TRUE", True), ("on", True)])
    def test_cors(self, monkeypatch, value, expected):
        monkeypatch.setenv(ENV_ENABLE_CORS, value)
        assert is_cors_enabled() is expected

    def test_environment_beats_file(self, monkeypatch, tmp_path):
        _write_config(tmp_path / "flowbridge.yaml", "defaults:\n  model: from-file\n")
        monkeypatch.setenv(ENV_DEFAULT_MODEL, "from-env")
        assert get_default_model() == "from-env"


class TestConfigFile:
    """YAML file layer."""

    def test_explicit_path(self, monkeypatch, tmp_path):
        path = _write_config(
            tmp_path / "custom.yaml",
            "defaults:\n  model: claude-3-haiku\nlayout:\n  y_step: 100\napi:\n  store_path: /srv/flows\n",
        )
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))
        reset_config()
        assert get_default_model() == "claude-3-haiku"
        assert get_layout() == (250, 50, 100)
        assert get_store_path() == "/srv/flows"
        # Untouched keys keep their defaults
        assert get_default("max_tokens") == 2048

    def test_local_file_in_working_directory(self, tmp_path):
        _write_config(tmp_path / "flowbridge.yaml", "api:\n  enable_cors: false\n")
        assert is_cors_enabled() is False

    def test_missing_explicit_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv(ENV_CONFIG_PATH, str(tmp_path / "missing.yaml"))
        with pytest.raises(FileNotFoundError):
            get_config()

    def test_invalid_yaml(self, monkeypatch, tmp_path):
        path = _write_config(tmp_path / "bad.yaml", "defaults: [unclosed\n")
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))
        with pytest.raises(ValueError, match="Invalid YAML"):
            get_config()

    def test_non_mapping_file(self, monkeypatch, tmp_path):
        path = _write_config(tmp_path / "list.yaml", "- a\n- b\n")
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))
        with pytest.raises(ValueError):
            get_config()

    def test_empty_file_uses_defaults(self, monkeypatch, tmp_path):
        path = _write_config(tmp_path / "empty.yaml", "")
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))
        assert get_default_model() == "gpt-4"

    def test_unknown_section_warns(self, monkeypatch, tmp_path, caplog):
        path = _write_config(tmp_path / "extra.yaml", "plugins:\n  x: 1\n")
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))
        with caplog.at_level(logging.WARNING, logger="flowbridge.config.runtime_config"):
            config = get_config()
        assert "plugins" not in config
        assert "unknown config section 'plugins'" in caplog.text

    def test_config_is_cached_until_reset(self, tmp_path):
        assert get_default_model() == "gpt-4"
        _write_config(tmp_path / "flowbridge.yaml", "defaults:\n  model: later\n")
        assert get_default_model() == "gpt-4"
        reset_config()
        assert get_default_model() == "later"

"""Tests for the configuration loader."""

import pytest
import yaml

from agentloop.config import (
    AgentLoopConfig,
    ContextLimits,
    ProviderSettings,
    _ENV_MAP,
    default_context_limits,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_var in _ENV_MAP:
        monkeypatch.delenv(env_var, raising=False)
    for key_env in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(key_env, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "agentloop.yaml"
    path.write_text(yaml.safe_dump({
        "provider": {"name": "anthropic", "model": "claude-test", "temperature": 0.1},
        "loop": {"max_iterations": 4, "completion_marker": "[DONE]", "ignored": True},
    }))
    return path


class TestDefaults:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.provider.name == "openai"
        assert cfg.loop.max_iterations == 10
        assert cfg.loop.total_timeout_seconds == 600.0
        assert cfg.loop.round_timeout_seconds == 60.0
        assert cfg.loop.completion_marker == "[TASK_COMPLETE]"

    def test_missing_file_is_ignored(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.provider.name == "openai"

    def test_to_dict(self):
        data = AgentLoopConfig().to_dict()
        assert data["loop"]["max_retries"] == 3
        assert data["provider"]["timeout_seconds"] == 120


class TestPrecedence:
    def test_yaml_overrides_defaults(self, config_file):
        cfg = load_config(config_file)
        assert cfg.provider.name == "anthropic"
        assert cfg.provider.model == "claude-test"
        assert cfg.loop.max_iterations == 4
        assert cfg.loop.completion_marker == "[DONE]"
        assert cfg.loop.max_retries == 3

    def test_env_overrides_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("AGENTLOOP_MAX_ITERATIONS", "7")
        monkeypatch.setenv("AGENTLOOP_TEMPERATURE", "0.9")
        cfg = load_config(config_file)
        assert cfg.loop.max_iterations == 7
        assert cfg.provider.temperature == 0.9

    def test_cli_overrides_env(self, config_file, monkeypatch):
        monkeypatch.setenv("AGENTLOOP_PROVIDER", "gemini")
        cfg = load_config(config_file, cli_overrides={"provider.name": "ollama"})
        assert cfg.provider.name == "ollama"

    def test_none_cli_values_skipped(self, config_file):
        cfg = load_config(config_file, cli_overrides={"provider.model": None})
        assert cfg.provider.model == "claude-test"

    def test_unknown_cli_key(self):
        with pytest.raises(KeyError, match="Unknown config key"):
            load_config(cli_overrides={"loop.nonsense": 1})


class TestProviderResolution:
    def test_openai_defaults_and_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
        resolved = ProviderSettings().to_provider_config()
        assert resolved.provider == "openai"
        assert resolved.model == "gpt-4o"
        assert resolved.api_key == "sk-live"
        assert resolved.base_url == "https://api.openai.com/v1"
        assert resolved.context_limits == ContextLimits(128_000, 4_096)

    def test_custom_key_env_and_base_url(self, monkeypatch):
        monkeypatch.setenv("ROUTER_KEY", "rk")
        settings = ProviderSettings(
            name="openai", api_key_env="ROUTER_KEY", base_url="https://openrouter.ai/api/v1/"
        )
        resolved = settings.to_provider_config()
        assert resolved.api_key == "rk"
        assert resolved.base_url == "https://openrouter.ai/api/v1"

    def test_anthropic_output_limit_is_eight_percent(self):
        resolved = ProviderSettings(name="anthropic", model_context_limit=100_000).to_provider_config()
        assert resolved.context_limits == ContextLimits(100_000, 8_000)

    def test_explicit_output_limit_wins(self):
        resolved = ProviderSettings(
            name="anthropic", model_context_limit=100_000, model_output_limit=1_000
        ).to_provider_config()
        assert resolved.context_limits.model_output_limit == 1_000

    def test_ollama_needs_no_key(self):
        resolved = ProviderSettings(name="ollama").to_provider_config()
        assert resolved.api_key == ""
        assert resolved.base_url == "http://localhost:11434"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            ProviderSettings(name="mystery").to_provider_config()

    def test_budget(self):
        assert default_context_limits("anthropic").budget(1_000) == 200_000 - 16_000 - 1_000
        assert default_context_limits("gemini") == ContextLimits(1_000_000, 8_192)

"""Tests for configuration loading and EngineConfig."""

import os

import pytest
import yaml
from unittest.mock import patch

from steptrans.core.exceptions import ConfigurationError
from steptrans.translation.base import ProviderConfig
from steptrans.utils.config_loader import (
    EngineConfig,
    default_step_sets,
    get_default_config,
    load_config,
    load_step_sets,
    override_with_env,
    save_config,
)


def test_default_config_sections():
    config = get_default_config()

    assert set(config) == {
        "translation", "scheduler", "cache", "session", "pipeline", "logging", "providers", "step_sets"
    }
    assert config["scheduler"]["retry_attempts"] == 3
    assert config["cache"]["backend"] == "file"


def test_load_config_merges_over_defaults(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text(yaml.safe_dump({
        "translation": {"target_lang": "French"},
        "scheduler": {"concurrency": 8},
    }), encoding="utf-8")

    with patch.dict(os.environ, {}, clear=True):
        config = load_config(str(path), env_file=str(tmp_path / "missing.env"))

    assert config["translation"]["target_lang"] == "French"
    assert config["translation"]["source_lang"] == "English"
    assert config["scheduler"]["concurrency"] == 8
    assert config["scheduler"]["retry_delay"] == 1.0


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_env_file_overrides(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  level: INFO\n", encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text("STEPTRANS_LOG_LEVEL=DEBUG\nDEEPL_API_KEY=secret:fx\n", encoding="utf-8")

    with patch.dict(os.environ, {}, clear=True):
        config = load_config(str(path), env_file=str(env_file))

    assert config["logging"]["level"] == "DEBUG"
    assert config["providers"]["deepl"]["api_key"] == "secret:fx"


def test_override_with_env_converts_concurrency():
    env = {"STEPTRANS_CONCURRENCY": "2", "STEPTRANS_STEP_SET": "fast", "OLLAMA_HOST": "http://gpu:11434"}
    with patch.dict(os.environ, env, clear=True):
        config = override_with_env(get_default_config())

    assert config["scheduler"]["concurrency"] == 2
    assert config["translation"]["active_step_set"] == "fast"
    assert config["providers"]["ollama"]["base_url"] == "http://gpu:11434"


def test_save_and_reload(tmp_path):
    config = get_default_config()
    config["translation"]["target_lang"] = "Japanese"
    path = tmp_path / "nested" / "saved.yaml"

    save_config(config, str(path))
    with patch.dict(os.environ, {}, clear=True):
        reloaded = load_config(str(path), env_file=str(tmp_path / "missing.env"))

    assert reloaded["translation"]["target_lang"] == "Japanese"


def test_default_step_sets():
    step_sets = default_step_sets()

    assert {"basic", "professional", "fast", "quality", "raw"} <= set(step_sets)
    assert len(step_sets["basic"].steps) == 3
    assert step_sets["fast"].fast_mode_threshold == 10000
    assert step_sets["professional"].steps[0].provider == "deepl"


def test_load_step_sets_adds_custom_and_rejects_bad():
    step_sets = load_step_sets({"step_sets": {
        "mine": {"name": "Mine", "steps": [{"name": "t", "provider": "raw"}]},
    }})
    assert "mine" in step_sets and "basic" in step_sets

    with pytest.raises(ConfigurationError):
        load_step_sets({"step_sets": {"broken": {"steps": []}}})


class TestEngineConfig:
    """EngineConfig construction and validation."""

    def test_from_dict(self):
        config = EngineConfig.from_dict({
            "translation": {"target_lang": "German", "active_step_set": "raw"},
            "scheduler": {"concurrency": "6"},
            "cache": {"backend": "DISK", "ttl": 3600},
            "providers": {"openai": {"model": "gpt-4o"}},
        })

        assert config.target_lang == "German"
        assert config.concurrency == 6
        assert config.cache_backend == "disk"
        assert config.cache_ttl == 3600
        assert config.step_set.id == "raw"

    @pytest.mark.parametrize("overrides", [
        {"concurrency": 0},
        {"retry_attempts": -1},
        {"retry_delay": -0.5},
        {"backoff_factor": 0.5},
        {"cache_backend": "redis"},
        {"active_step_set": "missing"},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ConfigurationError):
            EngineConfig(**overrides).validate()

    def test_provider_configs(self):
        config = EngineConfig(providers={"DeepL": {"api_key": "k", "timeout": 10}})

        configs = config.provider_configs()

        assert isinstance(configs["deepl"], ProviderConfig)
        assert configs["deepl"].timeout == 10

    def test_provider_configs_unknown_setting(self):
        config = EngineConfig(providers={"openai": {"api_key": "k", "temprature": 0.2}})
        with pytest.raises(ConfigurationError):
            config.provider_configs()

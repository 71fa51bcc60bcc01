"""Configuration loading and management."""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv

from steptrans.core.exceptions import ConfigurationError, ValidationError
from steptrans.core.models import StepSet
from steptrans.translation.base import ProviderConfig


CACHE_BACKENDS = ["file", "disk", "memory"]


def load_config(config_path: Optional[str] = None, env_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file (defaults to configs/default.yaml)
        env_file: Optional .env file; the working directory's .env otherwise

    Returns:
        Configuration dictionary
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    if config_path is None:
        possible_paths = [
            Path("configs/default.yaml"),
            Path(__file__).parent.parent.parent / "configs" / "default.yaml"
        ]

        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break
        else:
            return override_with_env(get_default_config())

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        loaded = yaml.safe_load(f) or {}

    config = _merge(get_default_config(), loaded)
    return override_with_env(config)


def save_config(config: Dict[str, Any], config_path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration dictionary
        config_path: Output path
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def override_with_env(config: Dict[str, Any]) -> Dict[str, Any]:
    """Override config with environment variables."""
    env_mappings = {
        "OPENAI_API_KEY": ["providers", "openai", "api_key"],
        "OPENAI_BASE_URL": ["providers", "openai", "base_url"],
        "DEEPL_API_KEY": ["providers", "deepl", "api_key"],
        "GOOGLE_API_KEY": ["providers", "google", "api_key"],
        "LIBRETRANSLATE_API_KEY": ["providers", "libretranslate", "api_key"],
        "DEEPLX_ACCESS_TOKEN": ["providers", "deeplx", "api_key"],
        "DEEPLX_URL": ["providers", "deeplx", "base_url"],
        "OLLAMA_HOST": ["providers", "ollama", "base_url"],
        "STEPTRANS_CACHE_DIR": ["cache", "dir"],
        "STEPTRANS_SESSION_DIR": ["session", "dir"],
        "STEPTRANS_STEP_SET": ["translation", "active_step_set"],
        "STEPTRANS_CONCURRENCY": ["scheduler", "concurrency"],
        "STEPTRANS_LOG_LEVEL": ["logging", "level"],
    }

    for env_var, path in env_mappings.items():
        value = os.getenv(env_var)
        if value:
            current = config
            for key in path[:-1]:
                if not isinstance(current.get(key), dict):
                    current[key] = {}
                current = current[key]
            current[path[-1]] = int(value) if env_var == "STEPTRANS_CONCURRENCY" else value

    return config


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        "translation": {
            "source_lang": "English",
            "target_lang": "Chinese",
            "country": "",
            "active_step_set": "basic",
        },
        "scheduler": {
            "concurrency": 4,
            "retry_attempts": 3,
            "retry_delay": 1.0,
            "backoff_factor": 2.0,
            "max_retry_delay": 30.0,
            "request_timeout": 300.0,
            "autosave_interval": 30.0,
        },
        "cache": {
            "enabled": True,
            "backend": "file",
            "dir": ".cache/steptrans",
            "ttl": None,
            "force_refresh": False,
        },
        "session": {
            "dir": ".steptrans/sessions",
        },
        "pipeline": {
            "validate_preserve_markers": False,
            "skip_improvement_when_clean": False,
        },
        "logging": {
            "level": "INFO",
            "file": None,
        },
        "providers": {},
        "step_sets": {},
    }


def default_step_sets() -> Dict[str, StepSet]:
    """Built-in step sets."""
    raw = {
        "basic": {
            "name": "Basic translation",
            "description": "Three OpenAI stages",
            "steps": [
                {"name": "initial_translation", "provider": "openai", "model_name": "gpt-4o-mini",
                 "temperature": 0.3, "max_tokens": 4096},
                {"name": "reflection", "provider": "openai", "model_name": "gpt-4o-mini",
                 "temperature": 0.3, "max_tokens": 2048},
                {"name": "improvement", "provider": "openai", "model_name": "gpt-4o-mini",
                 "temperature": 0.5, "max_tokens": 4096},
            ],
            "fast_mode_threshold": 300,
        },
        "professional": {
            "name": "Professional translation",
            "description": "DeepL translation refined by an LLM",
            "steps": [
                {"name": "initial_translation", "provider": "deepl", "model_name": "deepl", "temperature": 0},
                {"name": "reflection", "provider": "openai", "model_name": "gpt-4o",
                 "temperature": 0.3, "max_tokens": 2048,
                 "additional_notes": "Pay special attention to cultural nuances and terminology consistency."},
                {"name": "improvement", "provider": "openai", "model_name": "gpt-4o",
                 "temperature": 0.3, "max_tokens": 4096,
                 "additional_notes": "Ensure the final translation sounds natural and professional."},
            ],
            "fast_mode_threshold": 300,
        },
        "fast": {
            "name": "Fast translation",
            "description": "Single machine-translation stage",
            "steps": [
                {"name": "translation", "provider": "deeplx", "model_name": "deeplx", "temperature": 0},
            ],
            "fast_mode_threshold": 10000,
        },
        "quality": {
            "name": "High quality translation",
            "description": "Multi-stage translation with larger models",
            "steps": [
                {"name": "initial_translation", "provider": "openai", "model_name": "gpt-4o",
                 "temperature": 0.3, "max_tokens": 4096,
                 "additional_notes": "Pay careful attention to nuance, cultural context, and maintain the author's voice."},
                {"name": "reflection", "provider": "openai", "model_name": "gpt-4o",
                 "temperature": 0.1, "max_tokens": 4096,
                 "additional_notes": "Critically analyze this translation for accuracy, cultural appropriateness, and stylistic fidelity."},
                {"name": "improvement", "provider": "openai", "model_name": "gpt-4o",
                 "temperature": 0.3, "max_tokens": 4096,
                 "additional_notes": "Create the final, polished translation incorporating all feedback."},
            ],
            "fast_mode_threshold": 200,
        },
        "raw": {
            "name": "Passthrough",
            "description": "Offline identity stages for testing",
            "steps": [
                {"name": "initial_translation", "provider": "raw"},
                {"name": "reflection", "provider": "raw"},
                {"name": "improvement", "provider": "raw"},
            ],
            "fast_mode_threshold": 0,
        },
    }
    return {set_id: StepSet.from_dict(data, set_id=set_id) for set_id, data in raw.items()}


def load_step_sets(config: Dict[str, Any]) -> Dict[str, StepSet]:
    """
    Built-in step sets overlaid with the `step_sets` section of a config.

    Raises:
        ConfigurationError: A configured step set is malformed
    """
    step_sets = default_step_sets()
    for set_id, data in (config.get("step_sets") or {}).items():
        try:
            step_sets[set_id] = StepSet.from_dict(data or {}, set_id=set_id)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid step set '{set_id}': {e.message}",
                config_key=f"step_sets.{set_id}",
                invalid_value=data
            )
    return step_sets


@dataclass
class EngineConfig:
    """Settings for one engine instance."""
    source_lang: str = "English"
    target_lang: str = "Chinese"
    country: str = ""
    active_step_set: str = "basic"

    concurrency: int = 4
    retry_attempts: int = 3
    retry_delay: float = 1.0
    backoff_factor: float = 2.0
    max_retry_delay: float = 30.0
    request_timeout: float = 300.0

    use_cache: bool = True
    cache_backend: str = "file"
    cache_dir: str = ".cache/steptrans"
    cache_ttl: Optional[int] = None
    force_refresh: bool = False

    session_dir: str = ".steptrans/sessions"
    autosave_interval: float = 30.0

    validate_preserve_markers: bool = False
    skip_improvement_when_clean: bool = False

    log_level: str = "INFO"
    log_file: Optional[str] = None

    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    step_sets: Dict[str, StepSet] = field(default_factory=default_step_sets)

    def validate(self) -> None:
        """
        Check settings before a run.

        Raises:
            ConfigurationError: First invalid setting found
        """
        if self.concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be positive, got {self.concurrency}",
                config_key="concurrency",
                invalid_value=self.concurrency
            )
        if self.retry_attempts < 0:
            raise ConfigurationError(
                f"retry_attempts must not be negative, got {self.retry_attempts}",
                config_key="retry_attempts",
                invalid_value=self.retry_attempts
            )
        if self.retry_delay < 0 or self.max_retry_delay < 0:
            raise ConfigurationError("retry delays must not be negative", config_key="retry_delay",
                                     invalid_value=self.retry_delay)
        if self.backoff_factor < 1:
            raise ConfigurationError(
                f"backoff_factor must be at least 1, got {self.backoff_factor}",
                config_key="backoff_factor",
                invalid_value=self.backoff_factor
            )
        if self.cache_backend not in CACHE_BACKENDS:
            raise ConfigurationError(
                f"Unknown cache backend '{self.cache_backend}'",
                config_key="cache_backend",
                invalid_value=self.cache_backend,
                valid_values=CACHE_BACKENDS
            )
        if self.active_step_set not in self.step_sets:
            raise ConfigurationError(
                f"Unknown step set '{self.active_step_set}'",
                config_key="active_step_set",
                invalid_value=self.active_step_set,
                valid_values=sorted(self.step_sets)
            )

    @property
    def step_set(self) -> StepSet:
        self.validate()
        return self.step_sets[self.active_step_set]

    def provider_configs(self) -> Dict[str, ProviderConfig]:
        """ProviderConfig per identifier from the `providers` section."""
        known = set(ProviderConfig.__dataclass_fields__)
        result = {}
        for identifier, settings in self.providers.items():
            settings = settings or {}
            unknown = set(settings) - known
            if unknown:
                raise ConfigurationError(
                    f"Unknown settings for provider '{identifier}': {', '.join(sorted(unknown))}",
                    config_key=f"providers.{identifier}",
                    invalid_value=sorted(unknown),
                    valid_values=sorted(known)
                )
            result[identifier.lower()] = ProviderConfig(**settings)
        return result

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "EngineConfig":
        """Build from a load_config() dictionary."""
        config = _merge(get_default_config(), config or {})
        translation = config["translation"]
        scheduler = config["scheduler"]
        cache = config["cache"]
        pipeline = config["pipeline"]
        logging_cfg = config["logging"]

        return cls(
            source_lang=translation["source_lang"],
            target_lang=translation["target_lang"],
            country=translation.get("country") or "",
            active_step_set=translation["active_step_set"],
            concurrency=int(scheduler["concurrency"]),
            retry_attempts=int(scheduler["retry_attempts"]),
            retry_delay=float(scheduler["retry_delay"]),
            backoff_factor=float(scheduler["backoff_factor"]),
            max_retry_delay=float(scheduler["max_retry_delay"]),
            request_timeout=float(scheduler["request_timeout"]),
            autosave_interval=float(scheduler["autosave_interval"]),
            use_cache=bool(cache["enabled"]),
            cache_backend=str(cache["backend"]).lower(),
            cache_dir=cache["dir"],
            cache_ttl=cache.get("ttl"),
            force_refresh=bool(cache["force_refresh"]),
            session_dir=config["session"]["dir"],
            validate_preserve_markers=bool(pipeline["validate_preserve_markers"]),
            skip_improvement_when_clean=bool(pipeline["skip_improvement_when_clean"]),
            log_level=logging_cfg.get("level") or "INFO",
            log_file=logging_cfg.get("file"),
            providers=dict(config.get("providers") or {}),
            step_sets=load_step_sets(config),
        )

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "EngineConfig":
        return cls.from_dict(load_config(config_path))

"""Provider construction keyed by provider identifier."""

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from steptrans.core.exceptions import ValidationError
from .base import ProviderClient, ProviderConfig

logger = logging.getLogger(__name__)


def _openai(config):
    from .backends.openai_backend import OpenAIProvider
    return OpenAIProvider(config)


def _ollama(config):
    from .backends.ollama_backend import OllamaProvider
    return OllamaProvider(config)


def _deepl(config):
    from .backends.deepl_backend import DeepLProvider
    return DeepLProvider(config)


def _deeplx(config):
    from .backends.deeplx_backend import DeepLXProvider
    return DeepLXProvider(config)


def _google(config):
    from .backends.google_backend import GoogleProvider
    return GoogleProvider(config)


def _libre(config):
    from .backends.libre_backend import LibreTranslateProvider
    return LibreTranslateProvider(config)


def _raw(config):
    from .backends.raw_backend import RawProvider
    return RawProvider(config)


PROVIDERS: Dict[str, Callable[[ProviderConfig], ProviderClient]] = {
    "openai": _openai,
    "ollama": _ollama,
    "deepl": _deepl,
    "deeplx": _deeplx,
    "google": _google,
    "libretranslate": _libre,
    "raw": _raw,
    "none": _raw,
}


def supported_providers() -> List[str]:
    return sorted(PROVIDERS)


def create_provider(identifier: str, config: Optional[ProviderConfig] = None) -> ProviderClient:
    """
    Create a provider client for an identifier.

    Args:
        identifier: Provider identifier (see supported_providers())
        config: Provider configuration

    Raises:
        ValidationError: Unknown identifier
    """
    key = (identifier or "").strip().lower()
    builder = PROVIDERS.get(key)
    if builder is None:
        raise ValidationError(
            f"Unknown provider '{identifier}'",
            field="provider",
            value=identifier,
            limit=supported_providers()
        )
    return builder(config or ProviderConfig())


class ProviderRegistry:
    """
    Builds and shares one client per (provider, model).

    `provider_configs` maps an identifier to its base ProviderConfig; the
    step's model name and the run's language pair are layered on top.
    """

    def __init__(self, provider_configs: Optional[Dict[str, ProviderConfig]] = None,
                 source_lang: str = "English", target_lang: str = "Chinese",
                 timeout: Optional[float] = None, logger=None):
        self.provider_configs = provider_configs or {}
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._clients: Dict[Tuple[str, str, float], ProviderClient] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str, model: str = "", timeout: Optional[float] = None) -> ProviderClient:
        key = ((identifier or "").lower(), model or "", timeout or 0)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                base = self.provider_configs.get(key[0]) or ProviderConfig()
                config = replace(
                    base,
                    model=model or base.model,
                    source_lang=self.source_lang,
                    target_lang=self.target_lang,
                    timeout=timeout or self.timeout or base.timeout,
                    headers=dict(base.headers),
                )
                client = create_provider(identifier, config)
                self.logger.debug(f"Created provider {client.provider_type} ({client.name})")
                self._clients[key] = client
            return client

    def clients(self) -> List[ProviderClient]:
        with self._lock:
            return list(self._clients.values())

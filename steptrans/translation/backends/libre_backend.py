"""LibreTranslate provider (free, no-key by default, endpoint configurable)."""

import os
from typing import Optional

import requests

from steptrans.core.exceptions import ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult, to_language_code


class LibreTranslateProvider(ProviderClient):
    """LibreTranslate HTTP provider."""

    provider_type = "libretranslate"

    DEFAULT_ENDPOINT = "https://libretranslate.com"

    def __init__(self, config: Optional[ProviderConfig] = None):
        config = config or ProviderConfig()
        config.model = config.model or "libretranslate"
        config.api_key = config.api_key or os.getenv("LIBRETRANSLATE_API_KEY")
        config.base_url = config.base_url or os.getenv("LIBRETRANSLATE_URL", self.DEFAULT_ENDPOINT)
        super().__init__(config)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        url = f"{self.config.base_url.rstrip('/')}/translate"
        payload = {
            "q": prompt,
            "source": to_language_code(self.config.source_lang),
            "target": to_language_code(self.config.target_lang),
            "format": "text",
        }
        if self.config.api_key:
            payload["api_key"] = self.config.api_key

        try:
            resp = requests.post(url, json=payload, headers=self.config.headers or None, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderError("libretranslate", f"request failed: {e}", original_error=e)

        if resp.status_code != 200:
            raise ProviderError(
                "libretranslate",
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("libretranslate", f"invalid JSON response: {resp.text[:200]}", original_error=e)

        translation = data.get("translatedText")
        if translation is None:
            raise ProviderError("libretranslate", data.get("error") or "response missing translatedText")

        return CompletionResult(
            text=translation,
            model=self.config.model,
            metadata={"endpoint": self.config.base_url, "detected_language": data.get("detectedLanguage")},
        )

    def is_available(self) -> bool:
        return True

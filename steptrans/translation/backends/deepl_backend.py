"""DeepL API provider."""

import os
from typing import Optional

import requests

from steptrans.core.exceptions import ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult, to_language_code


class DeepLProvider(ProviderClient):
    """DeepL REST provider. Keys ending in ':fx' use the free endpoint."""

    provider_type = "deepl"

    PRO_ENDPOINT = "https://api.deepl.com/v2"
    FREE_ENDPOINT = "https://api-free.deepl.com/v2"

    def __init__(self, config: Optional[ProviderConfig] = None):
        config = config or ProviderConfig()
        config.model = config.model or "deepl"
        config.api_key = config.api_key or os.getenv("DEEPL_API_KEY")
        if not config.base_url:
            free = bool(config.api_key and config.api_key.endswith(":fx"))
            config.base_url = self.FREE_ENDPOINT if free else self.PRO_ENDPOINT
        super().__init__(config)

    @staticmethod
    def _deepl_lang(lang: str, target: bool) -> str:
        code = to_language_code(lang).upper()
        # DeepL requires a regional variant for some target languages
        if target and code == "EN":
            return "EN-US"
        if target and code == "PT":
            return "PT-PT"
        return code

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        if not self.config.api_key:
            raise ProviderError("deepl", "API key not configured", retryable=False)

        url = f"{self.config.base_url.rstrip('/')}/translate"
        headers = {"Authorization": f"DeepL-Auth-Key {self.config.api_key}"}
        headers.update(self.config.headers)
        payload = {
            "text": [prompt],
            "source_lang": self._deepl_lang(self.config.source_lang, target=False),
            "target_lang": self._deepl_lang(self.config.target_lang, target=True),
            "preserve_formatting": True,
        }

        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderError("deepl", f"request failed: {e}", original_error=e)

        if resp.status_code != 200:
            raise ProviderError("deepl", f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)

        try:
            translations = resp.json().get("translations") or []
        except ValueError as e:
            raise ProviderError("deepl", f"invalid JSON response: {resp.text[:200]}", original_error=e)
        if not translations:
            raise ProviderError("deepl", "response contained no translations")

        first = translations[0]
        return CompletionResult(
            text=first.get("text", ""),
            model=self.config.model,
            metadata={"detected_source": first.get("detected_source_language")},
        )

"""DeepLX provider (self-hosted DeepL-compatible endpoint)."""

import os
from typing import Optional

import requests

from steptrans.core.exceptions import ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult, to_language_code


class DeepLXProvider(ProviderClient):
    """DeepLX HTTP provider; the endpoint is the full /translate URL."""

    provider_type = "deeplx"

    DEFAULT_ENDPOINT = "http://localhost:1188/translate"

    def __init__(self, config: Optional[ProviderConfig] = None):
        config = config or ProviderConfig()
        config.model = config.model or "deeplx"
        config.api_key = config.api_key or os.getenv("DEEPLX_ACCESS_TOKEN")
        config.base_url = config.base_url or os.getenv("DEEPLX_URL", self.DEFAULT_ENDPOINT)
        super().__init__(config)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        headers.update(self.config.headers)
        payload = {
            "text": prompt,
            "source_lang": to_language_code(self.config.source_lang).upper(),
            "target_lang": to_language_code(self.config.target_lang).upper(),
        }

        try:
            resp = requests.post(self.config.base_url, json=payload, headers=headers, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderError("deeplx", f"request failed: {e}", original_error=e)

        if resp.status_code != 200:
            raise ProviderError("deeplx", f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("deeplx", f"invalid JSON response: {resp.text[:200]}", original_error=e)

        # DeepLX reports failures in the body as well
        code = data.get("code", 200)
        if code != 200:
            raise ProviderError("deeplx", data.get("message") or f"code {code}", status_code=code)

        return CompletionResult(
            text=data.get("data", ""),
            model=self.config.model,
            metadata={"detected_source": data.get("source_lang")},
        )

    def is_available(self) -> bool:
        return True

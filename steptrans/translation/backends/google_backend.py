"""Google Translate provider.

With an API key the Cloud Translation v2 REST endpoint is used; without one
the free web endpoint is reached through deep-translator.
"""

import html
import os
from typing import Optional

import requests

try:
    from deep_translator import GoogleTranslator
    HAS_DEEP_TRANSLATOR = True
except ImportError:
    HAS_DEEP_TRANSLATOR = False

from steptrans.core.exceptions import DependencyError, ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult, to_language_code


class GoogleProvider(ProviderClient):
    """Google Translate provider."""

    provider_type = "google"

    API_ENDPOINT = "https://translation.googleapis.com/language/translate/v2"

    # Web endpoint rejects longer payloads
    FREE_CHUNK_LIMIT = 4500

    # Google expects region-qualified Chinese
    LANG_OVERRIDES = {"zh": "zh-CN"}

    def __init__(self, config: Optional[ProviderConfig] = None):
        config = config or ProviderConfig()
        config.model = config.model or "google"
        config.api_key = config.api_key or os.getenv("GOOGLE_API_KEY")
        if not config.api_key and not HAS_DEEP_TRANSLATOR:
            raise DependencyError(
                "deep-translator",
                purpose="keyless Google translation",
                install_command="pip install deep-translator"
            )
        super().__init__(config)

    def _lang(self, lang: str) -> str:
        code = to_language_code(lang)
        return self.LANG_OVERRIDES.get(code, code)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        if self.config.api_key:
            return self._translate_api(prompt)
        return self._translate_free(prompt)

    def _translate_api(self, text: str) -> CompletionResult:
        params = {
            "q": text,
            "source": self._lang(self.config.source_lang),
            "target": self._lang(self.config.target_lang),
            "format": "text",
            "key": self.config.api_key,
        }
        try:
            resp = requests.post(self.API_ENDPOINT, data=params, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderError("google", f"request failed: {e}", original_error=e)

        if resp.status_code != 200:
            raise ProviderError("google", f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)

        try:
            translations = resp.json().get("data", {}).get("translations") or []
        except ValueError as e:
            raise ProviderError("google", f"invalid JSON response: {resp.text[:200]}", original_error=e)
        if not translations:
            raise ProviderError("google", "response contained no translations")

        return CompletionResult(
            text=html.unescape(translations[0].get("translatedText", "")),
            model=self.config.model,
            metadata={"endpoint": "cloud-v2"},
        )

    def _translate_free(self, text: str) -> CompletionResult:
        try:
            translator = GoogleTranslator(
                source=self._lang(self.config.source_lang),
                target=self._lang(self.config.target_lang)
            )
            chunks = self._split(text)
            translation = " ".join(translator.translate(chunk) or "" for chunk in chunks)
        except Exception as e:
            raise ProviderError("google", f"free endpoint failed: {e}", original_error=e)

        return CompletionResult(
            text=translation,
            model=self.config.model,
            metadata={"endpoint": "web", "chunks": len(chunks)},
        )

    def _split(self, text: str):
        """Split text on sentence boundaries into chunks the web endpoint accepts."""
        if len(text) <= self.FREE_CHUNK_LIMIT:
            return [text]
        chunks = []
        current = ""
        for sentence in text.split(". "):
            if current and len(current) + len(sentence) > self.FREE_CHUNK_LIMIT:
                chunks.append(current.strip())
                current = ""
            current += sentence + ". "
        if current.strip():
            chunks.append(current.strip())
        return chunks

    def is_available(self) -> bool:
        return bool(self.config.api_key) or HAS_DEEP_TRANSLATOR

"""
Base provider client interface.
All provider variants must inherit from ProviderClient.
"""

import asyncio
import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from steptrans.core.exceptions import ValidationError

# Rough token estimate used for limit checks before any network call.
CHARS_PER_TOKEN = 4


LANGUAGE_CODES = {
    "english": "en",
    "chinese": "zh", "simplified chinese": "zh",
    "french": "fr",
    "spanish": "es",
    "german": "de",
    "italian": "it",
    "portuguese": "pt",
    "russian": "ru",
    "japanese": "ja",
    "korean": "ko",
    "arabic": "ar",
    "dutch": "nl",
    "polish": "pl",
    "turkish": "tr",
    "ukrainian": "uk",
}


def to_language_code(lang: str) -> str:
    """Map a language name or code to a lowercase ISO 639-1 code."""
    lang = (lang or "").strip().lower()
    return LANGUAGE_CODES.get(lang, lang)


def estimate_tokens(text: str) -> int:
    """Estimate token count of text (about 4 characters per token)."""
    if not text:
        return 0
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)


@dataclass
class ProviderConfig:
    """Read-only configuration of one provider client."""
    api_key: Optional[str] = None
    model: str = ""
    base_url: Optional[str] = None
    source_lang: str = "English"
    target_lang: str = "Chinese"
    timeout: float = 300.0
    max_input_tokens: int = 8192
    max_output_tokens: int = 4096
    input_token_price: float = 0.0   # per 1M tokens
    output_token_price: float = 0.0  # per 1M tokens
    price_unit: str = "USD"
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class CompletionResult:
    """Response from a provider call."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    metadata: Dict = None


class ProviderClient(ABC):
    """
    Abstract base class for provider clients.

    A client holds only read-only configuration, so one instance can serve
    many concurrent workers.
    """

    provider_type = "base"
    # LLMs receive a rendered prompt; machine-translation services receive raw text.
    supports_prompts = False

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()

    @property
    def name(self) -> str:
        return self.config.model or self.provider_type

    @property
    def max_input_tokens(self) -> int:
        return self.config.max_input_tokens

    @property
    def max_output_tokens(self) -> int:
        return self.config.max_output_tokens

    def get_input_token_price(self) -> float:
        return self.config.input_token_price

    def get_output_token_price(self) -> float:
        return self.config.output_token_price

    def get_price_unit(self) -> str:
        return self.config.price_unit

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost of a call in price_unit (prices are per 1M tokens)."""
        return (input_tokens * self.get_input_token_price()
                + output_tokens * self.get_output_token_price()) / 1_000_000

    def validate_request(self, prompt: str, max_tokens: int) -> None:
        """
        Reject requests over the provider's limits before touching the network.

        Raises:
            ValidationError: prompt or requested output exceeds the limits
        """
        prompt_tokens = estimate_tokens(prompt)
        if self.max_input_tokens and prompt_tokens > self.max_input_tokens:
            raise ValidationError(
                f"{self.name}: prompt of ~{prompt_tokens} tokens exceeds max input of {self.max_input_tokens}",
                field="prompt",
                value=prompt_tokens,
                limit=self.max_input_tokens
            )
        if self.max_output_tokens and max_tokens and max_tokens > self.max_output_tokens:
            raise ValidationError(
                f"{self.name}: max_tokens {max_tokens} exceeds max output of {self.max_output_tokens}",
                field="max_tokens",
                value=max_tokens,
                limit=self.max_output_tokens
            )

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        """
        Complete a prompt asynchronously.

        Args:
            prompt: Rendered prompt (or raw text for non-prompt providers)
            max_tokens: Output token budget
            temperature: Sampling temperature

        Returns:
            CompletionResult with text and token usage
        """
        self.validate_request(prompt, max_tokens)
        return await self._complete(prompt, max_tokens, temperature)

    def complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        """Complete a prompt synchronously."""
        self.validate_request(prompt, max_tokens)
        return self._complete_sync(prompt, max_tokens, temperature)

    async def _complete(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        # Blocking clients run in the default executor so workers keep interleaving
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(self._complete_sync, prompt, max_tokens, temperature)
        )

    @abstractmethod
    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        """Perform the provider call. Must raise ProviderError on transport failures."""
        pass

    def is_available(self) -> bool:
        """Check if the provider is configured."""
        return self.config.api_key is not None


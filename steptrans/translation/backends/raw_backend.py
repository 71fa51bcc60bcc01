"""Passthrough provider: returns its input unchanged, for offline runs and tests."""

from typing import Optional

from ..base import ProviderClient, ProviderConfig, CompletionResult, estimate_tokens


class RawProvider(ProviderClient):
    """Identity provider (no network)."""

    provider_type = "raw"

    def __init__(self, config: Optional[ProviderConfig] = None):
        config = config or ProviderConfig()
        config.model = config.model or "raw"
        super().__init__(config)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        tokens = estimate_tokens(prompt)
        return CompletionResult(
            text=prompt,
            input_tokens=tokens,
            output_tokens=tokens,
            model=self.config.model,
            metadata={"info": "passthrough (no network)"},
        )

    async def _complete(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        return self._complete_sync(prompt, max_tokens, temperature)

    def is_available(self) -> bool:
        return True

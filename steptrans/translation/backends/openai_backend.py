"""OpenAI chat-completion provider (also serves OpenAI-compatible endpoints)."""

import os
from typing import Optional

try:
    from openai import OpenAI, AsyncOpenAI, OpenAIError, APIStatusError
    HAS_OPENAI = True
except ImportError:
    HAS_OPENAI = False

from steptrans.core.exceptions import DependencyError, ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult


class OpenAIProvider(ProviderClient):
    """OpenAI GPT-based provider."""

    provider_type = "openai"
    supports_prompts = True

    # Prices per 1M tokens
    MODELS = {
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
        "gpt-4-turbo": {"input": 10.0, "output": 30.0},
        "gpt-4": {"input": 30.0, "output": 60.0},
        "gpt-3.5-turbo": {"input": 0.5, "output": 1.5},
    }

    SYSTEM_PROMPT = "You are a professional translator. Follow the instructions in the user message exactly."

    def __init__(self, config: Optional[ProviderConfig] = None):
        if not HAS_OPENAI:
            raise DependencyError("openai", purpose="the openai provider", install_command="pip install openai>=1.0.0")

        config = config or ProviderConfig(model="gpt-4o-mini")
        config.api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        config.model = config.model or "gpt-4o-mini"
        self._apply_model_defaults(config)
        super().__init__(config)

        if self.config.api_key:
            # Retries belong to the scheduler
            kwargs = {
                "api_key": self.config.api_key,
                "timeout": self.config.timeout,
                "max_retries": 0,
                "default_headers": self.config.headers or None,
            }
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self.client = OpenAI(**kwargs)
            self.async_client = AsyncOpenAI(**kwargs)
        else:
            self.client = None
            self.async_client = None

    def _apply_model_defaults(self, config: ProviderConfig) -> None:
        known = self.MODELS.get(config.model)
        if not known:
            return
        if not config.input_token_price:
            config.input_token_price = known["input"]
        if not config.output_token_price:
            config.output_token_price = known["output"]

    def _build_messages(self, prompt: str):
        return [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    def _to_result(self, response) -> CompletionResult:
        if not response.choices:
            raise ProviderError("openai", "response contained no choices")
        choice = response.choices[0]
        text = (choice.message.content or "").strip()
        usage = response.usage
        return CompletionResult(
            text=text,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=response.model or self.config.model,
            metadata={"finish_reason": choice.finish_reason},
        )

    async def _complete(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        if not self.async_client:
            raise ProviderError("openai", "API key not configured", retryable=False)
        try:
            response = await self.async_client.chat.completions.create(
                model=self.config.model,
                messages=self._build_messages(prompt),
                temperature=temperature,
                max_tokens=max_tokens or self.max_output_tokens,
            )
        except APIStatusError as e:
            raise ProviderError("openai", e.message, original_error=e, status_code=e.status_code)
        except OpenAIError as e:
            raise ProviderError("openai", str(e), original_error=e)
        return self._to_result(response)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        if not self.client:
            raise ProviderError("openai", "API key not configured", retryable=False)
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=self._build_messages(prompt),
                temperature=temperature,
                max_tokens=max_tokens or self.max_output_tokens,
            )
        except APIStatusError as e:
            raise ProviderError("openai", e.message, original_error=e, status_code=e.status_code)
        except OpenAIError as e:
            raise ProviderError("openai", str(e), original_error=e)
        return self._to_result(response)

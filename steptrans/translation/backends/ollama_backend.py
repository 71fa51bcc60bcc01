"""Ollama local model provider."""

import os
from typing import Optional

try:
    import ollama
    HAS_OLLAMA = True
except ImportError:
    HAS_OLLAMA = False

from steptrans.core.exceptions import DependencyError, ProviderError
from ..base import ProviderClient, ProviderConfig, CompletionResult


class OllamaProvider(ProviderClient):
    """Local LLM served by Ollama."""

    provider_type = "ollama"
    supports_prompts = True

    def __init__(self, config: Optional[ProviderConfig] = None):
        if not HAS_OLLAMA:
            raise DependencyError("ollama", purpose="the ollama provider", install_command="pip install ollama")

        config = config or ProviderConfig()
        config.model = config.model or "llama3.1"
        config.base_url = config.base_url or os.getenv("OLLAMA_HOST", "http://localhost:11434")
        super().__init__(config)
        self.client = ollama.Client(host=self.config.base_url, timeout=self.config.timeout)

    def _complete_sync(self, prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        try:
            response = self.client.generate(
                model=self.config.model,
                prompt=prompt,
                options={
                    "temperature": temperature,
                    "num_predict": max_tokens or self.max_output_tokens,
                }
            )
        except ollama.ResponseError as e:
            raise ProviderError("ollama", e.error, original_error=e, status_code=e.status_code)
        except Exception as e:
            raise ProviderError(
                "ollama",
                f"{e}. Make sure Ollama is running and model '{self.config.model}' is installed.",
                original_error=e
            )

        return CompletionResult(
            text=(response["response"] or "").strip(),
            input_tokens=response.get("prompt_eval_count") or 0,
            output_tokens=response.get("eval_count") or 0,
            model=self.config.model,
            metadata={"done_reason": response.get("done_reason")},
        )

    def is_available(self) -> bool:
        # Local models need no key
        return True

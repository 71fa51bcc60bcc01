"""Provider clients, prompts and output cleaning."""

from .base import ProviderClient, ProviderConfig, CompletionResult
from .factory import create_provider, supported_providers, ProviderRegistry
from .prompts import PromptBuilder

__all__ = [
    'ProviderClient',
    'ProviderConfig',
    'CompletionResult',
    'create_provider',
    'supported_providers',
    'ProviderRegistry',
    'PromptBuilder',
]

"""Provider client implementations."""

from .openai_backend import OpenAIProvider
from .ollama_backend import OllamaProvider
from .deepl_backend import DeepLProvider
from .deeplx_backend import DeepLXProvider
from .google_backend import GoogleProvider
from .libre_backend import LibreTranslateProvider
from .raw_backend import RawProvider

__all__ = [
    'OpenAIProvider',
    'OllamaProvider',
    'DeepLProvider',
    'DeepLXProvider',
    'GoogleProvider',
    'LibreTranslateProvider',
    'RawProvider'
]

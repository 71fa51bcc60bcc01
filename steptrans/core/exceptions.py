"""
Exception hierarchy for steptrans.

Node-level errors (ProviderError, ValidationError) are isolated by the
scheduler; CacheError and PersistenceError are logged and never abort a run;
DocumentError aborts a run before any node is dispatched.
"""

from __future__ import annotations
from typing import Optional, Dict, Any, List


class SteptransError(Exception):
    """Base exception for all steptrans errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        suggestion: Optional[str] = None
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            details: Additional error details
            recoverable: Whether the run can continue after this error
            suggestion: Suggested fix or workaround
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.suggestion = suggestion

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion
        }

    def __str__(self) -> str:
        result = self.message
        if self.suggestion:
            result += f"\nSuggestion: {self.suggestion}"
        return result


def is_transient_status(status_code: Optional[int]) -> bool:
    """Network failures (no status), rate limits and server errors are worth retrying."""
    return status_code is None or status_code == 429 or status_code >= 500


class ProviderError(SteptransError):
    """
    Provider call failed. Retried with backoff when `retryable`; rejected
    requests (bad key, quota, malformed input) fail the node at once.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None
    ):
        full_message = f"Provider '{provider}' failed: {message}"
        details = {
            "provider": provider,
            "original_error": str(original_error) if original_error else None,
            "status_code": status_code
        }
        if retryable is None:
            retryable = is_transient_status(status_code)

        suggestion = None
        if status_code == 429:
            suggestion = "Rate limited. Lower concurrency or raise retry_delay."
        elif provider in ["openai", "deepl", "google"]:
            suggestion = f"Check the API key and endpoint configured for {provider}."

        super().__init__(full_message, details, recoverable=True, suggestion=suggestion)
        self.provider = provider
        self.original_error = original_error
        self.status_code = status_code
        self.retryable = retryable


class ValidationError(SteptransError):
    """
    Malformed node, unknown provider, or content over a provider's token
    limits. Fatal for the affected node only; never retried.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        limit: Optional[Any] = None
    ):
        details = {
            "field": field,
            "value": value,
            "limit": limit
        }
        suggestion = None
        if limit is not None:
            suggestion = "Split the node into smaller pieces or pick a model with a larger context window."

        super().__init__(message, details, recoverable=True, suggestion=suggestion)
        self.field = field
        self.value = value
        self.limit = limit


class CacheError(SteptransError):
    """Raised when cache operations fail."""

    def __init__(
        self,
        message: str,
        cache_type: Optional[str] = None,
        operation: Optional[str] = None
    ):
        """
        Initialize cache error.

        Args:
            message: Error message
            cache_type: Type of cache (file/disk/memory)
            operation: Operation that failed (get/set/clear)
        """
        details = {
            "cache_type": cache_type,
            "operation": operation
        }
        suggestion = (
            "Cache errors are non-fatal. The pipeline continues with direct provider calls.\n"
            "To fix: Check disk space and permissions for the cache directory."
        )

        super().__init__(message, details, recoverable=True, suggestion=suggestion)
        self.cache_type = cache_type
        self.operation = operation


class PersistenceError(SteptransError):
    """Raised when a session cannot be written to or read from disk."""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {
            "session_id": session_id,
            "path": path,
            "original_error": str(original_error) if original_error else None
        }
        suggestion = "Progress is still tracked in memory, but resuming after a crash may redo some nodes."

        super().__init__(message, details, recoverable=True, suggestion=suggestion)
        self.session_id = session_id
        self.path = path
        self.original_error = original_error


class DocumentError(SteptransError):
    """Input document unreadable or yields zero nodes. Aborts the run."""

    def __init__(
        self,
        message: str,
        input_file: Optional[str] = None
    ):
        details = {"input_file": input_file}
        super().__init__(message, details, recoverable=False)
        self.input_file = input_file


class ConfigurationError(SteptransError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        invalid_value: Optional[Any] = None,
        valid_values: Optional[List[Any]] = None
    ):
        """
        Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that's invalid
            invalid_value: Invalid value provided
            valid_values: List of valid values
        """
        details = {
            "config_key": config_key,
            "invalid_value": invalid_value,
            "valid_values": valid_values
        }

        suggestion = None
        if config_key and valid_values:
            suggestion = f"Valid values for {config_key}: {', '.join(map(str, valid_values))}"
        elif config_key:
            suggestion = f"Check configuration for '{config_key}'"

        super().__init__(message, details, recoverable=False, suggestion=suggestion)
        self.config_key = config_key
        self.invalid_value = invalid_value
        self.valid_values = valid_values


class DependencyError(SteptransError):
    """Raised when a provider's client library is missing."""

    def __init__(
        self,
        dependency: str,
        purpose: Optional[str] = None,
        install_command: Optional[str] = None
    ):
        message = f"Missing dependency: {dependency}"
        if purpose:
            message += f" (required for {purpose})"

        details = {
            "dependency": dependency,
            "purpose": purpose
        }
        suggestion = install_command or f"Install with: pip install {dependency}"

        super().__init__(message, details, recoverable=False, suggestion=suggestion)
        self.dependency = dependency
        self.purpose = purpose

"""Exception hierarchy for fluxdigest.

Each error carries the HTTP status the API layer answers with, and upstream
errors additionally keep the status code the remote service returned.
"""


class FluxDigestError(Exception):
    """Base exception for all fluxdigest errors."""

    http_status: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConfigurationMissingError(FluxDigestError):
    """Raised when an API key or the upstream client is not configured."""

    http_status = 400


class UpstreamError(FluxDigestError):
    """Raised when the Miniflux API fails after retries."""

    http_status = 502


class UpstreamAuthError(UpstreamError):
    """Raised on 401/403 from Miniflux; never retried."""


class LLMError(FluxDigestError):
    """Raised when the chat-completion endpoint answers with an error."""

    http_status = 502


class LLMTimeoutError(LLMError):
    """Raised when a non-streaming completion exceeds its deadline."""

    http_status = 504


class StorageError(FluxDigestError):
    """Raised when a data file cannot be written."""


class DecryptionError(FluxDigestError):
    """Raised when a secret envelope fails authentication or is malformed."""


class CronParseError(FluxDigestError, ValueError):
    """Raised when a cron expression cannot be parsed."""

    http_status = 400

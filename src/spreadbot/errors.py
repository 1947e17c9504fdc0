"""
Error Taxonomy
==============

Exceptions raised at the collector's boundaries.

    FetchError          - exchange request failed
        TransportError      connection / timeout / 5xx (retryable)
        RateLimitedError    HTTP 429 / 418 (retryable with backoff)
        ProtocolError       malformed or unexpected response (bounded retries)
        AuthError           invalid credentials (fatal)
    PersistenceError    - flush record could not be written
    ConfigError         - configuration unusable at startup (fatal)
        ConfigMissingError
        ConfigMalformedError
"""

from typing import Optional


class FetchError(Exception):
    """Base exchange fetch error."""

    retryable = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransportError(FetchError):
    """Connection failure, timeout or server-side (5xx) error."""


class RateLimitedError(FetchError):
    """Exchange rejected the request for exceeding its rate limit."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status)
        self.retry_after = retry_after


class ProtocolError(FetchError):
    """Response could not be decoded or did not have the expected shape."""


class AuthError(FetchError):
    """Credentials rejected. The same key will fail every later call."""

    retryable = False


class PersistenceError(Exception):
    """Flush record could not be written to the output file."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ConfigError(Exception):
    """Configuration could not be loaded."""


class ConfigMissingError(ConfigError):
    """Config file or a required field is absent."""

    def __init__(self, message: str, fields: Optional[list[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ConfigMalformedError(ConfigError):
    """Config file is unreadable or a field has an invalid value."""

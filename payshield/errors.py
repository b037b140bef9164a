"""
Error taxonomy for the PayShield pipeline.

Every error carries the HTTP status the API layer should answer with.
"""

from typing import Any, Dict, List, Optional


class PayShieldError(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(PayShieldError):
    """Malformed or missing input. Never retried."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidTokenError(ValidationError):
    """One or more device tokens do not look like provider push tokens."""

    def __init__(self, invalid_tokens: List[str]):
        super().__init__(
            f"Invalid deviceToken: {', '.join(invalid_tokens)} is not a valid Expo push token",
            details={"invalid_tokens": invalid_tokens},
        )
        self.invalid_tokens = invalid_tokens


class AuthenticationError(PayShieldError):
    status_code = 401


class ScanNotFoundError(PayShieldError):
    status_code = 404


class ConfigurationError(PayShieldError):
    """Required configuration (API keys, URLs) is missing."""


class RetrievalError(PayShieldError):
    """Image could not be fetched from the content store. Fatal to the scan."""

    status_code = 502


class TransientServiceError(PayShieldError):
    """Upstream 429/5xx, timeout or transport failure. Safe to retry."""

    status_code = 503

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.upstream_status = upstream_status


class ServiceError(PayShieldError):
    """Upstream rejected the request (4xx other than 429). Not retried."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.upstream_status = upstream_status


class ParseError(PayShieldError):
    """Model response could not be decoded. Recovered locally."""


class PersistenceError(PayShieldError):
    """Record store write failed."""

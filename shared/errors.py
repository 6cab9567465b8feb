"""
Error taxonomy for transport and engine.

Transport errors are raised by `shared.cloudflare` after HTTP status mapping.
The engine downgrades per-item errors to Failed outcomes; listing and policy
errors propagate to the caller unchanged.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class CleanupError(Exception):
    """Root of all errors raised by this project."""


class ConfigError(CleanupError):
    """Raised when configuration is missing or cannot be parsed."""


class PolicyViolationError(CleanupError, ValueError):
    """Raised when a retention policy is malformed (e.g. negative keep count)."""


class TransportError(CleanupError):
    """Network or HTTP failure talking to the remote API."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        path: Optional[str] = None,
        errors: Optional[Sequence[Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.path = path
        self.errors = list(errors or [])


class NotFoundError(TransportError):
    """Remote resource is already gone (404)."""


class AuthenticationError(TransportError):
    """API token is invalid or lacks permissions (401/403)."""


class RateLimitedError(TransportError):
    """Remote kept answering 429 after all retries."""


class UnsupportedOperationError(TransportError):
    """Remote does not support the operation on this path (405/501)."""

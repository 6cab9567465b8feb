"""
Authenticated Cloudflare API transport.

Wraps a requests.Session with bearer auth, retries transient failures
(429/5xx and connection errors) with exponential backoff, unwraps the
Cloudflare JSON envelope and maps final HTTP statuses onto shared.errors.
The engine never talks HTTP directly; it only calls get()/delete().
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

import requests

from shared.errors import (
    AuthenticationError,
    NotFoundError,
    RateLimitedError,
    TransportError,
    UnsupportedOperationError,
)
from shared.logging import get_logger

if TYPE_CHECKING:
    from shared.config import AppConfig

logger = get_logger(__name__)

USER_AGENT = "cf-deploy-cleanup/1.0.0"

# Statuses worth retrying before giving up.
TRANSIENT_STATUSES = (429, 500, 502, 503, 504)

UNSUPPORTED_STATUSES = (405, 501)
# Lowercased fragments of remote error messages meaning "wrong sub-resource".
UNSUPPORTED_MESSAGE_HINTS = ("not supported", "not allowed", "unsupported")


class CloudflareTransport:
    """Resource transport over the Cloudflare v4 REST API."""

    def __init__(
        self,
        api_token: str,
        account_id: str,
        *,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30,
        max_retries: int = 3,
        backoff_base_ms: int = 750,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_token or not account_id:
            raise ValueError("API token and account ID are required for the Cloudflare transport")
        self.account_id = account_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "CloudflareTransport":
        config.validate_credentials()
        return cls(
            config.api_token or "",
            config.account_id or "",
            base_url=config.base_url,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
            backoff_base_ms=config.backoff_base_ms,
        )

    def account_path(self, *parts: str) -> str:
        """Build `/accounts/{account_id}/...` from path segments."""
        suffix = "/".join(p.strip("/") for p in parts if p)
        return f"/accounts/{self.account_id}/{suffix}" if suffix else f"/accounts/{self.account_id}"

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> dict:
        return self._request("GET", path, params)

    def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> dict:
        return self._request("DELETE", path, params)

    def close(self) -> None:
        self._session.close()

    def verify_token(self) -> dict:
        """
        Check the API token against the account-scoped verify endpoint,
        falling back to the user-scoped one.

        Never raises for an invalid token; returns {"valid": False, "error": ...}.
        """
        try:
            body = self.get(self.account_path("tokens", "verify"))
            logger.info("transport.verify.success", method="account-specific")
            return {"valid": True, "method": "account-specific", "token_info": body.get("result")}
        except TransportError as account_error:
            logger.debug("transport.verify.fallback", error=str(account_error))
            try:
                body = self.get("/user/tokens/verify")
                logger.info("transport.verify.success", method="general")
                return {"valid": True, "method": "general", "token_info": body.get("result")}
            except TransportError as general_error:
                logger.error(
                    "transport.verify.failed",
                    account_error=str(account_error),
                    general_error=str(general_error),
                )
                return {
                    "valid": False,
                    "error": f"Both validation methods failed: {general_error}",
                }

    def _backoff_seconds(self, attempt: int) -> float:
        return self.backoff_base_ms * (2 ** (attempt - 1)) / 1000.0

    def _request(self, method: str, path: str, params: Optional[Mapping[str, Any]]) -> dict:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            attempt += 1
            logger.debug("transport.request", method=method, path=path, attempt=attempt)
            try:
                resp = self._session.request(
                    method, url, params=dict(params or {}), timeout=self.timeout
                )
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    delay = self._backoff_seconds(attempt)
                    logger.warning(
                        "transport.retry",
                        method=method,
                        path=path,
                        attempt=attempt,
                        delay_s=delay,
                        error=repr(e),
                    )
                    self._sleep(delay)
                    continue
                raise TransportError(f"{method} {path} failed: {e}", path=path) from e

            if resp.status_code in TRANSIENT_STATUSES and attempt < self.max_retries:
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    "transport.retry",
                    method=method,
                    path=path,
                    attempt=attempt,
                    delay_s=delay,
                    status=resp.status_code,
                )
                self._sleep(delay)
                continue

            return _unwrap(method, path, resp)


def _unwrap(method: str, path: str, resp: requests.Response) -> dict:
    """Map status + envelope to a dict or a TransportError subclass."""
    try:
        body = resp.json()
    except ValueError:
        body = None

    errors = body.get("errors") if isinstance(body, dict) else None
    status = resp.status_code

    if status >= 400:
        raise _error_for_status(method, path, status, errors or [], resp.text)

    if not isinstance(body, dict):
        raise TransportError(
            f"{method} {path} returned a non-JSON body", status=status, path=path
        )
    if not body.get("success", False):
        if _mentions_unsupported(errors or []):
            raise UnsupportedOperationError(
                f"{method} {path} is not supported", status=status, path=path, errors=errors
            )
        raise TransportError(
            f"{method} {path} returned success=false", status=status, path=path, errors=errors
        )
    return body


def _error_for_status(
    method: str, path: str, status: int, errors: list, text: str
) -> TransportError:
    detail = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    detail = detail or text[:200]
    kwargs = {"status": status, "path": path, "errors": errors}
    if status == 404:
        return NotFoundError(f"Resource not found: {path}", **kwargs)
    if status in (401, 403):
        return AuthenticationError("API token is invalid or lacks permissions", **kwargs)
    if status == 429:
        return RateLimitedError("Rate limit exceeded", **kwargs)
    if status in UNSUPPORTED_STATUSES or _mentions_unsupported(errors):
        return UnsupportedOperationError(f"{method} {path} is not supported: {detail}", **kwargs)
    if status >= 500:
        return TransportError(f"Server error from Cloudflare ({status}): {detail}", **kwargs)
    return TransportError(f"{method} {path} failed ({status}): {detail}", **kwargs)


def _mentions_unsupported(errors: list) -> bool:
    for err in errors:
        message = err.get("message", "") if isinstance(err, dict) else str(err)
        if any(hint in message.lower() for hint in UNSUPPORTED_MESSAGE_HINTS):
            return True
    return False

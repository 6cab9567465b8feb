"""
Environment-based configuration for the Cloudflare deployment cleanup tool.

This module exposes a small, typed configuration surface shared by the
transport, the engine and the CLI. All values are sourced from environment
variables with sensible, non-secret defaults.

No secrets or credentials are hard-coded here; they must be provided via
the environment (or tooling such as python-dotenv in local development).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Optional

from shared.errors import ConfigError

ExecutionMode = Literal["concurrent", "sequential"]
LogFormat = Literal["json", "console"]

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"

_ENVIRONMENTS = ("preview", "production")


@dataclass(frozen=True)
class AppConfig:
    """
    Top-level application configuration.

    The engine never reads this globally: callers build one instance at
    startup and derive the dispatcher limits and the default retention
    policy from it explicitly.
    """

    # Cloudflare API credentials and endpoint.
    api_token: Optional[str]
    account_id: Optional[str]
    base_url: str

    # HTTP transport behaviour.
    request_timeout_seconds: int
    max_retries: int
    backoff_base_ms: int

    # Dispatcher limits: concurrent calls and minimum delay before each call.
    rate_limit_concurrent: int
    rate_limit_delay_ms: int
    execution_mode: ExecutionMode

    # Logging. When log_file is set, logs are written to file (and stdout if log_stdout).
    log_level: str
    log_format: LogFormat
    log_file: Optional[str]
    log_stdout: bool

    # CLI behaviour
    confirmation_required: bool

    # Retention policy defaults
    max_age_days: Optional[int]
    filter_environment: Optional[str]
    filter_status: Optional[str]
    skip_production: bool
    keep_latest_count: int
    skip_latest: bool

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Construct configuration from environment variables.

        Unparseable numbers or unknown enum values raise ConfigError naming
        the offending variable instead of silently falling back.
        """

        execution_mode = (os.getenv("EXECUTION_MODE") or "concurrent").strip().lower()
        if execution_mode not in ("concurrent", "sequential"):
            raise ConfigError(f"Unsupported EXECUTION_MODE value: {execution_mode!r}")

        log_format = (os.getenv("LOG_FORMAT") or "json").strip().lower()
        if log_format not in ("json", "console"):
            raise ConfigError(f"Unsupported LOG_FORMAT value: {log_format!r}")

        filter_environment = (os.getenv("FILTER_ENVIRONMENT") or "").strip().lower() or None
        if filter_environment is not None and filter_environment not in _ENVIRONMENTS:
            raise ConfigError(f"Unsupported FILTER_ENVIRONMENT value: {filter_environment!r}")

        return cls(
            api_token=os.getenv("CLOUDFLARE_API_TOKEN") or None,
            account_id=os.getenv("CLOUDFLARE_ACCOUNT_ID") or None,
            base_url=(os.getenv("CLOUDFLARE_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            request_timeout_seconds=_int_env("REQUEST_TIMEOUT_SECONDS", 30, minimum=1),
            max_retries=_int_env("HTTP_MAX_RETRIES", 3, minimum=1),
            backoff_base_ms=_int_env("HTTP_BACKOFF_BASE_MS", 750, minimum=0),
            rate_limit_concurrent=_int_env("RATE_LIMIT_CONCURRENT", 5, minimum=1),
            rate_limit_delay_ms=_int_env("RATE_LIMIT_DELAY_MS", 100, minimum=0),
            execution_mode=execution_mode,  # type: ignore[arg-type]
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            log_format=log_format,  # type: ignore[arg-type]
            log_file=os.getenv("LOG_FILE") or None,
            log_stdout=_bool_env("LOG_STDOUT", True),
            confirmation_required=_bool_env("CONFIRMATION_REQUIRED", True),
            max_age_days=_optional_int_env("MAX_AGE_DAYS"),
            filter_environment=filter_environment,
            filter_status=os.getenv("FILTER_STATUS") or None,
            skip_production=_bool_env("SKIP_PRODUCTION", True),
            keep_latest_count=_int_env("KEEP_LATEST", 1, minimum=0),
            skip_latest=_bool_env("SKIP_LATEST", True),
        )

    def validate_credentials(self) -> None:
        """Raise ConfigError listing every missing credential at once."""
        problems = []
        if not self.api_token:
            problems.append("CLOUDFLARE_API_TOKEN environment variable is required")
        if not self.account_id:
            problems.append("CLOUDFLARE_ACCOUNT_ID environment variable is required")
        if problems:
            raise ConfigError("Configuration errors:\n" + "\n".join(problems))


def _bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or str(default)).strip().lower()
    return raw in ("true", "1", "yes")


def _int_env(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _optional_int_env(name: str) -> Optional[int]:
    if not (os.getenv(name) or "").strip():
        return None
    return _int_env(name, 0, minimum=0)


def get_config() -> AppConfig:
    """
    Helper to obtain the current configuration.

    In simple scripts, calling this function directly is sufficient. In
    longer-lived processes, construct a single `AppConfig` at startup and
    pass it explicitly through your code.
    """

    return AppConfig.from_env()

"""
Structured logging setup for the Cloudflare deployment cleanup tool.

All runtime logging should go through structlog. This module provides a
minimal, production-friendly baseline shared by the transport, the engine
and the CLI.

Key principles:
- Logs are structured (JSON by default) and include contextual fields.
- Context can be bound per batch (resource_kind, resource_name, run_id).
- Configuration is deterministic and avoids ad-hoc logging configuration
  scattered across the codebase.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog


def _build_shared_processors(log_format: str = "json") -> list[structlog.types.Processor]:
    """
    Processors shared by every entrypoint.

    The final renderer is JSON for machines or a console renderer for
    interactive runs (LOG_FORMAT=console).
    """

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        timestamper,
        structlog.processors.format_exc_info,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.EventRenamer("message"))
        processors.append(structlog.processors.JSONRenderer())
    return processors


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    log_stdout: bool = True,
    log_format: str = "json",
) -> None:
    """
    Configure structlog and the standard logging module.

    This should be called once at process startup by each entrypoint.

    - When log_stdout is True (default), a StreamHandler(sys.stdout) is added.
    - When log_file is set, a FileHandler is added (parent dir created if needed).
    - At least one handler is always added: if both log_stdout=False and log_file
      is unset, stdout is used as fallback so the process never has zero handlers.
    """

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_stdout:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(stdout_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(file_handler)

    if not root.handlers:
        # Fallback: avoid zero handlers (e.g. LOG_STDOUT=false and LOG_FILE unset)
        fallback = logging.StreamHandler(sys.stdout)
        fallback.setLevel(level)
        fallback.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(fallback)

    structlog.configure(
        processors=_build_shared_processors(log_format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Obtain a structured logger.

    Usage:
        from shared.logging import get_logger, bind_cleanup_context

        logger = get_logger(__name__)
        bind_cleanup_context(resource_kind="pages", resource_name="my-site")
        logger.info("executor.start")
    """

    # If configure_logging() has not been called yet, fall back to a
    # minimal configuration to avoid silent failures.
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_cleanup_context(
    *,
    resource_kind: Optional[str] = None,
    resource_name: Optional[str] = None,
    run_id: Optional[str] = None,
    dry_run: Optional[bool] = None,
    **extra: Any,
) -> Mapping[str, Any]:
    """
    Bind common context fields for one cleanup batch.

    This centralizes the convention that batch logs should include:
    - resource_kind
    - resource_name
    - run_id
    - dry_run

    Additional keyword arguments are also bound into the logging context.
    """

    context: dict[str, Any] = {
        "resource_kind": resource_kind,
        "resource_name": resource_name,
        "run_id": run_id,
        "dry_run": dry_run,
        **extra,
    }

    # Remove keys with None values to keep logs concise.
    filtered_context = {k: v for k, v in context.items() if v is not None}

    structlog.contextvars.bind_contextvars(**filtered_context)
    return filtered_context


def clear_cleanup_context() -> None:
    """Drop every context field bound by bind_cleanup_context."""
    structlog.contextvars.clear_contextvars()

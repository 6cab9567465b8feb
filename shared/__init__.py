"""
Shared infrastructure for the Cloudflare deployment cleanup tool.

This package is intentionally small and focused. It currently provides:

- `shared.config` for environment-based configuration
- `shared.logging` for structlog-based structured logging
- `shared.errors` for the error taxonomy shared by transport and engine
- `shared.cloudflare` for the authenticated Cloudflare API transport

The `engine` package treats `shared/` as read-only infrastructure code and
should not introduce resource-kind specific coupling here.
"""

"""
Command-line entrypoint for bulk-deleting Cloudflare Pages deployments and
Workers script versions.

Usage:
  cf-cleanup verify
  cf-cleanup resources pages
  cf-cleanup list pages my-site
  cf-cleanup stats workers my-worker
  cf-cleanup cleanup pages my-site --dry-run --keep-latest 3 --max-age-days 30

Exit codes:
  0 - Success
  1 - Config, validation or listing failure
  2 - Deletion failures occurred
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import Optional, Sequence

from engine.models import ENVIRONMENTS, RESOURCE_KINDS, RetentionPolicy
from engine.service import CleanupService
from shared.config import AppConfig, get_config
from shared.errors import CleanupError, ConfigError
from shared.logging import configure_logging, get_logger

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FAILURES = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cf-cleanup",
        description="Bulk delete Cloudflare Pages deployments and Workers versions",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("verify", help="Validate the API token")

    resources = sub.add_parser("resources", help="List Pages projects or Workers scripts")
    resources.add_argument("kind", choices=RESOURCE_KINDS)

    for command, help_text in (
        ("list", "List deployments/versions of a resource"),
        ("stats", "Show deployment statistics for a resource"),
    ):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("kind", choices=RESOURCE_KINDS)
        p.add_argument("name", help="Pages project or Workers script name")

    cleanup = sub.add_parser("cleanup", help="Delete deployments/versions per retention policy")
    cleanup.add_argument("kind", choices=RESOURCE_KINDS)
    cleanup.add_argument("name", help="Pages project or Workers script name")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be deleted")
    cleanup.add_argument("--keep-latest", type=int, default=None, metavar="N")
    cleanup.add_argument("--max-age-days", type=int, default=None, metavar="DAYS")
    cleanup.add_argument("--status", default=None, help="Only delete items with this status")
    cleanup.add_argument("--env", choices=ENVIRONMENTS, default=None)
    cleanup.add_argument(
        "--no-skip-production",
        action="store_true",
        help="Allow deleting production deployments (Pages)",
    )
    cleanup.add_argument(
        "--no-skip-latest",
        action="store_true",
        help="Allow deleting the newest version (Workers)",
    )
    cleanup.add_argument(
        "--sequential",
        action="store_true",
        help="Wait for each deletion before starting the next",
    )
    cleanup.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")

    for p in sub.choices.values():
        p.add_argument("--json", action="store_true", help="Print machine-readable output")
    return parser


def policy_from_args(args: argparse.Namespace, defaults: RetentionPolicy) -> RetentionPolicy:
    policy = defaults
    if args.keep_latest is not None:
        policy = replace(policy, keep_latest_count=args.keep_latest)
    if args.max_age_days is not None:
        policy = replace(policy, max_age_days=args.max_age_days)
    if args.status is not None:
        policy = replace(policy, status_filter=args.status)
    if args.env is not None:
        policy = replace(policy, environment_filter=args.env)
    if args.no_skip_production:
        policy = replace(policy, skip_production=False)
    if args.no_skip_latest:
        policy = replace(policy, skip_latest=False)
    return policy


def _confirm(kind: str, name: str) -> bool:
    answer = input(f"Permanently delete {kind} deployments of {name!r}? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _print(data: object, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        for row in data:  # type: ignore[attr-defined]
            print(row)


def _run_cleanup(service: CleanupService, args: argparse.Namespace) -> int:
    policy = policy_from_args(args, service.default_policy())
    if not args.dry_run and service.config.confirmation_required and not args.yes:
        if not _confirm(args.kind, args.name):
            print("Aborted.")
            return EXIT_OK

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        report = service.cleanup(
            args.kind, args.name, policy, dry_run=args.dry_run, cancel_event=cancel
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    result = report.result
    if args.json:
        _print(report.as_dict(), True)
    elif result is not None:
        prefix = "[dry run] " if result.dry_run else ""
        print(
            f"{prefix}Cleanup complete: deleted={result.succeeded}, failed={result.failed}, "
            f"skipped={result.skipped}, planned={result.planned}, total={result.total} "
            f"in {result.duration_ms / 1000:.1f}s ({result.items_per_second:.1f}/s)"
        )
        for item_id, error in result.failures:
            print(f"  FAILED {item_id}: {error}")
    if result is not None and result.failed:
        return EXIT_FAILURES
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entrypoint."""
    from dotenv import load_dotenv

    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config: AppConfig = get_config()
        config.validate_credentials()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "cleanup" and args.sequential:
        config = replace(config, execution_mode="sequential")

    configure_logging(
        level=logging.getLevelName(config.log_level),
        log_file=config.log_file,
        log_stdout=config.log_stdout,
        log_format=config.log_format,
    )
    logger = get_logger(__name__)

    with CleanupService(config) as service:
        try:
            if args.command == "verify":
                verification = service.verify_connection()
                _print(verification, args.json)
                return EXIT_OK if verification.get("valid") else EXIT_CONFIG
            if args.command == "resources":
                rows = [
                    {"name": r.name, "created_at": r.created_at, "domains": list(r.domains)}
                    for r in service.list_resources(args.kind)
                ]
                _print(rows, args.json)
                return EXIT_OK
            if args.command == "list":
                rows = [
                    {
                        "id": item.id,
                        "created_at": item.created_at.isoformat(),
                        "environment": item.environment,
                        "version": item.version_label,
                        "status": item.status,
                    }
                    for item in service.list_all(args.kind, args.name)
                ]
                _print(rows, args.json)
                return EXIT_OK
            if args.command == "stats":
                _print(service.stats(args.kind, args.name).as_dict(), args.json)
                return EXIT_OK
            return _run_cleanup(service, args)
        except CleanupError as e:
            logger.error("cli.failed", command=args.command, error=str(e), error_type=type(e).__name__)
            print(f"ERROR: {e}", file=sys.stderr)
            return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())

"""
Cleanup orchestration: list -> evaluate -> execute for named resources.

CleanupService owns one dispatcher (the only concurrency primitive) and the
per-kind adapters built on top of it. Each cleanup call owns its own
DecisionSet and BatchResult; nothing is shared across calls.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import uuid4

from engine.adapters import ResourceAdapter, ResourceTransport, build_adapter
from engine.clock import Clock, SystemClock
from engine.dispatcher import DispatcherConfig, RateLimitedDispatcher
from engine.executor import BatchExecutor
from engine.models import (
    BatchResult,
    DecisionSet,
    Item,
    ResourceKind,
    ResourceStats,
    ResourceSummary,
    RetentionPolicy,
)
from engine.progress import EventSink, LoggingEventSink
from shared.cloudflare import CloudflareTransport
from shared.config import AppConfig
from shared.logging import bind_cleanup_context, clear_cleanup_context, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    """Outcome of one evaluate+execute cycle for a named resource."""

    kind: str
    name: str
    decision: Optional[DecisionSet] = None
    result: Optional[BatchResult] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        data: dict = {"kind": self.kind, "name": self.name}
        if self.decision is not None:
            data["to_delete"] = [item.id for item in self.decision.to_delete]
            data["skipped"] = {
                item.id: self.decision.skip_reasons.get(item.id) for item in self.decision.to_skip
            }
            data["excluded"] = len(self.decision.excluded)
        if self.result is not None:
            data["result"] = self.result.as_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class MultiCleanupSummary:
    reports: list[CleanupReport] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_deleted(self) -> int:
        return sum(r.result.succeeded for r in self.reports if r.result)

    @property
    def total_errors(self) -> int:
        return sum((r.result.failed if r.result else 1) for r in self.reports)


class CleanupService:
    def __init__(
        self,
        config: AppConfig,
        *,
        transport: Optional[ResourceTransport] = None,
        dispatcher: Optional[RateLimitedDispatcher] = None,
        clock: Optional[Clock] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.config = config
        self.clock = clock or SystemClock()
        self.sink = sink or LoggingEventSink()
        self.transport = transport or CloudflareTransport.from_config(config)
        self.dispatcher = dispatcher or RateLimitedDispatcher(DispatcherConfig.from_config(config))
        self._adapters: dict[str, ResourceAdapter] = {}

    def adapter(self, kind: str) -> ResourceAdapter:
        if kind not in self._adapters:
            self._adapters[kind] = build_adapter(
                kind, self.transport, self.dispatcher, clock=self.clock
            )
        return self._adapters[kind]

    def default_policy(self) -> RetentionPolicy:
        return RetentionPolicy.from_config(self.config)

    def list_all(
        self, kind: str, name: str, policy: Optional[RetentionPolicy] = None
    ) -> list[Item]:
        """Listing failures are fatal and propagate as-is."""
        return self.adapter(kind).list_all(name, policy)

    def evaluate(self, kind: str, items: Iterable[Item], policy: RetentionPolicy) -> DecisionSet:
        return self.adapter(kind).evaluator.evaluate(items, policy)

    def execute(
        self,
        kind: str,
        name: str,
        decision: DecisionSet,
        *,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        adapter = self.adapter(kind)
        executor = BatchExecutor(
            self.dispatcher,
            clock=self.clock,
            sink=self.sink,
            mode=self.config.execution_mode,
        )
        return executor.execute(
            decision,
            lambda item: adapter.delete_one(name, item),
            dry_run=dry_run,
            cancel_event=cancel_event,
        )

    def cleanup(
        self,
        kind: str,
        name: str,
        policy: Optional[RetentionPolicy] = None,
        *,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> CleanupReport:
        """List, evaluate and execute one batch for a named resource."""
        policy = policy or self.default_policy()
        bind_cleanup_context(
            resource_kind=kind,
            resource_name=name,
            run_id=uuid4().hex[:12],
            dry_run=dry_run,
        )
        try:
            logger.info("cleanup.start", policy=_policy_fields(policy))
            items = self.list_all(kind, name, policy)
            decision = self.evaluate(kind, items, policy)
            logger.info(
                "cleanup.evaluated",
                fetched=len(items),
                to_delete=len(decision.to_delete),
                to_skip=len(decision.to_skip),
                excluded=len(decision.excluded),
            )
            result = self.execute(kind, name, decision, dry_run=dry_run, cancel_event=cancel_event)
            return CleanupReport(kind=kind, name=name, decision=decision, result=result)
        finally:
            clear_cleanup_context()

    def cleanup_many(
        self,
        targets: Iterable[tuple[ResourceKind, str]],
        policy: Optional[RetentionPolicy] = None,
        *,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> MultiCleanupSummary:
        """
        Run cleanup per (kind, name). A resource that cannot be listed is
        recorded as an error and the run moves on to the next one.
        """
        targets = list(targets)
        if not targets:
            raise ValueError("No resources selected for cleanup")

        summary = MultiCleanupSummary(dry_run=dry_run)
        for kind, name in targets:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("cleanup_many.cancelled", remaining=len(targets) - len(summary.reports))
                break
            try:
                summary.reports.append(
                    self.cleanup(kind, name, policy, dry_run=dry_run, cancel_event=cancel_event)
                )
            except Exception as e:
                logger.error(
                    "cleanup_many.resource_failed",
                    resource_kind=kind,
                    resource_name=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                summary.reports.append(CleanupReport(kind=kind, name=name, error=str(e)))

        logger.info(
            "cleanup_many.complete",
            resources=len(summary.reports),
            deleted=summary.total_deleted,
            errors=summary.total_errors,
            dry_run=dry_run,
        )
        return summary

    def stats(self, kind: str, name: str) -> ResourceStats:
        return self.adapter(kind).describe_stats(name)

    def list_resources(self, kind: str) -> list[ResourceSummary]:
        return self.adapter(kind).list_resources()

    def verify_connection(self) -> dict:
        verify = getattr(self.transport, "verify_token", None)
        if verify is None:
            return {"valid": True, "method": "none"}
        return self.dispatcher.call(verify)

    def close(self) -> None:
        self.dispatcher.shutdown()
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "CleanupService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _policy_fields(policy: RetentionPolicy) -> dict:
    return {
        "max_age_days": policy.max_age_days,
        "status_filter": policy.status_filter,
        "environment_filter": policy.environment_filter,
        "skip_production": policy.skip_production,
        "keep_latest_count": policy.keep_latest_count,
        "skip_latest": policy.skip_latest,
    }

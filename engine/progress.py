"""
Progress and timing for one batch.

ProgressTracker is a generic counter + timer: it knows nothing about success
or failure beyond counting outcomes. Updates are funneled through a lock so
outcomes completing on different dispatcher threads are never lost.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from engine.clock import Clock, SystemClock
from engine.models import DeletionOutcome
from shared.logging import get_logger

logger = get_logger(__name__)

# Emit an update at least every N items, and at every 10% boundary.
LOG_EVERY_ITEMS = 10


class EventSink(Protocol):
    def notify(self, event: str, **fields: Any) -> None: ...


class LoggingEventSink:
    """Forward events to structlog; failures go out at error level."""

    def __init__(self, name: str = "engine.events") -> None:
        self._logger = get_logger(name)

    def notify(self, event: str, **fields: Any) -> None:
        if event.endswith(".failed"):
            self._logger.error(event, **fields)
        elif event.endswith(".warning"):
            self._logger.warning(event, **fields)
        else:
            self._logger.info(event, **fields)


@dataclass(frozen=True)
class ProgressSnapshot:
    processed: int
    total: int
    percentage: float
    rate_per_second: float
    eta_ms: Optional[int]


@dataclass(frozen=True)
class TrackerTiming:
    duration_ms: int
    items_per_second: float


class ProgressTracker:
    def __init__(
        self,
        total: int,
        *,
        clock: Optional[Clock] = None,
        sink: Optional[EventSink] = None,
        label: str = "bulk_delete",
    ) -> None:
        self.total = total
        self.label = label
        self._clock = clock or SystemClock()
        self._sink = sink or LoggingEventSink()
        self._lock = threading.Lock()
        self._processed = 0
        self._started = self._clock.monotonic()

    @property
    def processed(self) -> int:
        return self._processed

    def on_event(self, outcome: DeletionOutcome) -> ProgressSnapshot:
        with self._lock:
            self._processed += 1
            processed = self._processed
            snap = self._snapshot_locked()
        if self._should_report(processed):
            self._sink.notify(
                "progress.update",
                label=self.label,
                processed=snap.processed,
                total=snap.total,
                percentage=snap.percentage,
                rate_per_second=round(snap.rate_per_second, 2),
                eta_ms=snap.eta_ms,
                last_item_id=outcome.item_id,
            )
        return snap

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def finish(self) -> TrackerTiming:
        with self._lock:
            elapsed = self._elapsed_seconds()
            processed = self._processed
        rate = processed / elapsed if elapsed > 0 else 0.0
        timing = TrackerTiming(duration_ms=int(round(elapsed * 1000)), items_per_second=rate)
        self._sink.notify(
            "progress.complete",
            label=self.label,
            processed=processed,
            total=self.total,
            duration_ms=timing.duration_ms,
            items_per_second=round(rate, 2),
        )
        return timing

    def _elapsed_seconds(self) -> float:
        return max(0.0, self._clock.monotonic() - self._started)

    def _snapshot_locked(self) -> ProgressSnapshot:
        elapsed = self._elapsed_seconds()
        processed = self._processed
        rate = processed / elapsed if elapsed > 0 else 0.0
        eta_ms = None
        if rate > 0:
            eta_ms = int(round(max(0, self.total - processed) / rate * 1000))
        percentage = round(processed / self.total * 100, 1) if self.total else 100.0
        return ProgressSnapshot(
            processed=processed,
            total=self.total,
            percentage=percentage,
            rate_per_second=rate,
            eta_ms=eta_ms,
        )

    def _should_report(self, processed: int) -> bool:
        if processed == self.total or processed % LOG_EVERY_ITEMS == 0:
            return True
        if self.total <= 0:
            return False
        # crossed a 10% boundary with this item
        return (processed * 10) // self.total > ((processed - 1) * 10) // self.total

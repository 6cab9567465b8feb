"""
Unit tests for progress tracking: percentage, rate, ETA, final timing and
thread-safe counting.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from engine.models import DeletionOutcome
from engine.progress import LoggingEventSink, ProgressTracker


def _outcome(n: int = 0) -> DeletionOutcome:
    return DeletionOutcome.deleted(f"item-{n}")


def test_snapshot_reports_rate_and_eta(clock, sink):
    tracker = ProgressTracker(4, clock=clock, sink=sink)

    clock.advance(1.0)
    tracker.on_event(_outcome(1))
    clock.advance(1.0)
    tracker.on_event(_outcome(2))
    snap = tracker.snapshot()

    assert snap.processed == 2
    assert snap.total == 4
    assert snap.percentage == 50.0
    assert snap.rate_per_second == 1.0
    assert snap.eta_ms == 2000


def test_eta_undefined_without_rate(clock, sink):
    tracker = ProgressTracker(3, clock=clock, sink=sink)

    snap = tracker.snapshot()

    assert snap.rate_per_second == 0.0
    assert snap.eta_ms is None


def test_finish_returns_duration_and_throughput(clock, sink):
    tracker = ProgressTracker(5, clock=clock, sink=sink)
    for n in range(5):
        tracker.on_event(_outcome(n))
    clock.advance(2.5)

    timing = tracker.finish()

    assert timing.duration_ms == 2500
    assert timing.items_per_second == 2.0
    complete = sink.named("progress.complete")
    assert complete[0]["processed"] == 5
    assert complete[0]["duration_ms"] == 2500


def test_updates_emitted_at_ten_percent_steps_and_last_item(clock, sink):
    tracker = ProgressTracker(20, clock=clock, sink=sink)
    for n in range(20):
        clock.advance(0.1)
        tracker.on_event(_outcome(n))

    processed = [e["processed"] for e in sink.named("progress.update")]

    assert processed == [2, 4, 6, 8, 10, 12, 14, 16, 18, 20]
    assert sink.named("progress.update")[-1]["last_item_id"] == "item-19"


def test_concurrent_events_are_not_lost(sink):
    tracker = ProgressTracker(800, sink=sink)

    def worker():
        for n in range(100):
            tracker.on_event(_outcome(n))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert tracker.processed == 800
    assert tracker.snapshot().percentage == 100.0


def test_empty_total_is_complete(clock, sink):
    tracker = ProgressTracker(0, clock=clock, sink=sink)

    assert tracker.snapshot().percentage == 100.0
    assert tracker.finish().items_per_second == 0.0


def test_logging_sink_routes_failures_to_error():
    event_sink = LoggingEventSink()
    event_sink._logger = MagicMock()

    event_sink.notify("executor.item.failed", item_id="x")
    event_sink.notify("executor.item.deleted", item_id="y")

    event_sink._logger.error.assert_called_once_with("executor.item.failed", item_id="x")
    event_sink._logger.info.assert_called_once_with("executor.item.deleted", item_id="y")

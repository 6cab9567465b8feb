"""
Batch deletion executor.

Drives a DecisionSet's deletions through the RateLimitedDispatcher, isolates
per-item failures and produces the final BatchResult. Supports dry-run (no
remote calls at all), strict sequential mode and cooperative cancellation.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, as_completed
from typing import Callable, Literal, Optional

from engine.clock import Clock, SystemClock
from engine.dispatcher import RateLimitedDispatcher
from engine.models import BatchResult, DecisionSet, DeletionOutcome, Item, OutcomeKind
from engine.progress import EventSink, LoggingEventSink, ProgressTracker

ExecutionMode = Literal["concurrent", "sequential"]

DeleteOne = Callable[[Item], object]


class _NotAttempted:
    """Marker returned by a task that observed cancellation before calling out."""


_NOT_ATTEMPTED = _NotAttempted()


class BatchExecutor:
    """
    Execute deletions for one DecisionSet.

    mode="concurrent" fans every item out to the dispatcher and then drains
    completions, so the dispatcher bound is the only throttle. mode="sequential"
    waits for each deletion before submitting the next.
    """

    def __init__(
        self,
        dispatcher: Optional[RateLimitedDispatcher],
        *,
        clock: Optional[Clock] = None,
        sink: Optional[EventSink] = None,
        mode: ExecutionMode = "concurrent",
    ) -> None:
        if mode not in ("concurrent", "sequential"):
            raise ValueError(f"Unsupported execution mode: {mode!r}")
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.sink = sink or LoggingEventSink()
        self.mode = mode

    def execute(
        self,
        decision: DecisionSet,
        delete_one: DeleteOne,
        *,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        """
        Delete every item in decision.to_delete and account for the outcome.

        Errors from delete_one are caught per item and recorded as Failed;
        they never abort the batch. Items not attempted because of
        cancellation are left out of `total`.
        """
        to_delete = decision.to_delete
        to_skip = decision.to_skip
        tracker = ProgressTracker(
            len(to_delete) + len(to_skip), clock=self.clock, sink=self.sink
        )

        self.sink.notify(
            "executor.start",
            to_delete=len(to_delete),
            to_skip=len(to_skip),
            dry_run=dry_run,
            mode=self.mode,
        )

        for item in to_skip:
            tracker.on_event(DeletionOutcome.skipped(item.id))
            self.sink.notify(
                "executor.item.skipped",
                item_id=item.id,
                reason=decision.skip_reasons.get(item.id),
            )

        if dry_run:
            for index, item in enumerate(to_delete, 1):
                self.sink.notify(
                    "executor.item.planned",
                    index=index,
                    item_id=item.id,
                    environment=item.environment,
                    version=item.version_label,
                    created_at=item.created_at.isoformat(),
                )
            timing = tracker.finish()
            result = BatchResult(
                succeeded=0,
                failed=0,
                skipped=len(to_skip),
                total=len(to_delete) + len(to_skip),
                duration_ms=timing.duration_ms,
                items_per_second=timing.items_per_second,
                dry_run=True,
                planned=len(to_delete),
            )
            self._notify_complete(result)
            return result

        if self.dispatcher is None:
            raise ValueError("A dispatcher is required for a real (non dry-run) execution")

        cancel = cancel_event or threading.Event()
        outcomes: list[DeletionOutcome] = []
        lock = threading.Lock()

        def record(item: Item, future: Future) -> None:
            if future.cancelled():
                return
            try:
                if future.result() is _NOT_ATTEMPTED:
                    return
                outcome = DeletionOutcome.deleted(item.id)
                self.sink.notify("executor.item.deleted", item_id=item.id)
            except Exception as e:
                outcome = DeletionOutcome.failed(item.id, str(e) or type(e).__name__)
                self.sink.notify(
                    "executor.item.failed",
                    item_id=item.id,
                    error=outcome.error,
                    error_type=type(e).__name__,
                )
            with lock:
                outcomes.append(outcome)
            tracker.on_event(outcome)

        def attempt(item: Item) -> object:
            # Queued tasks may start after cancellation; they must not call out.
            if cancel.is_set():
                return _NOT_ATTEMPTED
            delete_one(item)
            return None

        futures: dict[Future, Item] = {}
        for item in to_delete:
            if cancel.is_set():
                break
            future = self.dispatcher.submit(attempt, item)
            if self.mode == "sequential":
                record(item, future)
            else:
                futures[future] = item

        dropped = False
        for future in as_completed(futures):
            record(futures[future], future)
            if cancel.is_set() and not dropped:
                # Queued tasks are dropped before they take a slot and its delay.
                dropped = True
                for queued in futures:
                    queued.cancel()

        succeeded = sum(1 for o in outcomes if o.kind is OutcomeKind.DELETED)
        failures = tuple((o.item_id, o.error or "") for o in outcomes if o.kind is OutcomeKind.FAILED)
        timing = tracker.finish()
        result = BatchResult(
            succeeded=succeeded,
            failed=len(failures),
            skipped=len(to_skip),
            total=len(outcomes) + len(to_skip),
            duration_ms=timing.duration_ms,
            items_per_second=timing.items_per_second,
            dry_run=False,
            cancelled=cancel.is_set() and len(outcomes) < len(to_delete),
            failures=failures,
        )
        self._notify_complete(result)
        return result

    def _notify_complete(self, result: BatchResult) -> None:
        self.sink.notify(
            "executor.complete",
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
            planned=result.planned,
            total=result.total,
            duration_ms=result.duration_ms,
            items_per_second=round(result.items_per_second, 2),
            dry_run=result.dry_run,
            cancelled=result.cancelled,
        )
        for index, (item_id, error) in enumerate(result.failures, 1):
            self.sink.notify("executor.failure.detail", index=index, item_id=item_id, error=error)


def execute(
    decision: DecisionSet,
    delete_one: DeleteOne,
    *,
    dry_run: bool = False,
    dispatcher: Optional[RateLimitedDispatcher] = None,
    cancel_event: Optional[threading.Event] = None,
    mode: ExecutionMode = "concurrent",
    clock: Optional[Clock] = None,
    sink: Optional[EventSink] = None,
) -> BatchResult:
    """
    One-shot helper: execute a DecisionSet with a dispatcher built for the call
    when none is given.
    """
    if dry_run:
        return BatchExecutor(dispatcher, clock=clock, sink=sink, mode=mode).execute(
            decision, delete_one, dry_run=True
        )
    if dispatcher is not None:
        return BatchExecutor(dispatcher, clock=clock, sink=sink, mode=mode).execute(
            decision, delete_one, cancel_event=cancel_event
        )
    with RateLimitedDispatcher() as owned:
        return BatchExecutor(owned, clock=clock, sink=sink, mode=mode).execute(
            decision, delete_one, cancel_event=cancel_event
        )

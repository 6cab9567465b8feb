"""
Retention policy evaluation (pure functions).

Maps (items, policy) to a DecisionSet. No I/O; the only input besides the
arguments is `now`, supplied by the caller's Clock.

Order of operations:
1. Sort newest-first by created_at (stable, so ties keep input order).
2. Pre-filters: environment, age cutoff, status. Items they drop land in
   `excluded` with no reason attached.
3. Production protection (Pages only, and only when keep_latest_count == 0).
4. Latest-N protection over the remaining candidates.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

from engine.clock import Clock, SystemClock
from engine.models import (
    ENVIRONMENTS,
    LATEST_PROTECTED,
    PRODUCTION_PROTECTED,
    DecisionSet,
    Item,
    RetentionPolicy,
)
from shared.errors import PolicyViolationError


class RetentionEvaluator(Protocol):
    def evaluate(self, items: Iterable[Item], policy: RetentionPolicy) -> DecisionSet: ...


def validate_policy(policy: RetentionPolicy) -> None:
    """Raise PolicyViolationError for malformed configuration."""
    if policy.keep_latest_count < 0:
        raise PolicyViolationError(
            f"keep_latest_count must be >= 0, got {policy.keep_latest_count}"
        )
    if policy.max_age_days is not None and policy.max_age_days < 0:
        raise PolicyViolationError(f"max_age_days must be >= 0, got {policy.max_age_days}")
    if policy.environment_filter is not None and policy.environment_filter not in ENVIRONMENTS:
        raise PolicyViolationError(
            f"environment_filter must be one of {ENVIRONMENTS}, got {policy.environment_filter!r}"
        )


def sort_newest_first(items: Iterable[Item]) -> list[Item]:
    return sorted(items, key=lambda item: item.created_at, reverse=True)


def evaluate(
    items: Iterable[Item],
    policy: RetentionPolicy,
    *,
    now: Optional[datetime] = None,
    latest_count: Optional[int] = None,
    protect_production: bool = True,
) -> DecisionSet:
    """
    Partition items into delete / skip / excluded.

    Args:
        items: Items fetched for one resource.
        policy: Retention policy; validated first, errors are fatal.
        now: Reference time for the age cutoff (required when max_age_days is set).
        latest_count: Overrides policy.keep_latest_count (used by the Workers rule).
        protect_production: False for kinds without a production environment.

    Returns:
        DecisionSet with to_delete newest-first.
    """
    validate_policy(policy)
    keep_latest = policy.keep_latest_count if latest_count is None else latest_count

    ordered = sort_newest_first(items)

    cutoff = None
    if policy.max_age_days is not None:
        if now is None:
            raise PolicyViolationError("max_age_days requires a reference time")
        cutoff = now - timedelta(days=policy.max_age_days)

    candidates: list[Item] = []
    excluded: list[Item] = []
    for item in ordered:
        if policy.environment_filter is not None and item.environment != policy.environment_filter:
            excluded.append(item)
        elif cutoff is not None and not item.created_at < cutoff:
            excluded.append(item)
        elif policy.status_filter is not None and item.status != policy.status_filter:
            excluded.append(item)
        else:
            candidates.append(item)

    skip_reasons: dict[str, str] = {}
    if protect_production and policy.skip_production and keep_latest == 0:
        for item in candidates:
            if item.environment == "production":
                skip_reasons[item.id] = PRODUCTION_PROTECTED

    if keep_latest > 0:
        for item in candidates[:keep_latest]:
            skip_reasons.setdefault(item.id, LATEST_PROTECTED)

    to_delete = tuple(item for item in candidates if item.id not in skip_reasons)
    to_skip = tuple(item for item in candidates if item.id in skip_reasons)
    return DecisionSet(
        to_delete=to_delete,
        to_skip=to_skip,
        skip_reasons=skip_reasons,
        excluded=tuple(excluded),
    )


class PagesRetentionEvaluator:
    """Pages deployments: production protection or latest-N, never both."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    def evaluate(self, items: Iterable[Item], policy: RetentionPolicy) -> DecisionSet:
        return evaluate(items, policy, now=self.clock.now())


class WorkersRetentionEvaluator:
    """
    Workers versions have no preview/production split, so only the latest-N
    rule applies; skip_latest guarantees at least the newest version survives.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    def evaluate(self, items: Iterable[Item], policy: RetentionPolicy) -> DecisionSet:
        validate_policy(policy)
        latest = max(policy.keep_latest_count, 1 if policy.skip_latest else 0)
        return evaluate(
            items,
            policy,
            now=self.clock.now(),
            latest_count=latest,
            protect_production=False,
        )

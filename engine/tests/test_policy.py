"""
Unit tests for retention policy evaluation (pure functions).

Covers ordering, production and latest-N protection, age/status/environment
pre-filters, the Workers skip-latest rule and malformed policies.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from engine.models import LATEST_PROTECTED, PRODUCTION_PROTECTED, Item, RetentionPolicy
from engine.policy import (
    PagesRetentionEvaluator,
    WorkersRetentionEvaluator,
    evaluate,
    sort_newest_first,
)
from shared.errors import PolicyViolationError

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

NO_PROTECTION = RetentionPolicy(skip_production=False, keep_latest_count=0, skip_latest=False)


def _item(item_id: str, days_old: float, environment=None, status=None) -> Item:
    return Item(
        id=item_id,
        created_at=NOW - timedelta(days=days_old),
        environment=environment,
        status=status,
    )


def _ids(items) -> list[str]:
    return [item.id for item in items]


def test_no_protections_deletes_everything_newest_first():
    """All protections off, no filters: every item is deleted, newest first."""
    items = [_item("b", 5), _item("a", 1), _item("d", 30), _item("c", 10)]

    decision = evaluate(items, NO_PROTECTION, now=NOW)

    assert _ids(decision.to_delete) == ["a", "b", "c", "d"]
    assert decision.to_skip == ()
    assert decision.skip_reasons == {}
    assert decision.excluded == ()


def test_production_deployments_included_when_protections_disabled():
    items = [_item("p", 2, "production"), _item("v", 3, "preview")]

    decision = evaluate(items, NO_PROTECTION, now=NOW)

    assert _ids(decision.to_delete) == ["p", "v"]


def test_scenario_pages_age_latest_and_production():
    """Preview 1/10/40 days and production 5 days, keep 1, max age 7 → only the 40-day preview."""
    items = [
        _item("preview-1d", 1, "preview"),
        _item("preview-10d", 10, "preview"),
        _item("preview-40d", 40, "preview"),
        _item("production-5d", 5, "production"),
    ]
    policy = RetentionPolicy(skip_production=True, keep_latest_count=1, max_age_days=7)

    decision = PagesRetentionEvaluator(_FixedClock()).evaluate(items, policy)

    assert _ids(decision.to_delete) == ["preview-40d"]
    assert _ids(decision.to_skip) == ["preview-10d"]
    assert decision.skip_reasons == {"preview-10d": LATEST_PROTECTED}
    assert set(_ids(decision.excluded)) == {"preview-1d", "production-5d"}


def test_scenario_workers_skip_latest():
    """Five versions, skip_latest → newest kept, the other four deleted newest first."""
    items = [_item(f"v{n}", 10 - n) for n in range(1, 6)]

    decision = WorkersRetentionEvaluator(_FixedClock()).evaluate(
        items, RetentionPolicy(skip_latest=True)
    )

    assert _ids(decision.to_delete) == ["v4", "v3", "v2", "v1"]
    assert _ids(decision.to_skip) == ["v5"]
    assert decision.skip_reasons == {"v5": LATEST_PROTECTED}


def test_production_protection_only_without_keep_latest():
    """skip_production with keep_latest_count=0 protects every production item."""
    items = [
        _item("prod-new", 1, "production"),
        _item("prev", 2, "preview"),
        _item("prod-old", 3, "production"),
    ]

    decision = evaluate(items, RetentionPolicy(skip_production=True, keep_latest_count=0), now=NOW)

    assert _ids(decision.to_delete) == ["prev"]
    assert _ids(decision.to_skip) == ["prod-new", "prod-old"]
    assert decision.skip_reasons["prod-old"] == PRODUCTION_PROTECTED


def test_keep_latest_applies_regardless_of_environment():
    """With keep_latest_count > 0, production protection is replaced by latest-N."""
    items = [
        _item("prev-new", 1, "preview"),
        _item("prod", 2, "production"),
        _item("prev-old", 3, "preview"),
    ]

    decision = evaluate(items, RetentionPolicy(skip_production=True, keep_latest_count=2), now=NOW)

    assert _ids(decision.to_skip) == ["prev-new", "prod"]
    assert _ids(decision.to_delete) == ["prev-old"]


def test_keep_latest_larger_than_input_skips_everything():
    items = [_item("a", 1), _item("b", 2)]

    decision = evaluate(items, RetentionPolicy(keep_latest_count=5), now=NOW)

    assert decision.to_delete == ()
    assert _ids(decision.to_skip) == ["a", "b"]


def test_empty_input_returns_empty_decision():
    decision = evaluate([], RetentionPolicy(keep_latest_count=3, skip_production=True), now=NOW)

    assert decision.to_delete == ()
    assert decision.to_skip == ()
    assert decision.excluded == ()


def test_ties_keep_input_order():
    """Equal created_at values keep their input order (stable sort)."""
    same = NOW - timedelta(days=2)
    items = [Item("first", same), Item("second", same), Item("third", same)]

    assert _ids(sort_newest_first(items)) == ["first", "second", "third"]
    assert _ids(evaluate(items, NO_PROTECTION, now=NOW).to_delete) == ["first", "second", "third"]


def test_evaluate_is_idempotent():
    items = [_item("a", 1, "preview"), _item("b", 9, "production"), _item("c", 20, "preview")]
    policy = RetentionPolicy(skip_production=True, max_age_days=3)

    assert evaluate(items, policy, now=NOW) == evaluate(items, policy, now=NOW)


def test_age_filter_excludes_younger_items_without_reason():
    items = [_item("young", 2), _item("old", 20)]

    decision = evaluate(items, RetentionPolicy(max_age_days=7), now=NOW)

    assert _ids(decision.to_delete) == ["old"]
    assert _ids(decision.excluded) == ["young"]
    assert "young" not in decision.skip_reasons


def test_status_filter_restricts_delete_set():
    items = [_item("ok", 1, status="success"), _item("bad", 2, status="failure"), _item("none", 3)]

    decision = evaluate(items, RetentionPolicy(status_filter="failure"), now=NOW)

    assert _ids(decision.to_delete) == ["bad"]
    assert set(_ids(decision.excluded)) == {"ok", "none"}


def test_environment_filter_selects_one_environment():
    items = [_item("p", 1, "production"), _item("v", 2, "preview")]

    decision = evaluate(items, RetentionPolicy(environment_filter="preview"), now=NOW)

    assert _ids(decision.to_delete) == ["v"]
    assert _ids(decision.excluded) == ["p"]


@pytest.mark.parametrize(
    "policy",
    [
        NO_PROTECTION,
        RetentionPolicy(skip_production=True),
        RetentionPolicy(keep_latest_count=2, max_age_days=4),
        RetentionPolicy(status_filter="success", keep_latest_count=1),
    ],
)
def test_every_item_is_accounted_for(policy):
    """to_delete, to_skip and excluded partition the input."""
    items = [
        _item("a", 1, "preview", "success"),
        _item("b", 3, "production", "success"),
        _item("c", 5, "preview", "failure"),
        _item("d", 8, "production", "success"),
        _item("e", 13, "preview", "success"),
    ]

    decision = evaluate(items, policy, now=NOW)
    ids = _ids(decision.to_delete) + _ids(decision.to_skip) + _ids(decision.excluded)

    assert sorted(ids) == ["a", "b", "c", "d", "e"]
    assert not set(_ids(decision.to_delete)) & set(_ids(decision.to_skip))


def test_pages_ignores_skip_latest():
    items = [_item("a", 1), _item("b", 2)]

    decision = PagesRetentionEvaluator(_FixedClock()).evaluate(
        items, RetentionPolicy(skip_latest=True)
    )

    assert _ids(decision.to_delete) == ["a", "b"]


def test_workers_ignores_production_protection():
    items = [_item("a", 1, "production"), _item("b", 2, "production")]

    decision = WorkersRetentionEvaluator(_FixedClock()).evaluate(
        items, RetentionPolicy(skip_production=True)
    )

    assert _ids(decision.to_delete) == ["a", "b"]


def test_workers_keep_latest_count_wins_when_larger():
    items = [_item(f"v{n}", n) for n in range(1, 5)]

    decision = WorkersRetentionEvaluator(_FixedClock()).evaluate(
        items, RetentionPolicy(skip_latest=True, keep_latest_count=3)
    )

    assert _ids(decision.to_skip) == ["v1", "v2", "v3"]
    assert _ids(decision.to_delete) == ["v4"]


@pytest.mark.parametrize(
    "policy",
    [
        RetentionPolicy(keep_latest_count=-1),
        RetentionPolicy(max_age_days=-3),
        RetentionPolicy(environment_filter="staging"),
    ],
)
def test_malformed_policy_raises(policy):
    with pytest.raises(PolicyViolationError):
        evaluate([_item("a", 1)], policy, now=NOW)


def test_workers_evaluator_rejects_negative_keep():
    with pytest.raises(PolicyViolationError):
        WorkersRetentionEvaluator(_FixedClock()).evaluate([], RetentionPolicy(keep_latest_count=-2))


def test_age_filter_requires_reference_time():
    with pytest.raises(PolicyViolationError):
        evaluate([_item("a", 1)], RetentionPolicy(max_age_days=1))


class _FixedClock:
    def now(self) -> datetime:
        return NOW

    def monotonic(self) -> float:
        return 0.0

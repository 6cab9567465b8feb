"""
Value types for the deletion engine.

Everything here is immutable: items are fetched fresh per invocation, and a
DecisionSet / BatchResult belongs to exactly one cleanup call.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal, Mapping, Optional

if TYPE_CHECKING:
    from shared.config import AppConfig

ResourceKind = Literal["pages", "workers"]
RESOURCE_KINDS: tuple[ResourceKind, ...] = ("pages", "workers")

ENVIRONMENTS = ("preview", "production")

# Skip reasons
PRODUCTION_PROTECTED = "production-protected"
LATEST_PROTECTED = "latest-protected"


@dataclass(frozen=True)
class Item:
    """A single deletable deployment or script version."""

    id: str
    created_at: datetime
    environment: Optional[str] = None
    version_label: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class RetentionPolicy:
    """Which items are protected from deletion. Every field is an independent switch."""

    max_age_days: Optional[int] = None
    status_filter: Optional[str] = None
    environment_filter: Optional[str] = None
    skip_production: bool = False
    keep_latest_count: int = 0
    skip_latest: bool = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "RetentionPolicy":
        """Policy defaults taken from configuration."""
        return cls(
            max_age_days=config.max_age_days,
            status_filter=config.filter_status,
            environment_filter=config.filter_environment,
            skip_production=config.skip_production,
            keep_latest_count=config.keep_latest_count,
            skip_latest=config.skip_latest,
        )


@dataclass(frozen=True)
class DecisionSet:
    """
    Evaluator output.

    to_delete and to_skip are disjoint; together with `excluded` (items the
    environment/age/status pre-filters did not select) they cover the input.
    """

    to_delete: tuple[Item, ...] = ()
    to_skip: tuple[Item, ...] = ()
    skip_reasons: Mapping[str, str] = field(default_factory=dict)
    excluded: tuple[Item, ...] = ()


class OutcomeKind(str, Enum):
    DELETED = "deleted"
    FAILED = "failed"
    SKIPPED_BY_POLICY = "skipped_by_policy"


@dataclass(frozen=True)
class DeletionOutcome:
    """Result of one execution attempt for one item."""

    item_id: str
    kind: OutcomeKind
    error: Optional[str] = None

    @classmethod
    def deleted(cls, item_id: str) -> "DeletionOutcome":
        return cls(item_id, OutcomeKind.DELETED)

    @classmethod
    def failed(cls, item_id: str, error: str) -> "DeletionOutcome":
        return cls(item_id, OutcomeKind.FAILED, error)

    @classmethod
    def skipped(cls, item_id: str) -> "DeletionOutcome":
        return cls(item_id, OutcomeKind.SKIPPED_BY_POLICY)


@dataclass(frozen=True)
class BatchResult:
    """
    Aggregate produced once per execution.

    succeeded + failed + skipped + planned == total. `planned` is non-zero only
    for dry runs, where it counts the items that would have been deleted.
    """

    succeeded: int
    failed: int
    skipped: int
    total: int
    duration_ms: int
    items_per_second: float
    dry_run: bool
    planned: int = 0
    cancelled: bool = False
    failures: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if self.succeeded + self.failed + self.skipped + self.planned != self.total:
            raise ValueError(
                f"BatchResult counts do not add up: {self.succeeded}+{self.failed}"
                f"+{self.skipped}+{self.planned} != {self.total}"
            )
        if self.dry_run and (self.succeeded or self.failed):
            raise ValueError("A dry run cannot succeed or fail deletions")

    def as_dict(self) -> dict:
        data = asdict(self)
        data["failures"] = [{"id": i, "error": e} for i, e in self.failures]
        return data


@dataclass(frozen=True)
class ResourceStats:
    """Deployment statistics for one resource."""

    name: str
    total: int
    by_environment: Mapping[str, int] = field(default_factory=dict)
    by_status: Mapping[str, int] = field(default_factory=dict)
    by_version: Mapping[str, int] = field(default_factory=dict)
    by_month: Mapping[str, int] = field(default_factory=dict)
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["oldest"] = self.oldest.isoformat() if self.oldest else None
        data["newest"] = self.newest.isoformat() if self.newest else None
        return data


@dataclass(frozen=True)
class ResourceSummary:
    """A Pages project or Workers script in the account."""

    kind: ResourceKind
    name: str
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    domains: tuple[str, ...] = ()

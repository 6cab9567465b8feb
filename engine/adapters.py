"""
Resource adapters: one per resource kind (Pages deployments, Workers versions).

Each adapter composes a transport, the shared dispatcher and its kind's
retention evaluator behind the ResourceAdapter protocol. They deliberately
share no base client: the kinds differ in delete semantics (Workers falls
back from deployments to versions) and in environment concepts.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Optional, Protocol

from engine.clock import Clock, parse_timestamp
from engine.dispatcher import RateLimitedDispatcher
from engine.models import (
    RESOURCE_KINDS,
    Item,
    ResourceKind,
    ResourceStats,
    ResourceSummary,
    RetentionPolicy,
)
from engine.policy import PagesRetentionEvaluator, RetentionEvaluator, WorkersRetentionEvaluator
from shared.errors import UnsupportedOperationError
from shared.logging import get_logger

logger = get_logger(__name__)


class ResourceTransport(Protocol):
    """The slice of shared.cloudflare.CloudflareTransport the adapters use."""

    def account_path(self, *parts: str) -> str: ...

    def get(self, path: str, params: Optional[dict] = None) -> dict: ...

    def delete(self, path: str, params: Optional[dict] = None) -> dict: ...


class ResourceAdapter(Protocol):
    kind: ResourceKind
    evaluator: RetentionEvaluator

    def list_all(self, name: str, policy: Optional[RetentionPolicy] = None) -> list[Item]: ...

    def delete_one(self, name: str, item: Item) -> None: ...

    def describe_stats(self, name: str) -> ResourceStats: ...

    def list_resources(self) -> list[ResourceSummary]: ...


def _items_from(records: Iterable[dict], to_item: Any, name: str) -> list[Item]:
    items = []
    dropped = 0
    for record in records:
        item = to_item(record)
        if item is None:
            dropped += 1
            continue
        items.append(item)
    if dropped:
        logger.warning("adapter.list.dropped_records", resource_name=name, dropped=dropped)
    return items


def _stats_for(name: str, items: list[Item], *, with_environment: bool) -> ResourceStats:
    if not items:
        return ResourceStats(name=name, total=0)
    created = [item.created_at for item in items]
    by_month = Counter(item.created_at.strftime("%Y-%m") for item in items)
    if with_environment:
        by_environment = Counter(item.environment or "unknown" for item in items)
        by_status = Counter(item.status or "unknown" for item in items)
        by_version: Counter = Counter()
    else:
        by_environment = Counter()
        by_status = Counter()
        by_version = Counter(item.version_label or "unknown" for item in items)
    return ResourceStats(
        name=name,
        total=len(items),
        by_environment=dict(by_environment),
        by_status=dict(by_status),
        by_version=dict(by_version),
        by_month=dict(sorted(by_month.items())),
        oldest=min(created),
        newest=max(created),
    )


class PagesAdapter:
    """Cloudflare Pages project deployments."""

    kind: ResourceKind = "pages"

    def __init__(
        self,
        transport: ResourceTransport,
        dispatcher: RateLimitedDispatcher,
        *,
        clock: Optional[Clock] = None,
        force: bool = True,
    ) -> None:
        self.transport = transport
        self.dispatcher = dispatcher
        self.evaluator = PagesRetentionEvaluator(clock)
        # force=true lets the API delete deployments that still carry an alias
        self.force = force

    def _deployments_path(self, name: str, *extra: str) -> str:
        return self.transport.account_path("pages", "projects", name, "deployments", *extra)

    def list_all(self, name: str, policy: Optional[RetentionPolicy] = None) -> list[Item]:
        """
        Fetch every deployment the API returns for a project.

        The environment filter, when set on the policy, is pushed down as the
        `env` query parameter.
        """
        params = {}
        if policy is not None and policy.environment_filter:
            params["env"] = policy.environment_filter
        body = self.dispatcher.call(self.transport.get, self._deployments_path(name), params)
        records = body.get("result") or []
        items = _items_from(records, _pages_item, name)

        total_count = (body.get("result_info") or {}).get("total_count")
        if total_count and total_count > len(records):
            logger.warning(
                "pages.list.truncated",
                resource_name=name,
                retrieved=len(records),
                total_count=total_count,
            )
        logger.info("pages.list.complete", resource_name=name, count=len(items))
        return items

    def delete_one(self, name: str, item: Item) -> None:
        params = {"force": "true"} if self.force else None
        self.dispatcher.call(self.transport.delete, self._deployments_path(name, item.id), params)
        logger.debug("pages.delete.ok", resource_name=name, item_id=item.id)

    def describe_stats(self, name: str) -> ResourceStats:
        return _stats_for(name, self.list_all(name), with_environment=True)

    def list_resources(self) -> list[ResourceSummary]:
        body = self.dispatcher.call(self.transport.get, self.transport.account_path("pages", "projects"))
        projects = []
        for project in body.get("result") or []:
            if not project.get("name"):
                continue
            projects.append(
                ResourceSummary(
                    kind="pages",
                    name=project["name"],
                    created_at=parse_timestamp(project.get("created_on")),
                    domains=tuple(project.get("domains") or ()),
                )
            )
        logger.info("pages.projects.complete", count=len(projects))
        return projects


def _pages_item(record: dict) -> Optional[Item]:
    created_at = parse_timestamp(record.get("created_on"))
    if not record.get("id") or created_at is None:
        return None
    return Item(
        id=str(record["id"]),
        created_at=created_at,
        environment=record.get("environment"),
        version_label=record.get("short_id"),
        status=(record.get("latest_stage") or {}).get("status"),
    )


class WorkersAdapter:
    """Cloudflare Workers script versions."""

    kind: ResourceKind = "workers"

    def __init__(
        self,
        transport: ResourceTransport,
        dispatcher: RateLimitedDispatcher,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.transport = transport
        self.dispatcher = dispatcher
        self.evaluator = WorkersRetentionEvaluator(clock)

    def _script_path(self, name: str, *extra: str) -> str:
        return self.transport.account_path("workers", "scripts", name, *extra)

    def list_all(self, name: str, policy: Optional[RetentionPolicy] = None) -> list[Item]:
        """
        List script versions. Only the versions endpoint is read; unlike
        delete_one there is no deployments-first fallback here.
        """
        body = self.dispatcher.call(self.transport.get, self._script_path(name, "versions"))
        result = body.get("result") or []
        # The versions endpoint nests its list under "items" on newer API revisions.
        records = (result.get("items") or []) if isinstance(result, dict) else result
        items = _items_from(records, _workers_item, name)
        logger.info("workers.list.complete", resource_name=name, count=len(items))
        return items

    def delete_one(self, name: str, item: Item) -> None:
        """
        Delete via the deployments sub-resource, falling back to versions
        when the API reports the operation unsupported there.
        """
        try:
            self.dispatcher.call(
                self.transport.delete, self._script_path(name, "deployments", item.id)
            )
        except UnsupportedOperationError:
            logger.debug("workers.delete.fallback", resource_name=name, item_id=item.id)
            self.dispatcher.call(self.transport.delete, self._script_path(name, "versions", item.id))
        logger.debug("workers.delete.ok", resource_name=name, item_id=item.id)

    def describe_stats(self, name: str) -> ResourceStats:
        return _stats_for(name, self.list_all(name), with_environment=False)

    def list_resources(self) -> list[ResourceSummary]:
        body = self.dispatcher.call(self.transport.get, self.transport.account_path("workers", "scripts"))
        scripts = []
        for script in body.get("result") or []:
            if not script.get("id"):
                continue
            scripts.append(
                ResourceSummary(
                    kind="workers",
                    name=script["id"],
                    created_at=parse_timestamp(script.get("created_on")),
                    modified_at=parse_timestamp(script.get("modified_on")),
                )
            )
        logger.info("workers.scripts.complete", count=len(scripts))
        return scripts


def _workers_item(record: dict) -> Optional[Item]:
    metadata = record.get("metadata") or {}
    created_at = parse_timestamp(record.get("created_on") or metadata.get("created_on"))
    if not record.get("id") or created_at is None:
        return None
    number = record.get("number")
    return Item(
        id=str(record["id"]),
        created_at=created_at,
        version_label=str(number) if number is not None else None,
    )


ADAPTERS = {
    "pages": PagesAdapter,
    "workers": WorkersAdapter,
}


def build_adapter(
    kind: str,
    transport: ResourceTransport,
    dispatcher: RateLimitedDispatcher,
    *,
    clock: Optional[Clock] = None,
) -> ResourceAdapter:
    if kind not in ADAPTERS:
        raise ValueError(f"Unsupported resource kind: {kind!r} (expected one of {RESOURCE_KINDS})")
    return ADAPTERS[kind](transport, dispatcher, clock=clock)

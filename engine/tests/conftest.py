"""
Pytest fixtures for engine tests.

No network: adapters and the service run against an in-memory fake transport,
time-dependent code against a manual clock.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from engine.dispatcher import DispatcherConfig, RateLimitedDispatcher
from shared.config import AppConfig

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
ACCOUNT = "acct-1"


class ManualClock:
    """Clock whose wall time and monotonic time only move when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self._now = now
        self._mono = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._mono += seconds


class RecordingSink:
    """EventSink that keeps every (event, fields) pair."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def notify(self, event: str, **fields: Any) -> None:
        with self._lock:
            self.events.append((event, fields))

    def named(self, event: str) -> list[dict]:
        return [fields for name, fields in self.events if name == event]


class FakeTransport:
    """
    In-memory stand-in for CloudflareTransport.

    responses maps (method, path) to a body dict or an exception instance.
    Unregistered DELETEs succeed; unregistered GETs return an empty result.
    """

    def __init__(self, responses: Optional[dict] = None) -> None:
        self.account_id = ACCOUNT
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, str, Optional[dict]]] = []
        self._lock = threading.Lock()

    def account_path(self, *parts: str) -> str:
        return "/".join([f"/accounts/{self.account_id}", *parts])

    def get(self, path: str, params: Optional[dict] = None) -> dict:
        return self._respond("GET", path, params, {"success": True, "result": []})

    def delete(self, path: str, params: Optional[dict] = None) -> dict:
        return self._respond("DELETE", path, params, {"success": True, "result": None})

    def paths(self, method: str) -> list[str]:
        return [path for m, path, _ in self.calls if m == method]

    def _respond(self, method: str, path: str, params: Optional[dict], default: dict) -> dict:
        with self._lock:
            self.calls.append((method, path, dict(params) if params else None))
        response = self.responses.get((method, path), default)
        if isinstance(response, Exception):
            raise response
        return response


def make_config(**overrides: Any) -> AppConfig:
    values: dict[str, Any] = dict(
        api_token="token",
        account_id=ACCOUNT,
        base_url="https://api.example.test/client/v4",
        request_timeout_seconds=30,
        max_retries=3,
        backoff_base_ms=750,
        rate_limit_concurrent=3,
        rate_limit_delay_ms=0,
        execution_mode="concurrent",
        log_level="INFO",
        log_format="json",
        log_file=None,
        log_stdout=True,
        confirmation_required=False,
        max_age_days=None,
        filter_environment=None,
        filter_status=None,
        skip_production=True,
        keep_latest_count=1,
        skip_latest=True,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dispatcher():
    d = RateLimitedDispatcher(DispatcherConfig(max_concurrent=3, min_delay_ms=0))
    yield d
    d.shutdown()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def transport_factory():
    return FakeTransport

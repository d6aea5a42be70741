"""
tests/conftest.py

Shared fixtures for the analytics drain test suite.

The drain is exercised through FastAPI's TestClient with the Postgres store
swapped for ``InMemoryEventStore``, which keeps the same contract: rows keyed
by event_id, whole-batch upsert, last write wins.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime
from typing import Callable, Sequence

import pytest
from fastapi.testclient import TestClient

from analytics_drain.config import settings
from analytics_drain.dependencies import get_event_store
from analytics_drain.ingest import CanonicalEvent
from analytics_drain.main import app
from analytics_drain.stores import AnalyticsSummary, EventStore, StoreError

TEST_SECRET = "drain-test-secret"


class InMemoryEventStore(EventStore):
    """Dict-backed store with upsert-by-event_id semantics."""

    def __init__(self) -> None:
        self.rows: dict[str, CanonicalEvent] = {}
        self.upsert_calls = 0
        self.fail_with: Exception | None = None

    @property
    def store_name(self) -> str:
        return "memory"

    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> int:
        self.upsert_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        staged = dict(self.rows)
        for event in events:
            staged[event.event_id] = event
        self.rows = staged
        return len(events)

    async def summarize(self, since: datetime) -> AnalyticsSummary:
        if self.fail_with is not None:
            raise StoreError(str(self.fail_with))
        window = [row for row in self.rows.values() if row.occurred_at >= since]
        visitors = {row.visit_id or row.session_id or row.event_id for row in window}
        return AnalyticsSummary(
            visitors=len(visitors),
            page_views=len(window),
            last_event_at=max((row.occurred_at for row in window), default=None),
        )


def hex_signature(body: bytes, secret: str = TEST_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()


@pytest.fixture
def secret(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(settings, "analytics_drain_secret", TEST_SECRET)
    return TEST_SECRET


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def client(store: InMemoryEventStore, secret: str) -> TestClient:
    app.dependency_overrides[get_event_store] = lambda: store
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def post_signed(client: TestClient) -> Callable:
    """POST raw bytes to the drain with a hex signature over those bytes."""

    def post(body: bytes, signature: str | None = None, header: str = "x-vercel-signature"):
        headers = {"content-type": "application/json"}
        headers[header] = signature if signature is not None else hex_signature(body)
        return client.post("/analytics-drain", content=body, headers=headers)

    return post

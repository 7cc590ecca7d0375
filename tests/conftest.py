from __future__ import annotations

import json

import httpx
import pytest

from eventwatch.analyzer import AlertEvaluator
from eventwatch.event_store import EventStore
from eventwatch.logging_db import DatabaseManager
from eventwatch.models import SystemMetrics
from eventwatch.monitor_base import MonitorBase
from eventwatch.notifications import DiscordNotifier

WEBHOOK_URL = "https://discord.test/api/webhooks/1/token"


class FakeMonitor(MonitorBase):
    """Returns whatever metrics the test sets; never touches the host."""

    def __init__(self, **values):
        self.metrics = SystemMetrics(**values)
        self.calls = 0

    def sample(self) -> SystemMetrics:
        self.calls += 1
        return self.metrics


class RecordingTransport:
    """httpx transport handler that records every webhook POST."""

    def __init__(self, status_code: int = 204):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture()
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "events.db"))
    manager.init_db()
    return manager


@pytest.fixture()
def monitor():
    return FakeMonitor(cpu_usage=12.5, memory_usage=40.0, disk_usage=30.0,
                       total_memory=16_000, free_memory=9_600, uptime=3600.0)


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def notifier(transport):
    client = httpx.Client(transport=httpx.MockTransport(transport))
    yield DiscordNotifier(webhook_url=WEBHOOK_URL, environment="development", client=client)
    client.close()


@pytest.fixture()
def store(db, monitor, notifier):
    return EventStore(db, monitor=monitor, notifier=notifier)


@pytest.fixture()
def evaluator(db, store, monitor):
    return AlertEvaluator(db, store, monitor, use_remote_storage=False,
                          default_storage_limit=10_000_000_000)

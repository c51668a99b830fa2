#  Agent Watch - Test Fixtures
#
#  Shared fixtures for the test suite.
#  Uses DI container overrides instead of monkey-patching singletons.
#
#  Depends on: agentwatch/db/connection.py, agentwatch/container.py, agentwatch/app.py
#  Used by:    all test files

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dependency_injector import providers


class FakeClock:
    """Deterministic, manually advanced clock for services."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeObserver:
    """Stands in for watchdog's Observer; records scheduling, never spawns a thread."""

    instances: list = []

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False
        FakeObserver.instances.append(self)

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


# ---------------------------------------------------------------------------
# Database fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def tmp_db(tmp_path):
    """Create a fresh async database with schema applied."""
    from agentwatch.db.connection import Database

    test_db = Database()
    db_path = tmp_path / "test.db"
    await test_db.init(str(db_path))

    yield test_db

    await test_db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def project_dir(tmp_path):
    """A small JS project on disk."""
    root = tmp_path / "project"
    (root / "src" / "utils").mkdir(parents=True)
    (root / "src" / "utils" / "helper.js").write_text(
        "export function helper(x) {\n  if (x) {\n    return x;\n  }\n  return 0;\n}\n"
    )
    (root / "src" / "app.js").write_text(
        "import { helper } from './utils/helper';\nimport React from 'react';\n"
        "// entry point\nexport default function app() { return helper(1); }\n"
    )
    (root / "package.json").write_text('{"name": "demo", "version": "1.0.0"}\n')
    return root


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def event_bus():
    from agentwatch.services.event_bus import PipelineEventBus
    return PipelineEventBus()


@pytest.fixture
def captured_events(event_bus):
    """List that receives every event published on the bus."""
    events: list[dict] = []

    async def _capture(event):
        events.append(event)

    event_bus.register(_capture)
    return events


@pytest.fixture
def ledger(tmp_db, event_bus, clock):
    from agentwatch.services.ledger import ActivityLedger
    return ActivityLedger(tmp_db, event_bus=event_bus, clock=clock)


@pytest.fixture
def observer_factory():
    """FakeObserver class with a clean instance list."""
    FakeObserver.instances = []
    return FakeObserver


@pytest.fixture
def watcher_registry(observer_factory):
    from agentwatch.services.watcher import WatcherRegistry
    return WatcherRegistry(observer_factory=observer_factory, queue_size=8, join_timeout=0.1)


@pytest.fixture
def analyzer(tmp_db, event_bus, watcher_registry, clock):
    from agentwatch.services.change_analyzer import ChangeAnalyzer
    return ChangeAnalyzer(tmp_db, event_bus=event_bus, registry=watcher_registry, clock=clock)


@pytest.fixture
def mock_http():
    """httpx.AsyncClient stand-in whose post() returns a 200 response."""
    response = MagicMock()
    response.status_code = 200
    response.raise_for_status = MagicMock()
    client = AsyncMock()
    client.post = AsyncMock(return_value=response)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def alerting(tmp_db, mock_http, clock):
    from agentwatch.services.alerting import AlertingEngine
    from agentwatch.services.templates import TemplateRenderer
    return AlertingEngine(tmp_db, renderer=TemplateRenderer(clock=clock), http_client=mock_http, clock=clock)


@pytest.fixture
def reports(tmp_db, tmp_path, clock):
    from agentwatch.services.reports import ReportCompiler
    from agentwatch.services.templates import TemplateRenderer
    return ReportCompiler(
        tmp_db, renderer=TemplateRenderer(clock=clock), default_root=tmp_path / "reports-root", clock=clock,
    )


# ---------------------------------------------------------------------------
# FastAPI client fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def app_client(tmp_db, event_bus, ledger, analyzer, alerting, reports, watcher_registry, mock_http):
    """FastAPI client on a fresh database. Uses DI container overrides.

    Uses explicit try/finally with reset_override() so DI state is fully
    cleaned up between tests.
    """
    from httpx import ASGITransport, AsyncClient
    from agentwatch.app import app, container

    init_patcher = patch.object(tmp_db, "init", new_callable=AsyncMock)

    overrides = {
        container.db: tmp_db,
        container.event_bus: event_bus,
        container.ledger: ledger,
        container.analyzer: analyzer,
        container.alerting: alerting,
        container.reports: reports,
        container.watcher_registry: watcher_registry,
        container.http_client: mock_http,
    }
    for provider, obj in overrides.items():
        provider.override(providers.Object(obj))
    init_patcher.start()

    # Reset rate limiter storage so tests don't hit limits from prior tests
    from agentwatch.rate_limit import limiter as _limiter
    _limiter.reset()

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        init_patcher.stop()
        for provider in overrides:
            provider.reset_override()

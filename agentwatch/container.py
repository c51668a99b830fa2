#  Agent Watch - Dependency Injection Container
#
#  DeclarativeContainer wiring the four pipeline components and their
#  shared resources (database, http client, event bus, watcher registry).
#
#  Depends on: db/connection.py, services/*
#  Used by:    app.py, routes/*

import httpx
from dependency_injector import containers, providers

from agentwatch.config import WEBHOOK_TIMEOUT
from agentwatch.db.connection import Database
from agentwatch.services.alerting import AlertingEngine
from agentwatch.services.change_analyzer import ChangeAnalyzer
from agentwatch.services.classifier import HeuristicClassifier
from agentwatch.services.event_bus import PipelineEventBus
from agentwatch.services.ledger import ActivityLedger
from agentwatch.services.reports import ReportCompiler
from agentwatch.services.templates import TemplateRenderer
from agentwatch.services.watcher import WatcherRegistry


class Container(containers.DeclarativeContainer):
    """DI container for Agent Watch.

    All services are Singletons, one instance per application lifecycle.
    Routes access them via @inject + Depends(Provide[Container.xxx]).
    Tests override them via container.xxx.override(providers.Object(obj)).
    """

    wiring_config = containers.WiringConfiguration(
        modules=[
            "agentwatch.routes.health",
            "agentwatch.routes.activities",
            "agentwatch.routes.tasks",
            "agentwatch.routes.changes",
            "agentwatch.routes.monitoring",
            "agentwatch.routes.notifications",
            "agentwatch.routes.reports",
            "agentwatch.routes.events",
        ]
    )

    # --- Core ---
    db = providers.Singleton(Database)
    http_client = providers.Singleton(httpx.AsyncClient, timeout=WEBHOOK_TIMEOUT)
    event_bus = providers.Singleton(PipelineEventBus)
    renderer = providers.Singleton(TemplateRenderer)

    # --- Change analysis ---
    classifier = providers.Singleton(HeuristicClassifier)
    watcher_registry = providers.Singleton(WatcherRegistry)

    # --- Pipeline components ---
    ledger = providers.Singleton(ActivityLedger, db=db, event_bus=event_bus)
    analyzer = providers.Singleton(
        ChangeAnalyzer,
        db=db,
        event_bus=event_bus,
        classifier=classifier,
        registry=watcher_registry,
    )
    alerting = providers.Singleton(
        AlertingEngine,
        db=db,
        renderer=renderer,
        http_client=http_client,
    )
    reports = providers.Singleton(ReportCompiler, db=db, renderer=renderer)

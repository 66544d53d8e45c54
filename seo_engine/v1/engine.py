"""
Engine assembly: one place that wires registry, store, dispatcher,
collaborators, handlers and reporter together for a process.
"""

from dataclasses import dataclass

import httpx
from fastapi import Request

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import QueueBackend, Settings
from seo_engine.v1.core.exceptions import ServiceUnavailableError
from seo_engine.v1.health.reporter import HealthReporter
from seo_engine.v1.pipeline.collaborators import PipelineServices, load_services_factory
from seo_engine.v1.pipeline.handlers import HandlerContext, build_handler_table
from seo_engine.v1.pipeline.orchestrator import PipelineOrchestrator
from seo_engine.v1.queues.dispatcher import Dispatcher
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.store import InMemoryQueueStore, QueueStore
from seo_engine.v1.queues.worker import HandlerTable, WorkerPool
from seo_engine.v1.webhooks.service import WebhookService

logger = get_logger(__name__)


@dataclass
class Engine:
    settings: Settings
    registry: QueueRegistry
    store: QueueStore
    dispatcher: Dispatcher
    reporter: HealthReporter
    webhooks: WebhookService
    services: PipelineServices | None = None
    orchestrator: PipelineOrchestrator | None = None
    handlers: HandlerTable | None = None
    pool: WorkerPool | None = None

    def require_orchestrator(self) -> PipelineOrchestrator:
        if self.orchestrator is None:
            raise ServiceUnavailableError(
                "Pipeline services are not configured",
                {"setting": "SERVICES_FACTORY"},
            )
        return self.orchestrator

    def worker_pool(self, queues: list[str] | None = None) -> WorkerPool:
        """Create the worker pool for ``queues`` (all queues by default)."""
        if self.handlers is None:
            raise RuntimeError("Workers need pipeline services; set SERVICES_FACTORY")
        self.pool = WorkerPool(
            self.registry, self.store, self.handlers, self.settings, queues
        )
        self.reporter.attach_workers(self.pool.health)
        return self.pool

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.stop()
        await self.webhooks.close()
        await self.store.close()


def build_store(settings: Settings) -> QueueStore:
    if settings.queue_backend == QueueBackend.POSTGRES:
        # The database driver is only required by the postgres backend
        from seo_engine.infra.database import Database
        from seo_engine.v1.queues.postgres_store import PostgresQueueStore

        return PostgresQueueStore(Database(settings))
    return InMemoryQueueStore()


def load_services(settings: Settings) -> PipelineServices | None:
    if not settings.services_factory:
        logger.warning("No services factory configured; pipeline routes are disabled")
        return None
    factory = load_services_factory(settings.services_factory)
    return factory()


def build_engine(
    settings: Settings,
    services: PipelineServices | None = None,
    store: QueueStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Engine:
    """Wire an engine; collaborators come from ``services_factory`` when not given."""
    registry = QueueRegistry.from_settings(settings)
    store = store or build_store(settings)
    dispatcher = Dispatcher(registry, store)
    services = services if services is not None else load_services(settings)

    webhooks = WebhookService(
        settings,
        repository=services.repository if services else None,
        dispatcher=dispatcher,
        http_client=http_client,
    )
    engine = Engine(
        settings=settings,
        registry=registry,
        store=store,
        dispatcher=dispatcher,
        reporter=HealthReporter(registry, store, settings),
        webhooks=webhooks,
        services=services,
    )

    if services is not None:
        missing = services.agents.missing()
        if missing:
            logger.warning("Pipeline agents not registered", agents=missing)
        engine.orchestrator = PipelineOrchestrator(services, dispatcher, settings)
        engine.handlers = build_handler_table(
            HandlerContext(
                services=services,
                orchestrator=engine.orchestrator,
                dispatcher=dispatcher,
                webhooks=webhooks,
                settings=settings,
            )
        )

    logger.info(
        "Engine built",
        queue_backend=settings.queue_backend.value,
        queues=registry.names(),
        pipeline_enabled=services is not None,
    )
    return engine


def get_engine(request: Request) -> Engine:
    """Dependency returning the engine attached to the application."""
    return request.app.state.engine

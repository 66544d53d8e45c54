import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from seo_engine.config.settings import Settings
from seo_engine.main import create_app
from seo_engine.v1.core.registries import AgentRegistry
from seo_engine.v1.engine import Engine, build_engine
from seo_engine.v1.pipeline.collaborators import (
    MonitorRun,
    NewPage,
    Page,
    PageStatus,
    PipelineServices,
    Project,
    ProjectStatus,
    PublishContent,
    PublishResult,
    WebhookSubscription,
)
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.store import InMemoryQueueStore

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class ManualClock:
    """Wall clock for the in-memory store that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += timedelta(milliseconds=ms)


class ManualTimer:
    """Monotonic seconds for rate limiters."""

    def __init__(self):
        self.current = 0.0

    def __call__(self) -> float:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms / 1000


class FakeRepository:
    """In-memory Repository with call recording."""

    def __init__(self):
        self.projects: dict[str, Project] = {}
        self.pages: dict[str, Page] = {}
        self.artifacts: dict[tuple[str, str], dict[str, Any]] = {}
        self.monitor_runs: list[MonitorRun] = []
        self.webhooks: list[WebhookSubscription] = []
        self.triggered: list[str] = []
        self.status_history: list[tuple[str, ProjectStatus]] = []
        self.page_status_history: list[tuple[str, PageStatus]] = []

    def add_project(self, project_id: str = "p1", **fields) -> Project:
        project = Project(
            id=project_id,
            name=fields.pop("name", f"Project {project_id}"),
            settings=fields.pop("settings", {"niche": "coffee", "target_audience": "baristas"}),
            **fields,
        )
        self.projects[project_id] = project
        return project

    def add_page(self, page_id: str, project_id: str = "p1", **fields) -> Page:
        page = Page(
            id=page_id,
            project_id=project_id,
            title=fields.pop("title", f"Page {page_id}"),
            slug=fields.pop("slug", page_id),
            **fields,
        )
        self.pages[page_id] = page
        return page

    def add_webhook(
        self, webhook_id: str, url: str, events: list[str], project_id: str = "p1", **fields
    ) -> WebhookSubscription:
        subscription = WebhookSubscription(
            id=webhook_id,
            project_id=project_id,
            url=url,
            secret=fields.pop("secret", f"secret-{webhook_id}"),
            events=events,
            **fields,
        )
        self.webhooks.append(subscription)
        return subscription

    async def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    async def update_project_status(self, project_id: str, status: ProjectStatus) -> None:
        self.status_history.append((project_id, status))
        project = self.projects[project_id]
        self.projects[project_id] = project.model_copy(update={"status": status})

    async def get_project_artifact(self, project_id: str, name: str) -> dict[str, Any] | None:
        return self.artifacts.get((project_id, name))

    async def save_project_artifact(
        self, project_id: str, name: str, data: dict[str, Any]
    ) -> None:
        self.artifacts[(project_id, name)] = data

    async def create_pages(self, project_id: str, pages: list[NewPage]) -> list[Page]:
        created = []
        for new_page in pages:
            page_id = f"{project_id}-page-{len(self.pages)}"
            created.append(
                self.add_page(
                    page_id,
                    project_id,
                    title=new_page.title,
                    slug=new_page.slug,
                    meta_description=new_page.meta_description,
                )
            )
        return created

    async def list_pages(self, project_id: str) -> list[Page]:
        return [page for page in self.pages.values() if page.project_id == project_id]

    async def get_page(self, page_id: str) -> Page | None:
        return self.pages.get(page_id)

    async def update_page_status(self, page_id: str, status: PageStatus) -> None:
        await self.update_page(page_id, {"status": status})

    async def update_page(self, page_id: str, fields: dict[str, Any]) -> None:
        if "status" in fields:
            self.page_status_history.append((page_id, fields["status"]))
        page = self.pages[page_id]
        self.pages[page_id] = page.model_copy(update=fields)

    async def insert_monitor_run(
        self, project_id: str, health_score: float | None, result: dict[str, Any]
    ) -> MonitorRun:
        run = MonitorRun(
            id=f"run-{len(self.monitor_runs) + 1}",
            project_id=project_id,
            health_score=health_score,
            result=result,
            created_at=START,
        )
        self.monitor_runs.append(run)
        return run

    async def list_active_webhooks(
        self, project_id: str, event: str
    ) -> list[WebhookSubscription]:
        return [hook for hook in self.webhooks if hook.project_id == project_id]

    async def mark_webhook_triggered(self, webhook_id: str, at: datetime) -> None:
        self.triggered.append(webhook_id)


class FakeAgent:
    """Agent returning a fixed output, or raising/sleeping when told to."""

    def __init__(
        self,
        output: dict[str, Any] | None = None,
        error: Exception | None = None,
        delay_s: float = 0,
    ):
        self.output = output or {}
        self.error = error
        self.delay_s = delay_s
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def run(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((project_id, payload))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.output


class FakePublisher:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.published: list[PublishContent] = []

    async def publish(self, content: PublishContent) -> PublishResult:
        if self.error is not None:
            raise self.error
        self.published.append(content)
        return PublishResult(
            id=f"wp-{len(self.published)}",
            url=f"https://example.com/{content.slug}",
        )


class FakeSearchConsole:
    def __init__(self):
        self.submitted: list[str] = []

    async def exchange_code(self, code: str) -> dict[str, Any]:
        return {"access_token": f"token-{code}"}

    async def submit_url_for_indexing(self, url: str) -> dict[str, Any]:
        self.submitted.append(url)
        return {"url": url, "type": "URL_UPDATED"}


SITE_STRUCTURE = {
    "site_structure": {
        "homepage": {"title": "Coffee Corner", "meta_description": "All about coffee"},
        "categories": [
            {
                "name": "Brewing",
                "pages": [
                    {"title": "Pour Over Guide", "slug": "pour-over"},
                    {"title": "French Press Guide", "slug": "french-press"},
                ],
            }
        ],
    }
}


def default_agents() -> dict[str, FakeAgent]:
    return {
        "market_research": FakeAgent(
            {"keyword_opportunities": [{"keyword": "pour over"}, {"keyword": "espresso"}]}
        ),
        "site_architect": FakeAgent(SITE_STRUCTURE),
        "content_builder": FakeAgent(
            {
                "content_html": "<p>Brew it well</p>",
                "meta_title": "Brewing",
                "meta_description": "How to brew",
            }
        ),
        "elementor_builder": FakeAgent({"sections": [{"type": "hero"}]}),
        "internal_linker": FakeAgent({"links": []}),
        "monitor": FakeAgent({"health_score": 82, "alerts": [], "trends": []}),
        "optimizer": FakeAgent({"updated_meta_title": "Better Brewing"}),
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        debug=False,
        webhook_secret=None,
        webhook_ip_allowlist="",
        services_factory=None,
        embedded_workers=False,
        poll_interval_ms=10,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> InMemoryQueueStore:
    return InMemoryQueueStore(clock=clock)


@pytest.fixture
def queue_registry(settings: Settings) -> QueueRegistry:
    return QueueRegistry.from_settings(settings)


@pytest.fixture
def repository() -> FakeRepository:
    repository = FakeRepository()
    repository.add_project("p1")
    return repository


@pytest.fixture
def agents() -> dict[str, FakeAgent]:
    return default_agents()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def search_console() -> FakeSearchConsole:
    return FakeSearchConsole()


@pytest.fixture
def services(
    repository: FakeRepository,
    agents: dict[str, FakeAgent],
    publisher: FakePublisher,
    search_console: FakeSearchConsole,
) -> PipelineServices:
    registry = AgentRegistry()
    for name, agent in agents.items():
        registry.register(name, agent)
    return PipelineServices(
        repository=repository,
        agents=registry,
        publisher=publisher,
        search_console=search_console,
    )


class WebhookReceiver:
    """Records outbound webhook requests; per-URL status codes or errors."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.statuses: dict[str, int] = {}
        self.failing: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.failing:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.statuses.get(url, 200), json={"received": True})


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def http_client(receiver: WebhookReceiver) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(receiver))


@pytest.fixture
def engine(
    settings: Settings,
    services: PipelineServices,
    store: InMemoryQueueStore,
    http_client: httpx.AsyncClient,
) -> Engine:
    return build_engine(settings, services=services, store=store, http_client=http_client)


@pytest.fixture
def client(engine: Engine) -> TestClient:
    return TestClient(create_app(engine))


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()

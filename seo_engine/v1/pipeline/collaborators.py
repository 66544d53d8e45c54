"""
Interfaces the pipeline needs from the outside world, and the records they
exchange.

The engine never talks to a database, CMS or search console directly.
Deployments provide a ``PipelineServices`` bundle through the
``services_factory`` setting.
"""

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from seo_engine.v1.core.registries import AgentRegistry


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    CONFIGURING = "configuring"
    BUILDING = "building"
    LIVE = "live"
    PAUSED = "paused"
    OPTIMIZING = "optimizing"
    ERROR = "error"


class PageStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    OPTIMIZING = "optimizing"
    ERROR = "error"


class Project(BaseModel):
    id: str
    name: str
    domain: str | None = None
    status: ProjectStatus = ProjectStatus.DRAFT
    settings: dict[str, Any] = Field(default_factory=dict)


class Page(BaseModel):
    id: str
    project_id: str
    title: str
    slug: str
    status: PageStatus = PageStatus.DRAFT
    url: str | None = None
    remote_id: str | None = None
    content: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    elementor_data: dict[str, Any] | None = None
    published_at: datetime | None = None


class NewPage(BaseModel):
    """A page to create from a site architecture."""

    title: str
    slug: str
    meta_description: str | None = None


class MonitorRun(BaseModel):
    id: str
    project_id: str
    health_score: float | None = Field(default=None, ge=0, le=100)
    result: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class WebhookSubscription(BaseModel):
    id: str
    project_id: str
    url: str
    secret: str
    events: list[str] = Field(default_factory=list)
    active: bool = True
    last_triggered_at: datetime | None = None


class PublishContent(BaseModel):
    title: str
    slug: str
    content: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    elementor_data: dict[str, Any] | None = None


class PublishResult(BaseModel):
    id: str
    url: str


class Repository(Protocol):
    """Project, page, monitor-run and webhook persistence."""

    async def get_project(self, project_id: str) -> Project | None: ...

    async def update_project_status(
        self, project_id: str, status: ProjectStatus
    ) -> None: ...

    async def get_project_artifact(
        self, project_id: str, name: str
    ) -> dict[str, Any] | None: ...

    async def save_project_artifact(
        self, project_id: str, name: str, data: dict[str, Any]
    ) -> None: ...

    async def create_pages(
        self, project_id: str, pages: list[NewPage]
    ) -> list[Page]: ...

    async def list_pages(self, project_id: str) -> list[Page]: ...

    async def get_page(self, page_id: str) -> Page | None: ...

    async def update_page_status(self, page_id: str, status: PageStatus) -> None: ...

    async def update_page(self, page_id: str, fields: dict[str, Any]) -> None: ...

    async def insert_monitor_run(
        self, project_id: str, health_score: float | None, result: dict[str, Any]
    ) -> MonitorRun: ...

    async def list_active_webhooks(
        self, project_id: str, event: str
    ) -> list[WebhookSubscription]: ...

    async def mark_webhook_triggered(self, webhook_id: str, at: datetime) -> None: ...


class Publisher(Protocol):
    """Publishes page content to the site's CMS."""

    async def publish(self, content: PublishContent) -> PublishResult: ...


class SearchConsole(Protocol):
    async def exchange_code(self, code: str) -> dict[str, Any]: ...

    async def submit_url_for_indexing(self, url: str) -> dict[str, Any]: ...


@dataclass
class PipelineServices:
    """Collaborators used by the stage handlers."""

    repository: Repository
    agents: AgentRegistry
    publisher: Publisher | None = None
    search_console: SearchConsole | None = None


def load_services_factory(path: str) -> Callable[[], PipelineServices]:
    """Resolve ``"package.module:callable"`` to the services factory."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"services_factory must look like 'module:callable', got {path!r}"
        )

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{path!r} does not name a callable")
    return factory

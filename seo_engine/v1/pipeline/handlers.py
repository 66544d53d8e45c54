"""
Stage handlers, one per job variant.

Handlers are re-runnable: a job may be delivered again after a lease
expires. They raise from ``seo_engine.v1.queues.errors`` to steer the retry
policy and return a small result dict that is stored with the completed job.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import Settings
from seo_engine.v1.pipeline.collaborators import (
    PageStatus,
    PipelineServices,
    ProjectStatus,
    PublishContent,
)
from seo_engine.v1.pipeline.orchestrator import (
    FIRST_MONITOR_DELAY_MS,
    MONITOR_INTERVAL_MS,
    PipelineOrchestrator,
)
from seo_engine.v1.queues.dispatcher import Dispatcher
from seo_engine.v1.queues.errors import TerminalAgentError, ValidationError
from seo_engine.v1.queues.jobs import (
    AgentTaskJob,
    BuildJob,
    IndexJob,
    MonitorJob,
    OptimizeJob,
    OptimizeReason,
    PublishJob,
    QueueName,
    WebhookJob,
)
from seo_engine.v1.queues.worker import HandlerTable
from seo_engine.v1.webhooks.service import WebhookService

logger = get_logger(__name__)


@dataclass
class HandlerContext:
    """Everything a stage handler may touch."""

    services: PipelineServices
    orchestrator: PipelineOrchestrator
    dispatcher: Dispatcher
    webhooks: WebhookService
    settings: Settings


class AgentTaskHandler:
    """
    Runs one named agent.

    Output lands on the page when ``page_id`` is set (``content_builder``
    also marks the page ready); otherwise it is stored as a project
    artifact named after the agent.
    """

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: AgentTaskJob) -> dict[str, Any]:
        orchestrator = self.ctx.orchestrator
        repository = self.ctx.services.repository

        await orchestrator.require_project(job.project_id)
        payload = dict(job.input)
        if job.page_id:
            await orchestrator.require_page(job.page_id)
            payload.setdefault("page_id", job.page_id)

        output = await orchestrator.run_agent(job.agent_type, job.project_id, payload)

        if job.page_id is None:
            await repository.save_project_artifact(job.project_id, job.agent_type, output)
            return {"agent_type": job.agent_type, "stored": "project"}

        if job.agent_type == "content_builder":
            fields: dict[str, Any] = {
                key: output[source]
                for key, source in (
                    ("content", "content_html"),
                    ("meta_title", "meta_title"),
                    ("meta_description", "meta_description"),
                )
                if output.get(source) is not None
            }
            fields["status"] = PageStatus.READY
            await repository.update_page(job.page_id, fields)
        elif job.agent_type == "elementor_builder":
            await repository.update_page(job.page_id, {"elementor_data": output})
        else:
            await repository.save_project_artifact(
                job.project_id, f"{job.agent_type}:{job.page_id}", output
            )

        return {"agent_type": job.agent_type, "page_id": job.page_id, "stored": "page"}


class BuildHandler:
    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: BuildJob) -> dict[str, Any]:
        return await self.ctx.orchestrator.run_phase(job)


class PublishHandler:
    """Publishes a page, notifies subscribers and queues indexing."""

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: PublishJob) -> dict[str, Any]:
        orchestrator = self.ctx.orchestrator
        repository = self.ctx.services.repository
        publisher = self.ctx.services.publisher

        await orchestrator.require_project(job.project_id)
        page = await orchestrator.require_page(job.page_id)

        if page.status == PageStatus.PUBLISHED and page.remote_id and page.url:
            # A retry after the follow-ups failed; the CMS already has the post
            logger.info(
                "Page already published, resuming follow-ups",
                page_id=page.id,
                remote_id=page.remote_id,
            )
            return await self._follow_up(job, page.id, page.remote_id, page.url)

        if publisher is None:
            raise ValidationError("No publisher configured", {"page_id": page.id})

        await repository.update_page_status(page.id, PageStatus.PUBLISHING)
        try:
            meta_title = page.meta_title
            meta_description = page.meta_description
            if self.ctx.services.agents.has("publisher"):
                review = await orchestrator.run_agent(
                    "publisher",
                    job.project_id,
                    {
                        "page_title": page.title,
                        "page_slug": page.slug,
                        "content_html": page.content,
                        "meta_title": page.meta_title,
                        "meta_description": page.meta_description,
                    },
                )
                if not review.get("publish_ready", False):
                    raise TerminalAgentError(
                        "Page failed SEO checks",
                        {"page_id": page.id, "checklist": review.get("seo_checklist")},
                    )
                meta_title = review.get("final_meta_title") or meta_title
                meta_description = (
                    review.get("final_meta_description") or meta_description
                )

            published = await publisher.publish(
                PublishContent(
                    title=page.title,
                    slug=page.slug,
                    content=page.content,
                    meta_title=meta_title,
                    meta_description=meta_description,
                    elementor_data=page.elementor_data,
                )
            )
            await repository.update_page(
                page.id,
                {
                    "remote_id": published.id,
                    "url": published.url,
                    "status": PageStatus.PUBLISHED,
                    "published_at": datetime.now(UTC),
                },
            )
        except Exception:
            await repository.update_page_status(page.id, PageStatus.ERROR)
            raise

        logger.info("Page published", page_id=page.id, remote_id=published.id)
        return await self._follow_up(job, page.id, published.id, published.url)

    async def _follow_up(
        self, job: PublishJob, page_id: str, remote_id: str, url: str
    ) -> dict[str, Any]:
        await self.ctx.webhooks.queue_event(
            "page.published",
            job.project_id,
            {"pageId": page_id, "url": url, "remoteId": remote_id},
        )
        index_job_id = await self.ctx.dispatcher.schedule_index(
            job.project_id, url, page_id=page_id
        )
        return {
            "page_id": page_id,
            "remote_id": remote_id,
            "url": url,
            "index_job_id": index_job_id,
        }


class IndexHandler:
    """Submits a URL for indexing and starts the project's monitor loop."""

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: IndexJob) -> dict[str, Any]:
        project = await self.ctx.orchestrator.require_project(job.project_id)
        search_console = self.ctx.services.search_console

        submitted = False
        if search_console is None:
            logger.info("No search console configured, skipping submission", url=job.url)
        else:
            await search_console.submit_url_for_indexing(job.url)
            submitted = True

        if project.status == ProjectStatus.BUILDING:
            await self.ctx.services.repository.update_project_status(
                project.id, ProjectStatus.LIVE
            )

        # One monitor loop per project
        pending = await self.ctx.dispatcher.store.pending_for_project(
            QueueName.MONITOR.value, job.project_id
        )
        monitor_job_id = None
        if pending == 0:
            monitor_job_id = await self.ctx.dispatcher.schedule_monitor(
                job.project_id, delay_ms=FIRST_MONITOR_DELAY_MS
            )

        return {"url": job.url, "submitted": submitted, "monitor_job_id": monitor_job_id}


class OptimizationCandidate(BaseModel):
    page_slug: str
    priority: str = "low"
    reason: str | None = None


class MonitorReport(BaseModel):
    """Validated shape of the monitor agent's output."""

    health_score: float | None = None
    rankings: list[Any] = Field(default_factory=list)
    trends: list[Any] = Field(default_factory=list)
    alerts: list[Any] = Field(default_factory=list)
    recommendations: list[Any] = Field(default_factory=list)
    optimization_candidates: list[OptimizationCandidate] = Field(default_factory=list)

    def stored_health_score(self) -> float | None:
        """Scores outside [0, 100] are stored as unknown."""
        if self.health_score is None or not 0 <= self.health_score <= 100:
            return None
        return self.health_score

    def result_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"health_score"})


class MonitorHandler:
    """
    One monitoring pass for a project.

    Every execution reschedules the next pass 24h out, whether the pass
    succeeded, failed or was skipped.
    """

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: MonitorJob) -> dict[str, Any]:
        try:
            return await self._monitor(job)
        finally:
            await self.ctx.dispatcher.schedule_monitor(
                job.project_id, delay_ms=MONITOR_INTERVAL_MS
            )

    async def _monitor(self, job: MonitorJob) -> dict[str, Any]:
        orchestrator = self.ctx.orchestrator
        repository = self.ctx.services.repository

        project = await orchestrator.require_project(job.project_id)
        if project.status == ProjectStatus.PAUSED:
            logger.info("Project paused, skipping monitoring")
            return {"skipped": True, "reason": "project paused"}

        pages = await repository.list_pages(project.id)
        output = await orchestrator.run_agent(
            "monitor",
            project.id,
            {
                "project_id": project.id,
                "pages": [
                    {"slug": page.slug, "title": page.title, "status": page.status.value}
                    for page in pages
                ],
            },
        )

        try:
            report = MonitorReport.model_validate(output)
        except pydantic.ValidationError as e:
            raise TerminalAgentError(
                "Monitor report failed validation", {"errors": e.errors()}
            ) from e

        health_score = report.stored_health_score()
        result = report.result_payload()
        run = await repository.insert_monitor_run(project.id, health_score, result)

        await self.ctx.webhooks.trigger_event(
            "monitor.completed",
            project.id,
            {
                "monitorRunId": run.id,
                "healthScore": health_score,
                "alertsCount": len(report.alerts),
                "trendsCount": len(report.trends),
                "recommendationsCount": len(report.recommendations),
                "optimizationCandidatesCount": len(report.optimization_candidates),
                "result": result,
            },
        )

        pages_by_slug = {page.slug: page for page in pages}
        optimize_job_ids = []
        for candidate in report.optimization_candidates:
            page = pages_by_slug.get(candidate.page_slug)
            if candidate.priority != "high" or page is None:
                continue
            optimize_job_ids.append(
                await self.ctx.dispatcher.schedule_optimize(
                    project.id, page.id, OptimizeReason.PERFORMANCE_DROP
                )
            )

        logger.info(
            "Monitoring completed",
            health_score=health_score,
            optimizations=len(optimize_job_ids),
        )
        return {
            "monitor_run_id": run.id,
            "health_score": health_score,
            "optimize_job_ids": optimize_job_ids,
        }


class OptimizeHandler:
    """Runs the optimizer on a published page; the page ends up published."""

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: OptimizeJob) -> dict[str, Any]:
        orchestrator = self.ctx.orchestrator
        repository = self.ctx.services.repository

        await orchestrator.require_project(job.project_id)
        page = await orchestrator.require_page(job.page_id)

        await repository.update_page_status(page.id, PageStatus.OPTIMIZING)
        try:
            output = await orchestrator.run_agent(
                "optimizer",
                job.project_id,
                {
                    "project_id": job.project_id,
                    "page_id": page.id,
                    "reason": job.reason.value,
                    "current_content": page.content,
                },
            )
            updates = {
                key: output[source]
                for key, source in (
                    ("content", "updated_content"),
                    ("meta_title", "updated_meta_title"),
                    ("meta_description", "updated_meta_description"),
                )
                if output.get(source)
            }
            if updates:
                await repository.update_page(page.id, updates)
        finally:
            await repository.update_page_status(page.id, PageStatus.PUBLISHED)

        logger.info("Page optimized", page_id=page.id, updated=sorted(updates))
        return {
            "page_id": page.id,
            "reason": job.reason.value,
            "updated_fields": sorted(updates),
            "recommendations": len(output.get("recommendations", [])),
        }


class WebhookDeliveryHandler:
    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    async def handle(self, job: WebhookJob) -> dict[str, Any]:
        return await self.ctx.webhooks.deliver(job)


def build_handler_table(ctx: HandlerContext) -> HandlerTable:
    """Map every job variant to its handler."""
    return {
        AgentTaskJob: AgentTaskHandler(ctx).handle,
        BuildJob: BuildHandler(ctx).handle,
        PublishJob: PublishHandler(ctx).handle,
        IndexJob: IndexHandler(ctx).handle,
        MonitorJob: MonitorHandler(ctx).handle,
        OptimizeJob: OptimizeHandler(ctx).handle,
        WebhookJob: WebhookDeliveryHandler(ctx).handle,
    }

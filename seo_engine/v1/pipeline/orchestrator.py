"""
Pipeline orchestrator.

Owns the fixed build sequence (research -> architecture -> content ->
elementor -> linking) and the operator actions on a project. Each phase
runs inside a ``BuildJob``; on success the next phase is scheduled with a
fixed delay.
"""

import asyncio
from typing import Any

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import Settings
from seo_engine.v1.pipeline.collaborators import (
    NewPage,
    Page,
    PageStatus,
    PipelineServices,
    Project,
    ProjectStatus,
)
from seo_engine.v1.queues.dispatcher import Dispatcher
from seo_engine.v1.queues.errors import (
    AgentError,
    EntityGoneError,
    TerminalAgentError,
    TransientIOError,
    ValidationError,
)
from seo_engine.v1.queues.jobs import BuildJob, BuildPhase, OptimizeReason

logger = get_logger(__name__)

# Delay before the phase that follows each completed phase
PHASE_DELAYS_MS: dict[BuildPhase, int] = {
    BuildPhase.RESEARCH: 30_000,
    BuildPhase.ARCHITECTURE: 120_000,
    BuildPhase.CONTENT: 300_000,
    BuildPhase.ELEMENTOR: 600_000,
}

MONITOR_INTERVAL_MS = 24 * 60 * 60 * 1000
FIRST_MONITOR_DELAY_MS = 60_000

NEXT_PHASE: dict[BuildPhase, BuildPhase] = {
    BuildPhase.RESEARCH: BuildPhase.ARCHITECTURE,
    BuildPhase.ARCHITECTURE: BuildPhase.CONTENT,
    BuildPhase.CONTENT: BuildPhase.ELEMENTOR,
    BuildPhase.ELEMENTOR: BuildPhase.LINKING,
}

MARKET_RESEARCH_ARTIFACT = "market_research"
SITE_ARCHITECTURE_ARTIFACT = "site_architecture"
INTERNAL_LINKS_ARTIFACT = "internal_links"
PAUSED_FROM_ARTIFACT = "paused_from"


class PipelineOrchestrator:
    """Runs build phases and operator actions against the collaborators."""

    def __init__(
        self, services: PipelineServices, dispatcher: Dispatcher, settings: Settings
    ):
        self.services = services
        self.repository = services.repository
        self.dispatcher = dispatcher
        self.settings = settings

    async def require_project(self, project_id: str) -> Project:
        project = await self.repository.get_project(project_id)
        if project is None:
            raise EntityGoneError(
                f"Project not found: {project_id}", {"project_id": project_id}
            )
        return project

    async def require_page(self, page_id: str) -> Page:
        page = await self.repository.get_page(page_id)
        if page is None:
            raise EntityGoneError(f"Page not found: {page_id}", {"page_id": page_id})
        return page

    async def run_agent(
        self, agent_type: str, project_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Run a registered agent, bounded by the agent timeout."""
        if not self.services.agents.has(agent_type):
            raise ValidationError(
                f"Unknown agent type: {agent_type}", {"agent_type": agent_type}
            )
        agent = self.services.agents.get(agent_type)

        try:
            return await asyncio.wait_for(
                agent.run(project_id, payload), timeout=self.settings.agent_timeout_s
            )
        except TimeoutError as e:
            raise TransientIOError(
                f"Agent {agent_type} timed out after {self.settings.agent_timeout_s}s",
                {"agent_type": agent_type},
            ) from e
        except AgentError as e:
            raise TerminalAgentError(str(e), {"agent_type": agent_type}) from e

    # Operator actions

    async def start_pipeline(self, project_id: str) -> str:
        """Mark the project building and schedule the research phase now."""
        await self.require_project(project_id)
        await self.repository.update_project_status(project_id, ProjectStatus.BUILDING)
        job_id = await self.dispatcher.schedule_build(project_id, BuildPhase.RESEARCH)
        logger.info("Pipeline started", project_id=project_id, job_id=job_id)
        return job_id

    async def pause_project(self, project_id: str) -> None:
        project = await self.require_project(project_id)
        if project.status != ProjectStatus.PAUSED:
            await self.repository.save_project_artifact(
                project_id, PAUSED_FROM_ARTIFACT, {"status": project.status.value}
            )
        await self.repository.update_project_status(project_id, ProjectStatus.PAUSED)
        logger.info("Project paused", project_id=project_id)

    async def resume_project(self, project_id: str) -> ProjectStatus:
        """
        Resume a paused project.

        Projects paused while live or optimizing go back to ``live`` with a
        fresh monitor job; anything else returns to ``building``.
        """
        project = await self.require_project(project_id)
        paused_from = await self.repository.get_project_artifact(
            project_id, PAUSED_FROM_ARTIFACT
        )
        previous = (paused_from or {}).get("status", project.status.value)
        if previous in (ProjectStatus.LIVE.value, ProjectStatus.OPTIMIZING.value):
            status = ProjectStatus.LIVE
            await self.repository.update_project_status(project_id, status)
            await self.dispatcher.schedule_monitor(project_id)
        else:
            status = ProjectStatus.BUILDING
            await self.repository.update_project_status(project_id, status)
        logger.info("Project resumed", project_id=project_id, status=status.value)
        return status

    async def schedule_optimization(self, project_id: str, page_id: str) -> str:
        await self.require_project(project_id)
        page = await self.require_page(page_id)
        if page.project_id != project_id:
            raise ValidationError(
                "Page does not belong to project",
                {"project_id": project_id, "page_id": page_id},
            )
        return await self.dispatcher.schedule_optimize(
            project_id, page_id, OptimizeReason.MANUAL
        )

    # Build phases

    async def run_phase(self, job: BuildJob) -> dict[str, Any]:
        project = await self.require_project(job.project_id)
        phases = {
            BuildPhase.RESEARCH: self._research,
            BuildPhase.ARCHITECTURE: self._architecture,
            BuildPhase.CONTENT: self._content,
            BuildPhase.ELEMENTOR: self._elementor,
            BuildPhase.LINKING: self._linking,
        }

        logger.info("Build phase started", phase=job.phase.value)
        try:
            result = await phases[job.phase](project)
        except EntityGoneError:
            raise
        except Exception:
            await self.repository.update_project_status(project.id, ProjectStatus.ERROR)
            raise

        next_phase = NEXT_PHASE.get(job.phase)
        if next_phase is not None:
            await self.dispatcher.schedule_build(
                project.id, next_phase, delay_ms=PHASE_DELAYS_MS[job.phase]
            )
        logger.info(
            "Build phase completed",
            phase=job.phase.value,
            next_phase=next_phase.value if next_phase else None,
        )
        return {"phase": job.phase.value, **result}

    async def _research(self, project: Project) -> dict[str, Any]:
        output = await self.run_agent(
            "market_research",
            project.id,
            {
                "niche": project.settings.get("niche"),
                "target_audience": project.settings.get("target_audience"),
            },
        )
        await self.repository.save_project_artifact(
            project.id, MARKET_RESEARCH_ARTIFACT, output
        )
        await self.repository.update_project_status(
            project.id, ProjectStatus.CONFIGURING
        )
        return {"keywords": len(output.get("keyword_opportunities", []))}

    async def _architecture(self, project: Project) -> dict[str, Any]:
        research = await self.repository.get_project_artifact(
            project.id, MARKET_RESEARCH_ARTIFACT
        )
        if research is None:
            raise ValidationError(
                "Market research not found", {"project_id": project.id}
            )

        output = await self.run_agent(
            "site_architect",
            project.id,
            {
                "niche": project.settings.get("niche"),
                "target_audience": project.settings.get("target_audience"),
                "domain": project.domain,
                "market_research": research,
            },
        )

        pages = await self.repository.create_pages(project.id, pages_from_structure(output))
        await self.repository.save_project_artifact(
            project.id, SITE_ARCHITECTURE_ARTIFACT, output
        )
        await self.repository.update_project_status(project.id, ProjectStatus.BUILDING)
        return {"pages_created": len(pages)}

    async def _content(self, project: Project) -> dict[str, Any]:
        pages = await self.repository.list_pages(project.id)
        drafts = [page for page in pages if page.status == PageStatus.DRAFT]
        published_slugs = [
            f"/{page.slug}" for page in pages if page.status != PageStatus.DRAFT
        ]
        tasks = [
            {
                "agent_type": "content_builder",
                "page_id": page.id,
                "input": {
                    "page_title": page.title,
                    "page_slug": page.slug,
                    "niche": project.settings.get("niche"),
                    "existing_pages": published_slugs,
                },
            }
            for page in drafts
        ]
        job_ids = await self.dispatcher.schedule_agent_tasks(project.id, tasks)
        return {"tasks_scheduled": len(job_ids)}

    async def _elementor(self, project: Project) -> dict[str, Any]:
        pages = await self.repository.list_pages(project.id)
        tasks = [
            {
                "agent_type": "elementor_builder",
                "page_id": page.id,
                "input": {
                    "page_title": page.title,
                    "page_slug": page.slug,
                    "content_html": page.content,
                },
            }
            for page in pages
            if page.status in (PageStatus.DRAFT, PageStatus.READY)
        ]
        job_ids = await self.dispatcher.schedule_agent_tasks(project.id, tasks)
        return {"tasks_scheduled": len(job_ids)}

    async def _linking(self, project: Project) -> dict[str, Any]:
        pages = await self.repository.list_pages(project.id)
        output = await self.run_agent(
            "internal_linker",
            project.id,
            {
                "pages": [
                    {"id": page.id, "slug": page.slug, "title": page.title}
                    for page in pages
                ]
            },
        )
        await self.repository.save_project_artifact(
            project.id, INTERNAL_LINKS_ARTIFACT, output
        )

        ready = [page.id for page in pages if page.status == PageStatus.READY]
        job_ids = await self.dispatcher.schedule_publish_batch(project.id, ready)
        return {"publish_scheduled": len(job_ids)}


def pages_from_structure(output: dict[str, Any]) -> list[NewPage]:
    """Homepage first, then every page of every category."""
    structure = output.get("site_structure") or {}
    pages: list[NewPage] = []

    homepage = structure.get("homepage")
    if homepage:
        pages.append(
            NewPage(
                title=homepage.get("title", "Home"),
                slug="home",
                meta_description=homepage.get("meta_description"),
            )
        )

    for category in structure.get("categories", []):
        for page in category.get("pages", []):
            if not page.get("title") or not page.get("slug"):
                continue
            pages.append(
                NewPage(
                    title=page["title"],
                    slug=page["slug"],
                    meta_description=page.get("meta_description"),
                )
            )
    return pages

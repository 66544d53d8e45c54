"""
Project pipeline control endpoints.

Missing projects or pages raise ``EntityGoneError`` and a page that belongs
to another project raises ``ValidationError``; the job error handler turns
those into 404 and 422 responses.
"""

from typing import Any

from fastapi import APIRouter, Depends, status

from seo_engine.config.logging import get_logger
from seo_engine.v1.core.exceptions import create_success_response
from seo_engine.v1.engine import Engine, get_engine

logger = get_logger(__name__)
router = APIRouter(prefix="/projects", tags=["pipeline"])


@router.post(
    "/{project_id}/pipeline",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_pipeline(
    project_id: str, engine: Engine = Depends(get_engine)
) -> dict[str, Any]:
    """Start the build pipeline; research runs immediately."""
    job_id = await engine.require_orchestrator().start_pipeline(project_id)
    return create_success_response(
        data={"project_id": project_id, "job_id": job_id},
        message="Pipeline started",
    )


@router.post("/{project_id}/pause", response_model=dict)
async def pause_project(
    project_id: str, engine: Engine = Depends(get_engine)
) -> dict[str, Any]:
    await engine.require_orchestrator().pause_project(project_id)
    return create_success_response(
        data={"project_id": project_id, "status": "paused"}, message="Project paused"
    )


@router.post("/{project_id}/resume", response_model=dict)
async def resume_project(
    project_id: str, engine: Engine = Depends(get_engine)
) -> dict[str, Any]:
    project_status = await engine.require_orchestrator().resume_project(project_id)
    return create_success_response(
        data={"project_id": project_id, "status": project_status.value},
        message="Project resumed",
    )


@router.post(
    "/{project_id}/pages/{page_id}/optimize",
    response_model=dict,
    status_code=status.HTTP_202_ACCEPTED,
)
async def optimize_page(
    project_id: str, page_id: str, engine: Engine = Depends(get_engine)
) -> dict[str, Any]:
    """Queue a manual optimization pass for one page."""
    job_id = await engine.require_orchestrator().schedule_optimization(project_id, page_id)
    logger.info("Manual optimization requested", project_id=project_id, page_id=page_id)
    return create_success_response(
        data={"project_id": project_id, "page_id": page_id, "job_id": job_id},
        message="Optimization scheduled",
    )

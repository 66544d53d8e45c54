"""
Queue health, metrics and pause control endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends

from seo_engine.config.logging import get_logger
from seo_engine.v1.core.exceptions import NotFoundError, create_success_response
from seo_engine.v1.engine import Engine, get_engine
from seo_engine.v1.queues.schemas import QueueActionResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/queues", tags=["queues"])


@router.get("/health", response_model=dict)
async def queue_health(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """Per-queue counts, worker state and the overall healthy flag."""
    report = await engine.reporter.check_health()
    return create_success_response(data=report.model_dump(mode="json"))


@router.get("/metrics", response_model=dict)
async def queue_metrics(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    metrics = await engine.reporter.metrics()
    return create_success_response(data=metrics.model_dump())


@router.post("/{name}/pause", response_model=dict)
async def pause_queue(name: str, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    if not await engine.reporter.pause(name):
        raise NotFoundError(f"Queue not found: {name}", {"queue": name})

    logger.info("Queue paused via API", queue=name)
    return create_success_response(
        data=QueueActionResponse(queue=name, is_paused=True).model_dump(),
        message="Queue paused",
    )


@router.post("/{name}/resume", response_model=dict)
async def resume_queue(name: str, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    if not await engine.reporter.resume(name):
        raise NotFoundError(f"Queue not found: {name}", {"queue": name})

    logger.info("Queue resumed via API", queue=name)
    return create_success_response(
        data=QueueActionResponse(queue=name, is_paused=False).model_dump(),
        message="Queue resumed",
    )

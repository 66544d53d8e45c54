from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from seo_engine.v1.core.exceptions import create_success_response
from seo_engine.v1.engine import Engine, get_engine

router = APIRouter()


@router.get("/healthz", response_model=dict)
async def health_check(engine: Engine = Depends(get_engine)):
    """Liveness plus a summary of queue health."""
    settings = engine.settings
    report = await engine.reporter.check_health()

    health_data = {
        "ok": True,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
        "queue_backend": settings.queue_backend.value,
        "queues_healthy": report.healthy,
        "pipeline_enabled": engine.orchestrator is not None,
        "issues": report.issues,
    }

    return create_success_response(data=health_data)

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from seo_engine.config.logging import get_logger, setup_logging
from seo_engine.config.settings import settings as default_settings
from seo_engine.v1.core.exceptions import (
    RequestContextMiddleware,
    register_exception_handlers,
)
from seo_engine.v1.engine import Engine, build_engine
from seo_engine.v1.healthz import router as health_router
from seo_engine.v1.pipeline.routes import router as pipeline_router
from seo_engine.v1.queues.routes import router as queues_router
from seo_engine.v1.webhooks.routes import router as webhooks_router

logger = get_logger(__name__)


def create_app(engine: Engine | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    With no engine given, one is built from settings at startup, runs the
    embedded worker pool when enabled and is closed at shutdown. A supplied
    engine is used as-is and left to its owner.
    """
    settings = engine.settings if engine is not None else default_settings

    # Initialize structured logging
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is not None:
            yield
            return

        owned = build_engine(settings)
        app.state.engine = owned
        if settings.embedded_workers and owned.handlers is not None:
            await owned.worker_pool().start()
        try:
            yield
        finally:
            await owned.close()
            app.state.engine = None

    app = FastAPI(
        title=settings.app_name,
        description="Job orchestration and queue management for the SEO content pipeline",
        version=settings.version,
        debug=settings.debug,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(queues_router, prefix="/v1")
    app.include_router(pipeline_router, prefix="/v1")
    app.include_router(webhooks_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "seo_engine.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )


if __name__ == "__main__":
    run()

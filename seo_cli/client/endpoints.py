"""API Endpoint Wrappers"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient


class EngineClient:
    """High-level client with one method per engine endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        api_config = config.load_config().get("api", {})
        self.api = APIClient(
            base_url=base_url or api_config.get("base_url", "http://localhost:8000"),
            timeout=int(api_config.get("timeout", 30)),
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    def health_check(self) -> dict[str, Any]:
        return self.api.get("/healthz")

    # Queues
    def queue_health(self) -> dict[str, Any]:
        return self.api.get("/queues/health")

    def queue_metrics(self) -> dict[str, Any]:
        return self.api.get("/queues/metrics")

    def pause_queue(self, name: str) -> dict[str, Any]:
        return self.api.post(f"/queues/{name}/pause")

    def resume_queue(self, name: str) -> dict[str, Any]:
        return self.api.post(f"/queues/{name}/resume")

    # Projects
    def start_pipeline(self, project_id: str) -> dict[str, Any]:
        return self.api.post(f"/projects/{project_id}/pipeline")

    def pause_project(self, project_id: str) -> dict[str, Any]:
        return self.api.post(f"/projects/{project_id}/pause")

    def resume_project(self, project_id: str) -> dict[str, Any]:
        return self.api.post(f"/projects/{project_id}/resume")

    def optimize_page(self, project_id: str, page_id: str) -> dict[str, Any]:
        return self.api.post(f"/projects/{project_id}/pages/{page_id}/optimize")

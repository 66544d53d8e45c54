"""
Inbound webhook endpoints called by the CMS.
"""

from datetime import UTC, datetime
from typing import Any

import pydantic
from fastapi import APIRouter, Depends, Request

from seo_engine.config.logging import get_logger
from seo_engine.v1.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UnprocessableError,
    create_success_response,
)
from seo_engine.v1.engine import Engine, get_engine
from seo_engine.v1.pipeline.collaborators import PageStatus
from seo_engine.v1.webhooks.schemas import PagePublishAccepted, PagePublishNotification
from seo_engine.v1.webhooks.signing import SIGNATURE_HEADER

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/page-publish", response_model=dict)
async def page_publish(
    request: Request, engine: Engine = Depends(get_engine)
) -> dict[str, Any]:
    """
    Record a page the CMS published and queue it for indexing.

    Checks run in order: caller address, signature over the raw body, then
    the per-address rate limit.
    """
    webhooks = engine.webhooks
    client_ip = request.client.host if request.client else None

    if not webhooks.is_allowed_ip(client_ip):
        logger.warning("Webhook from disallowed address", client_ip=client_ip)
        raise ForbiddenError("Address not allowed")

    body = await request.body()
    if not webhooks.validate_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Webhook signature rejected", client_ip=client_ip)
        raise UnauthorizedError("Invalid webhook signature")

    if not webhooks.check_rate_limit(f"{client_ip}:{request.url.path}"):
        raise RateLimitedError()

    try:
        notification = PagePublishNotification.model_validate_json(body)
    except pydantic.ValidationError as e:
        raise UnprocessableError(
            "Invalid webhook payload",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    engine.require_orchestrator()
    repository = engine.services.repository
    page = await repository.get_page(notification.page_id)
    if page is None or page.project_id != notification.project_id:
        raise NotFoundError(
            f"Page not found: {notification.page_id}",
            {"project_id": notification.project_id, "page_id": notification.page_id},
        )

    fields: dict[str, Any] = {
        "status": PageStatus.PUBLISHED,
        "url": notification.url,
        "published_at": datetime.now(UTC),
    }
    if notification.remote_id:
        fields["remote_id"] = notification.remote_id
    await repository.update_page(page.id, fields)

    job_id = await engine.dispatcher.schedule_index(
        notification.project_id, notification.url, page_id=page.id
    )

    logger.info(
        "Page publish webhook processed",
        project_id=notification.project_id,
        page_id=page.id,
    )
    return create_success_response(
        data=PagePublishAccepted(page_id=page.id, index_job_id=job_id).model_dump()
    )

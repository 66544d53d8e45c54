"""
Webhook delivery and inbound payload schemas.
"""

from pydantic import BaseModel, Field


class DeliveryResult(BaseModel):
    """Outcome of one subscriber delivery."""

    webhook_id: str
    url: str
    delivered: bool
    status_code: int | None = None
    error: str | None = None


class PagePublishNotification(BaseModel):
    """Sent by the CMS after it published a page."""

    project_id: str = Field(..., min_length=1)
    page_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    remote_id: str | None = None


class PagePublishAccepted(BaseModel):
    page_id: str
    index_job_id: str

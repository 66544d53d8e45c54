"""
Outbound webhook fan-out and inbound webhook validation.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import Settings
from seo_engine.v1.core.rate_limit import FixedWindowRateLimiter
from seo_engine.v1.pipeline.collaborators import Repository, WebhookSubscription
from seo_engine.v1.queues.dispatcher import Dispatcher
from seo_engine.v1.queues.errors import TransientIOError
from seo_engine.v1.queues.jobs import WebhookJob, WebhookType
from seo_engine.v1.webhooks.schemas import DeliveryResult
from seo_engine.v1.webhooks.signing import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    canonical_json,
    sign,
    verify,
)

logger = get_logger(__name__)

_WEBHOOK_TYPES = {
    "page.published": WebhookType.WORDPRESS_PUBLISH,
    "gsc.updated": WebhookType.GSC_UPDATE,
}


class WebhookService:
    """
    Signs and delivers project events to subscribers, and guards the
    inbound webhook endpoints.

    ``trigger_event`` delivers directly and reports per-subscriber outcomes;
    ``queue_event`` turns each delivery into a durable ``WebhookJob`` that the
    webhooks queue retries.
    """

    def __init__(
        self,
        settings: Settings,
        repository: Repository | None = None,
        dispatcher: Dispatcher | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.dispatcher = dispatcher
        self._client = http_client or httpx.AsyncClient(timeout=settings.webhook_timeout_s)
        self._owns_client = http_client is None

        limiter_args: dict[str, Any] = {}
        if clock is not None:
            limiter_args["clock"] = clock
        self.rate_limiter = FixedWindowRateLimiter(
            settings.webhook_rate_limit, settings.webhook_rate_window_ms, **limiter_args
        )

    # Inbound

    def validate_signature(self, payload: Any, signature: str | None) -> bool:
        """
        Check an inbound signature against the shared secret.

        Raw bodies (str or bytes) are verified as received; anything else is
        serialized to compact JSON first. Without a configured secret every
        payload is accepted.
        """
        secret = self.settings.webhook_secret
        if not secret:
            return True
        if not signature:
            return False
        body = payload if isinstance(payload, str | bytes) else canonical_json(payload)
        return verify(secret, body, signature)

    def is_allowed_ip(self, ip: str | None) -> bool:
        allowed = self.settings.webhook_allowed_ips
        if not allowed:
            return True
        return ip in allowed

    def check_rate_limit(self, key: str) -> bool:
        return self.rate_limiter.check(key)

    # Outbound

    def build_body(self, event: str, project_id: str, fields: dict[str, Any]) -> str:
        payload = {
            "event": event,
            "projectId": project_id,
            **fields,
            "completedAt": datetime.now(UTC).isoformat(),
        }
        return canonical_json(payload)

    async def trigger_event(
        self, event: str, project_id: str, fields: dict[str, Any] | None = None
    ) -> list[DeliveryResult]:
        """Deliver ``event`` to every active subscriber; never raises on delivery."""
        subscriptions = await self._subscriptions(project_id, event)
        if not subscriptions:
            return []

        body = self.build_body(event, project_id, fields or {})
        slots = asyncio.Semaphore(self.settings.webhook_fanout_concurrency)

        async def deliver(subscription: WebhookSubscription) -> DeliveryResult:
            async with slots:
                return await self._deliver_once(subscription, event, body)

        results = await asyncio.gather(*(deliver(sub) for sub in subscriptions))

        logger.info(
            "Webhook event triggered",
            webhook_event=event,
            project_id=project_id,
            subscribers=len(results),
            delivered=sum(1 for result in results if result.delivered),
        )
        return list(results)

    async def queue_event(
        self, event: str, project_id: str, fields: dict[str, Any] | None = None
    ) -> list[str]:
        """Enqueue one signed ``WebhookJob`` per active subscriber."""
        if self.dispatcher is None:
            raise RuntimeError("queue_event requires a dispatcher")

        subscriptions = await self._subscriptions(project_id, event)
        if not subscriptions:
            return []

        body = self.build_body(event, project_id, fields or {})
        deliveries = [
            {
                "url": subscription.url,
                "body": body,
                "headers": self._headers(subscription, event, body),
                "webhook_type": _WEBHOOK_TYPES.get(event, WebhookType.EVENT),
            }
            for subscription in subscriptions
        ]
        return await self.dispatcher.schedule_webhooks(project_id, deliveries)

    async def deliver(self, job: WebhookJob) -> dict[str, Any]:
        """Send a queued delivery; non-2xx responses are retried by the queue."""
        try:
            response = await self._client.post(
                job.url, content=job.body.encode("utf-8"), headers=job.headers
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransientIOError(
                f"Webhook delivery to {job.url} failed: {e}", {"url": job.url}
            ) from e

        if not response.is_success:
            raise TransientIOError(
                f"Webhook delivery to {job.url} returned {response.status_code}",
                {"url": job.url, "status_code": response.status_code},
            )

        logger.info("Webhook delivered", url=job.url, status_code=response.status_code)
        return {"delivered": True, "status_code": response.status_code}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _subscriptions(
        self, project_id: str, event: str
    ) -> list[WebhookSubscription]:
        if self.repository is None:
            return []
        subscriptions = await self.repository.list_active_webhooks(project_id, event)
        return [sub for sub in subscriptions if sub.active and event in sub.events]

    @staticmethod
    def _headers(subscription: WebhookSubscription, event: str, body: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(subscription.secret, body),
            EVENT_HEADER: event,
        }

    async def _deliver_once(
        self, subscription: WebhookSubscription, event: str, body: str
    ) -> DeliveryResult:
        try:
            response = await self._client.post(
                subscription.url,
                content=body.encode("utf-8"),
                headers=self._headers(subscription, event, body),
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "Webhook delivery failed",
                webhook_id=subscription.id,
                url=subscription.url,
                error=str(e),
            )
            return DeliveryResult(
                webhook_id=subscription.id,
                url=subscription.url,
                delivered=False,
                error=str(e),
            )

        delivered = response.is_success
        if delivered and self.repository is not None:
            try:
                await self.repository.mark_webhook_triggered(
                    subscription.id, datetime.now(UTC)
                )
            except Exception:
                # One subscriber's bookkeeping must not fail the others
                logger.exception(
                    "Failed to record webhook trigger", webhook_id=subscription.id
                )

        log = logger.info if delivered else logger.warning
        log(
            "Webhook delivery attempted",
            webhook_id=subscription.id,
            url=subscription.url,
            status_code=response.status_code,
        )
        return DeliveryResult(
            webhook_id=subscription.id,
            url=subscription.url,
            delivered=delivered,
            status_code=response.status_code,
            error=None if delivered else f"HTTP {response.status_code}",
        )

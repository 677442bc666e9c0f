"""Webhook notifier with circuit breaker protection."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from quotagate.config import settings
from quotagate.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
)
from quotagate.models import EventType, PendingEvent
from quotagate.observability.metrics import metrics
from quotagate.utils.time import utc_now

logger = logging.getLogger(__name__)


class Notifier:
    """
    Fire-and-forget event delivery to the notification collaborator.

    Events are POSTed in background tasks once the caller's transaction has
    committed. Delivery failures are logged and counted; they are never
    retried and never reach the caller.

    Usage:
        notifier = get_notifier()
        notifier.publish(EventType.ASSIGNMENT_COMPLETED, {"assignment_id": 7})
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.auth_token = auth_token if auth_token is not None else settings.notification_auth_token
        self.timeout_ms = timeout_ms or settings.notification_timeout_ms
        self._transport = transport
        self._pending: set[asyncio.Task] = set()
        self._circuit_breaker = circuit_breaker or self._build_circuit_breaker()

    @staticmethod
    def _build_circuit_breaker() -> Optional[CircuitBreaker]:
        if not settings.notification_circuit_breaker_enabled:
            logger.info("Notification circuit breaker disabled")
            return None

        config = CircuitBreakerConfig(
            failure_threshold=settings.notification_circuit_breaker_failure_threshold,
            timeout_seconds=settings.notification_circuit_breaker_timeout_seconds,
            half_open_max_calls=settings.notification_circuit_breaker_half_open_max_calls,
            success_threshold=settings.notification_circuit_breaker_success_threshold,
        )
        return CircuitBreaker("notifications", config)

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def publish(self, event_type: EventType, payload: dict[str, Any]) -> Optional[asyncio.Task]:
        """Schedule delivery of one event. Returns the background task, if any."""
        if not self.enabled:
            return None

        body = {
            "event": event_type.value,
            "payload": payload,
            "emitted_at": utc_now().isoformat(),
        }
        task = asyncio.create_task(self._deliver(body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def publish_all(self, events: list[PendingEvent]) -> None:
        for event in events:
            self.publish(event.event_type, event.payload)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, body: dict[str, Any]) -> None:
        try:
            if self._circuit_breaker:
                await self._circuit_breaker.call(self._post, body)
            else:
                await self._post(body)
            metrics.inc_counter("notifications.sent")
        except CircuitBreakerOpen as e:
            metrics.inc_counter("notifications.dropped")
            logger.warning(f"Dropping {body['event']} event: {e}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            metrics.inc_counter("notifications.failed")
            logger.warning(f"Failed to deliver {body['event']} event: {e}")

    async def _post(self, body: dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        timeout = self.timeout_ms / 1000
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(self.webhook_url, json=body, headers=headers)
            response.raise_for_status()

    def get_circuit_stats(self) -> Optional[dict[str, Any]]:
        if not self._circuit_breaker:
            return None

        stats = self._circuit_breaker.stats
        return {
            "state": stats.state.value,
            "consecutive_failures": stats.consecutive_failures,
            "total_calls": stats.total_calls,
            "total_failures": stats.total_failures,
            "total_rejected": stats.total_rejected,
            "opened_at": stats.opened_at.isoformat() if stats.opened_at else None,
        }


# Singleton instance
_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get or create the Notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier

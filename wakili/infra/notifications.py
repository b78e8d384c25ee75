import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    recipients: list[str]
    occurred_at: datetime
    booking_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...


class LoggingNotificationSink:
    async def send(self, event: NotificationEvent) -> None:
        logger.info(
            "notification",
            extra={
                "extra": {
                    "kind": event.kind,
                    "booking_id": event.booking_id,
                    "recipients": event.recipients,
                }
            },
        )


class WebhookNotificationSink:
    """Posts events to a delivery service that owns SMS and email transport."""

    def __init__(self, url: str, timeout_seconds: int = 5, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def send(self, event: NotificationEvent) -> None:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds) as client:
            response = await client.post(self.url, json=event.to_json())
        if response.status_code >= 400:
            raise RuntimeError(f"notification_webhook_status_{response.status_code}")


def resolve_notification_sink(app_settings) -> NotificationSink:
    if app_settings.notification_mode == "webhook":
        if not app_settings.notification_webhook_url:
            logger.warning("notification_webhook_unconfigured; using log sink")
            return LoggingNotificationSink()
        return WebhookNotificationSink(
            app_settings.notification_webhook_url,
            timeout_seconds=app_settings.notification_webhook_timeout_seconds,
        )
    return LoggingNotificationSink()

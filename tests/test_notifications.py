import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from tests.conftest import RecordingSink
from wakili.domain.notifications import service as notification_service
from wakili.infra.notifications import (
    LoggingNotificationSink,
    NotificationEvent,
    WebhookNotificationSink,
    resolve_notification_sink,
)
from wakili.settings import Settings

OCCURRED_AT = datetime(2030, 1, 7, 7, 0, tzinfo=timezone.utc)


def test_webhook_sink_posts_event_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    sink = WebhookNotificationSink("https://notify.example/events", transport=httpx.MockTransport(handler))
    event = NotificationEvent(
        kind="booking_created",
        recipients=["client-1", "prov-1"],
        occurred_at=OCCURRED_AT,
        booking_id="b-1",
        payload={"status": "PENDING_PAYMENT"},
    )

    asyncio.run(sink.send(event))

    assert received == [
        {
            "kind": "booking_created",
            "recipients": ["client-1", "prov-1"],
            "occurred_at": "2030-01-07T07:00:00+00:00",
            "booking_id": "b-1",
            "payload": {"status": "PENDING_PAYMENT"},
        }
    ]


def test_webhook_sink_raises_on_error_status():
    sink = WebhookNotificationSink(
        "https://notify.example/events",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    event = NotificationEvent(kind="booking_reminder", recipients=["client-1"], occurred_at=OCCURRED_AT)

    with pytest.raises(RuntimeError):
        asyncio.run(sink.send(event))


def test_emit_notification_swallows_delivery_failure():
    sink = RecordingSink(fail=True)

    delivered = asyncio.run(
        notification_service.emit_notification(sink, "booking_created", recipients=["client-1"])
    )

    assert delivered is False


def test_emit_notification_without_sink_is_noop():
    assert asyncio.run(notification_service.emit_notification(None, "booking_created", recipients=[])) is False


def test_emit_notification_delivers_payload():
    sink = RecordingSink()

    delivered = asyncio.run(
        notification_service.emit_notification(
            sink,
            notification_service.PAYMENT_REFUNDED,
            recipients=["client-1"],
            booking_id="b-1",
            occurred_at=OCCURRED_AT,
            amount_cents=100_000,
        )
    )

    assert delivered is True
    assert sink.events[0].payload == {"amount_cents": 100_000}
    assert sink.events[0].occurred_at == OCCURRED_AT


def test_resolve_sink_falls_back_to_log_without_url():
    settings = Settings(notification_mode="webhook", notification_webhook_url=None, _env_file=None)

    assert isinstance(resolve_notification_sink(settings), LoggingNotificationSink)


def test_resolve_sink_uses_webhook_when_configured():
    settings = Settings(
        notification_mode="webhook",
        notification_webhook_url="https://notify.example/events",
        _env_file=None,
    )

    sink = resolve_notification_sink(settings)

    assert isinstance(sink, WebhookNotificationSink)
    assert sink.url == "https://notify.example/events"

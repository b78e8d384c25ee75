import logging
from datetime import datetime
from typing import Any

from wakili.infra.clock import utc_now
from wakili.infra.metrics import metrics
from wakili.infra.notifications import NotificationEvent, NotificationSink

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
PAYMENT_CONFIRMED = "payment_confirmed"
SESSION_STARTED = "session_started"
COMPLETION_CONFIRMED = "completion_confirmed"
BOOKING_COMPLETED = "booking_completed"
BOOKING_CANCELLED = "booking_cancelled"
BOOKING_RESCHEDULED = "booking_rescheduled"
PAYOUT_RELEASED = "payout_released"
PAYMENT_REFUNDED = "payment_refunded"
BOOKING_REMINDER = "booking_reminder"
PHONE_VERIFICATION_CODE = "phone_verification_code"


async def emit_notification(
    sink: NotificationSink | None,
    kind: str,
    *,
    recipients: list[str],
    booking_id: str | None = None,
    occurred_at: datetime | None = None,
    **payload: Any,
) -> bool:
    """Deliver a lifecycle event; delivery failures never propagate."""
    if sink is None:
        return False
    event = NotificationEvent(
        kind=kind,
        recipients=recipients,
        occurred_at=occurred_at or utc_now(),
        booking_id=booking_id,
        payload=payload,
    )
    try:
        await sink.send(event)
    except Exception as exc:  # noqa: BLE001
        metrics.record_notification(kind, "failed")
        logger.warning(
            "notification_failed",
            extra={"extra": {"kind": kind, "booking_id": booking_id, "reason": type(exc).__name__}},
        )
        return False
    metrics.record_notification(kind, "sent")
    return True


async def notify_booking_parties(sink: NotificationSink | None, kind: str, booking, **payload: Any) -> bool:
    return await emit_notification(
        sink,
        kind,
        recipients=[booking.client_id, booking.provider_id],
        booking_id=booking.booking_id,
        status=booking.status,
        **payload,
    )

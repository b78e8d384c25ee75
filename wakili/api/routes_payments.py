from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.dependencies import get_clock, get_db_session, get_notification_sink
from wakili.domain.bookings import schemas as booking_schemas
from wakili.domain.bookings import service as booking_service
from wakili.domain.errors import DomainError
from wakili.infra.clock import Clock
from wakili.infra.metrics import metrics
from wakili.infra.notifications import NotificationSink

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_callback_token(request: Request, token: str | None) -> None:
    app_settings = getattr(request.app.state, "app_settings", None)
    expected = getattr(app_settings, "mpesa_callback_token", None) if app_settings else None
    if not expected:
        return
    if not token or not secrets.compare_digest(token, expected):
        metrics.record_webhook("unauthorized")
        logger.warning("payment_callback_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token")


@router.post("/v1/payments/mpesa/callback", response_model=booking_schemas.PaymentCallbackResponse)
async def mpesa_callback(
    payload: booking_schemas.PaymentCallbackRequest,
    request: Request,
    x_callback_token: str | None = Header(None, alias="X-Callback-Token"),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.PaymentCallbackResponse:
    _check_callback_token(request, x_callback_token)
    try:
        confirmation = await booking_service.confirm_payment(
            session,
            payload.booking_id,
            payload.payment_reference,
            payload.amount_cents,
            payload.receipt_number,
            now=clock(),
            sink=sink,
        )
    except DomainError as exc:
        metrics.record_webhook("rejected")
        logger.info(
            "payment_callback_rejected",
            extra={
                "extra": {
                    "booking_id": payload.booking_id,
                    "payment_reference": payload.payment_reference,
                    "reason": type(exc).__name__,
                }
            },
        )
        raise

    metrics.record_webhook("duplicate" if confirmation.duplicate else "processed")
    return booking_schemas.PaymentCallbackResponse(
        booking_id=confirmation.booking.booking_id,
        status=confirmation.booking.status,
        duplicate=confirmation.duplicate,
        hold_id=confirmation.hold.hold_id if confirmation.hold else None,
    )

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.api.actor_auth import ActorIdentity, require_client, require_party, require_provider
from wakili.dependencies import get_clock, get_db_session, get_notification_sink
from wakili.domain.bookings import schemas as booking_schemas
from wakili.domain.bookings import service as booking_service
from wakili.domain.bookings.db_models import ConsultationBooking
from wakili.infra.clock import Clock
from wakili.infra.notifications import NotificationSink

router = APIRouter()


def booking_response(booking: ConsultationBooking) -> booking_schemas.BookingResponse:
    return booking_schemas.BookingResponse(
        booking_id=booking.booking_id,
        client_id=booking.client_id,
        provider_id=booking.provider_id,
        consultation_type=booking.consultation_type,
        status=booking.status,
        scheduled_start=booking.scheduled_start,
        scheduled_end=booking.scheduled_end,
        duration_minutes=booking.duration_minutes,
        original_amount_cents=booking.original_amount_cents,
        client_payment_cents=booking.client_payment_cents,
        first_consult_discount=booking.first_consult_discount,
        platform_commission_bps=booking.platform_commission_bps,
        platform_commission_rate=booking.platform_commission_rate,
        platform_commission_cents=booking.platform_commission_cents,
        provider_payout_cents=booking.provider_payout_cents,
        client_payment_status=booking.client_payment_status,
        payout_status=booking.payout_status,
        payment_reference=booking.payment_reference,
        client_confirmed=booking.client_confirmed,
        provider_confirmed=booking.provider_confirmed,
        confirmed_by_system=booking.confirmed_by_system,
        cancelled_by=booking.cancelled_by,
        cancellation_reason=booking.cancellation_reason,
        actual_start=booking.actual_start,
        actual_end=booking.actual_end,
    )


@router.post(
    "/v1/consultations",
    response_model=booking_schemas.BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_consultation(
    payload: booking_schemas.BookingCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_client),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.create_booking(
        session,
        client_id=identity.actor_id,
        provider_id=payload.provider_id,
        scheduled_start=payload.scheduled_start,
        scheduled_end=payload.scheduled_end,
        consultation_type=payload.consultation_type,
        now=clock(),
        sink=sink,
    )
    return booking_response(booking)


@router.get("/v1/consultations", response_model=list[booking_schemas.BookingResponse])
async def list_consultations(
    query: booking_schemas.BookingListQuery = Depends(),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_party),
    clock: Clock = Depends(get_clock),
) -> list[booking_schemas.BookingResponse]:
    bookings = await booking_service.list_bookings(
        session,
        identity.actor_id,
        identity.party_role,
        status=query.status,
        upcoming=query.upcoming,
        now=clock(),
    )
    return [booking_response(booking) for booking in bookings]


@router.get("/v1/consultations/{booking_id}", response_model=booking_schemas.BookingResponse)
async def get_consultation(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_party),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.get_booking(session, booking_id, identity.actor_id)
    return booking_response(booking)


@router.post("/v1/consultations/{booking_id}/start", response_model=booking_schemas.BookingResponse)
async def start_consultation(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_provider),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.start_session(
        session, booking_id, identity.actor_id, now=clock(), sink=sink
    )
    return booking_response(booking)


@router.post("/v1/consultations/{booking_id}/confirm", response_model=booking_schemas.CompletionResponse)
async def confirm_consultation(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_party),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.CompletionResponse:
    result = await booking_service.confirm_completion(
        session,
        booking_id,
        identity.actor_id,
        identity.party_role,
        now=clock(),
        sink=sink,
    )
    booking = await booking_service.get_booking(session, booking_id)
    return booking_schemas.CompletionResponse(
        booking_id=booking_id,
        confirmed_by=identity.party_role,
        both_confirmed=result.both_confirmed,
        payout_released=result.payout_released,
        status=booking.status,
    )


@router.post("/v1/consultations/{booking_id}/cancel", response_model=booking_schemas.BookingResponse)
async def cancel_consultation(
    booking_id: str,
    payload: booking_schemas.BookingCancelRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_party),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.BookingResponse:
    reason = payload.reason if payload else None
    booking = await booking_service.cancel_booking(
        session, booking_id, identity.actor_id, reason, now=clock(), sink=sink
    )
    return booking_response(booking)


@router.post("/v1/consultations/{booking_id}/reschedule", response_model=booking_schemas.BookingResponse)
async def reschedule_consultation(
    booking_id: str,
    payload: booking_schemas.BookingRescheduleRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_client),
    clock: Clock = Depends(get_clock),
    sink: NotificationSink = Depends(get_notification_sink),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.reschedule_booking(
        session,
        booking_id,
        identity.actor_id,
        payload.scheduled_start,
        payload.scheduled_end,
        now=clock(),
        sink=sink,
    )
    return booking_response(booking)


import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.domain.availability import service as availability_service
from wakili.domain.bookings.db_models import ConsultationBooking
from wakili.domain.bookings.statuses import (
    CONFIRMABLE_STATUSES,
    PAID_STATUSES,
    BookingStatus,
    ClientPaymentStatus,
    ConsultationType,
    PartyRole,
    PayoutStatus,
    assert_valid_transition,
)
from wakili.domain.errors import (
    CancellationWindowError,
    ConflictError,
    DomainError,
    NotFoundError,
    ProviderUnavailableError,
    RateNotConfiguredError,
    SlotTakenError,
    UnauthorizedError,
    ValidationError,
)
from wakili.domain.escrow import service as escrow_service
from wakili.domain.escrow.db_models import EscrowHold
from wakili.domain.notifications import service as notifications
from wakili.domain.providers import service as provider_service
from wakili.infra.clock import normalize_datetime, utc_now
from wakili.infra.metrics import metrics
from wakili.infra.notifications import NotificationSink
from wakili.settings import settings

logger = logging.getLogger(__name__)

BOOKINGS = ConsultationBooking.__table__
CENT = Decimal("1")
RELEASE_REASON_CONFIRMED = "Session completed - both parties confirmed"


@dataclass(frozen=True)
class Pricing:
    original_amount_cents: int
    client_payment_cents: int
    commission_bps: int
    platform_commission_cents: int
    provider_payout_cents: int
    first_consult_discount: bool


@dataclass
class PaymentConfirmation:
    booking: ConsultationBooking
    hold: EscrowHold | None
    duplicate: bool = False


@dataclass(frozen=True)
class CompletionResult:
    both_confirmed: bool
    payout_released: bool


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP))


def compute_pricing(
    hourly_rate_cents: int,
    duration_minutes: int,
    commission_bps: int,
    first_consult_discount: bool = False,
    discount_rate: float | None = None,
) -> Pricing:
    """Price a consultation; commission plus payout always equals the amount."""
    original = _round_cents(Decimal(hourly_rate_cents) * Decimal(duration_minutes) / Decimal(60))
    amount = original
    if first_consult_discount:
        rate = Decimal(str(settings.first_consult_discount_rate if discount_rate is None else discount_rate))
        amount = _round_cents(Decimal(original) * (Decimal(1) - rate))
    commission = _round_cents(Decimal(amount) * Decimal(commission_bps) / Decimal(10_000))
    return Pricing(
        original_amount_cents=original,
        client_payment_cents=amount,
        commission_bps=commission_bps,
        platform_commission_cents=commission,
        provider_payout_cents=amount - commission,
        first_consult_discount=first_consult_discount,
    )


def party_role(booking: ConsultationBooking, actor_id: str) -> PartyRole | None:
    if booking.client_id == actor_id:
        return PartyRole.CLIENT
    if booking.provider_id == actor_id:
        return PartyRole.PROVIDER
    return None


def _validate_interval(start: datetime, end: datetime, now: datetime) -> int:
    if start >= end:
        raise ValidationError("scheduled_start must be before scheduled_end")
    delta = end - start
    if delta.total_seconds() % 60:
        raise ValidationError("Consultation duration must be a whole number of minutes")
    duration_minutes = int(delta.total_seconds() // 60)
    availability_service.validate_slot_duration(duration_minutes)
    if start <= now:
        raise ValidationError("Cannot book a slot in the past")
    return duration_minutes


async def _get_booking(session: AsyncSession, booking_id: str) -> ConsultationBooking:
    booking = await session.get(ConsultationBooking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


async def _discard_changes(session: AsyncSession, booking: ConsultationBooking | None = None) -> None:
    """Roll back uncommitted writes and reload the booking the caller still holds."""
    await session.rollback()
    if booking is not None:
        await session.refresh(booking)


async def get_booking(session: AsyncSession, booking_id: str, actor_id: str | None = None) -> ConsultationBooking:
    booking = await _get_booking(session, booking_id)
    if actor_id is not None and party_role(booking, actor_id) is None:
        raise UnauthorizedError("Unauthorized access to booking")
    return booking


async def list_bookings(
    session: AsyncSession,
    actor_id: str,
    role: PartyRole | str,
    *,
    status: BookingStatus | str | None = None,
    upcoming: bool = False,
    now: datetime | None = None,
) -> list[ConsultationBooking]:
    party = PartyRole(role)
    if party == PartyRole.CLIENT:
        stmt = select(ConsultationBooking).where(ConsultationBooking.client_id == actor_id)
    elif party == PartyRole.PROVIDER:
        stmt = select(ConsultationBooking).where(ConsultationBooking.provider_id == actor_id)
    else:
        raise ValidationError("Bookings can only be listed for a client or a provider")
    if status is not None:
        stmt = stmt.where(ConsultationBooking.status == BookingStatus(status).value)
    if upcoming:
        stmt = stmt.where(ConsultationBooking.scheduled_start >= normalize_datetime(now or utc_now()))
    result = await session.execute(stmt.order_by(ConsultationBooking.scheduled_start.desc()))
    return list(result.scalars().all())


async def upcoming_bookings_for_reminders(
    session: AsyncSession,
    hours_ahead: int = 24,
    *,
    now: datetime | None = None,
) -> list[ConsultationBooking]:
    current = normalize_datetime(now or utc_now())
    result = await session.execute(
        select(ConsultationBooking)
        .where(
            ConsultationBooking.status == BookingStatus.PAYMENT_CONFIRMED.value,
            ConsultationBooking.scheduled_start >= current,
            ConsultationBooking.scheduled_start <= current + timedelta(hours=hours_ahead),
        )
        .order_by(ConsultationBooking.scheduled_start)
    )
    return list(result.scalars().all())


async def create_booking(
    session: AsyncSession,
    *,
    client_id: str,
    provider_id: str,
    scheduled_start: datetime,
    scheduled_end: datetime,
    consultation_type: ConsultationType | str = ConsultationType.VIDEO,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> ConsultationBooking:
    current = normalize_datetime(now or utc_now())
    start = normalize_datetime(scheduled_start)
    end = normalize_datetime(scheduled_end)
    duration_minutes = _validate_interval(start, end, current)

    provider = await provider_service.get_provider(session, provider_id, lock=True)
    if not provider.is_verified:
        raise ProviderUnavailableError("Provider profile is not verified")
    if not provider.hourly_rate_cents:
        raise RateNotConfiguredError("Provider has not set an hourly rate")
    client = await provider_service.get_client(session, client_id)

    if not await availability_service.is_interval_available(session, provider_id, start, end, now=current):
        metrics.record_booking("slot_taken")
        raise SlotTakenError("Selected time slot is not available")

    discount = False
    if provider.allows_first_consult_discount and not client.has_used_first_consult_discount:
        discount = await provider_service.consume_first_consult_discount(session, client_id)

    pricing = compute_pricing(
        provider.hourly_rate_cents,
        duration_minutes,
        settings.platform_commission_bps,
        first_consult_discount=discount,
    )
    booking = ConsultationBooking(
        client_id=client_id,
        provider_id=provider_id,
        consultation_type=ConsultationType(consultation_type).value,
        scheduled_start=start,
        scheduled_end=end,
        duration_minutes=duration_minutes,
        original_amount_cents=pricing.original_amount_cents,
        client_payment_cents=pricing.client_payment_cents,
        first_consult_discount=pricing.first_consult_discount,
        platform_commission_bps=pricing.commission_bps,
        platform_commission_cents=pricing.platform_commission_cents,
        provider_payout_cents=pricing.provider_payout_cents,
        status=BookingStatus.PENDING_PAYMENT.value,
        client_payment_status=ClientPaymentStatus.PENDING.value,
        payout_status=PayoutStatus.PENDING.value,
    )
    session.add(booking)
    try:
        await session.flush()
    except IntegrityError as exc:
        await _discard_changes(session)
        metrics.record_booking("slot_taken")
        raise SlotTakenError("Selected time slot is not available") from exc
    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("created")
    logger.info(
        "booking_created",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "provider_id": provider_id,
                "client_payment_cents": booking.client_payment_cents,
                "first_consult_discount": discount,
            }
        },
    )
    await notifications.notify_booking_parties(
        sink, notifications.BOOKING_CREATED, booking, occurred_at=current
    )
    return booking


async def _duplicate_payment(session: AsyncSession, booking: ConsultationBooking) -> PaymentConfirmation:
    logger.info(
        "payment_callback_duplicate",
        extra={"extra": {"booking_id": booking.booking_id, "status": booking.status}},
    )
    return PaymentConfirmation(
        booking=booking,
        hold=await escrow_service.get_hold(session, booking.booking_id),
        duplicate=True,
    )


async def confirm_payment(
    session: AsyncSession,
    booking_id: str,
    payment_reference: str,
    amount_cents: int,
    receipt_number: str | None = None,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> PaymentConfirmation:
    """Apply a gateway callback; repeated callbacks for a paid booking are no-ops."""
    current = normalize_datetime(now or utc_now())
    booking = await _get_booking(session, booking_id)
    if booking.status == BookingStatus.CANCELLED.value:
        logger.warning(
            "payment_for_cancelled_booking",
            extra={"extra": {"booking_id": booking_id, "payment_reference": payment_reference}},
        )
        raise ConflictError("Cannot confirm payment for a cancelled booking")
    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        return await _duplicate_payment(session, booking)
    if amount_cents != booking.client_payment_cents:
        raise ValidationError(
            f"Payment amount {amount_cents} does not match booking amount {booking.client_payment_cents}"
        )

    result = await session.execute(
        BOOKINGS.update()
        .where(
            BOOKINGS.c.booking_id == booking_id,
            BOOKINGS.c.status == BookingStatus.PENDING_PAYMENT.value,
        )
        .values(
            status=BookingStatus.PAYMENT_CONFIRMED.value,
            client_payment_status=ClientPaymentStatus.COMPLETED.value,
            payment_reference=payment_reference,
            receipt_number=receipt_number,
            client_paid_at=current,
        )
    )
    if result.rowcount != 1:
        await session.refresh(booking)
        return await _duplicate_payment(session, booking)

    await session.refresh(booking)
    try:
        hold = await escrow_service.hold_payment(session, booking, commit=False)
    except DomainError:
        await _discard_changes(session, booking)
        raise
    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("payment_confirmed")
    logger.info(
        "booking_payment_confirmed",
        extra={"extra": {"booking_id": booking_id, "payment_reference": payment_reference}},
    )
    await notifications.notify_booking_parties(
        sink, notifications.PAYMENT_CONFIRMED, booking, occurred_at=current
    )
    return PaymentConfirmation(booking=booking, hold=hold)


async def start_session(
    session: AsyncSession,
    booking_id: str,
    actor_id: str,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> ConsultationBooking:
    current = normalize_datetime(now or utc_now())
    booking = await _get_booking(session, booking_id)
    if booking.provider_id != actor_id:
        raise UnauthorizedError("Only the provider can start the session")
    assert_valid_transition(booking.status, BookingStatus.IN_PROGRESS)
    if current < normalize_datetime(booking.scheduled_start):
        raise ConflictError("Cannot start a session before its scheduled start")

    result = await session.execute(
        BOOKINGS.update()
        .where(
            BOOKINGS.c.booking_id == booking_id,
            BOOKINGS.c.status == BookingStatus.PAYMENT_CONFIRMED.value,
        )
        .values(status=BookingStatus.IN_PROGRESS.value, actual_start=current)
    )
    if result.rowcount != 1:
        raise ConflictError("Booking status changed; session not started")
    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("started")
    await notifications.notify_booking_parties(
        sink, notifications.SESSION_STARTED, booking, occurred_at=current
    )
    return booking


async def confirm_completion(
    session: AsyncSession,
    booking_id: str,
    actor_id: str,
    role: PartyRole | str,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> CompletionResult:
    """Record one party's completion confirmation.

    The second confirmation completes the booking and releases escrow in the
    same transaction. Re-confirming the same role is rejected.
    """
    current = normalize_datetime(now or utc_now())
    party = PartyRole(role)
    booking = await _get_booking(session, booking_id)

    if party == PartyRole.CLIENT:
        if booking.client_id != actor_id:
            raise UnauthorizedError("Only the client can confirm as client")
        flag, stamped_at = BOOKINGS.c.client_confirmed, "client_confirmed_at"
    elif party == PartyRole.PROVIDER:
        if booking.provider_id != actor_id:
            raise UnauthorizedError("Only the provider can confirm as provider")
        flag, stamped_at = BOOKINGS.c.provider_confirmed, "provider_confirmed_at"
    else:
        raise ValidationError("Completion can only be confirmed by the client or the provider")

    if BookingStatus(booking.status) not in CONFIRMABLE_STATUSES:
        raise ConflictError(f"Cannot confirm booking with status: {booking.status}")
    if current < normalize_datetime(booking.scheduled_end):
        raise ConflictError("Cannot confirm completion before session end time")

    # RETURNING yields the post-update row, so whichever party confirms
    # second sees both flags even when the two requests race.
    result = await session.execute(
        BOOKINGS.update()
        .where(
            BOOKINGS.c.booking_id == booking_id,
            flag.is_(False),
            BOOKINGS.c.status.in_([status.value for status in CONFIRMABLE_STATUSES]),
        )
        .values({flag.name: True, stamped_at: current})
        .returning(BOOKINGS.c.client_confirmed, BOOKINGS.c.provider_confirmed)
    )
    row = result.one_or_none()
    if row is None:
        raise ConflictError(f"{party.value.title()} has already confirmed this session")
    both_confirmed = bool(row.client_confirmed and row.provider_confirmed)

    payout_released = False
    if both_confirmed:
        completed = await session.execute(
            BOOKINGS.update()
            .where(
                BOOKINGS.c.booking_id == booking_id,
                BOOKINGS.c.status.in_([status.value for status in CONFIRMABLE_STATUSES]),
            )
            .values(status=BookingStatus.COMPLETED.value, actual_end=current)
        )
        await session.refresh(booking)
        if (
            completed.rowcount == 1
            and booking.payout_status == PayoutStatus.PENDING.value
            and booking.client_payment_status == ClientPaymentStatus.COMPLETED.value
        ):
            try:
                await escrow_service.release_payment(
                    session, booking_id, RELEASE_REASON_CONFIRMED, now=current, commit=False
                )
            except DomainError:
                await _discard_changes(session, booking)
                raise
            payout_released = True

    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("completion_confirmed")
    logger.info(
        "booking_completion_confirmed",
        extra={
            "extra": {
                "booking_id": booking_id,
                "confirmed_by": party.value,
                "both_confirmed": both_confirmed,
                "payout_released": payout_released,
            }
        },
    )
    await notifications.notify_booking_parties(
        sink,
        notifications.BOOKING_COMPLETED if both_confirmed else notifications.COMPLETION_CONFIRMED,
        booking,
        occurred_at=current,
        confirmed_by=party.value,
    )
    if payout_released:
        metrics.record_booking("completed")
        await notifications.emit_notification(
            sink,
            notifications.PAYOUT_RELEASED,
            recipients=[booking.provider_id],
            booking_id=booking_id,
            occurred_at=current,
            payout_cents=booking.provider_payout_cents,
        )
    return CompletionResult(both_confirmed=both_confirmed, payout_released=payout_released)


async def cancel_booking(
    session: AsyncSession,
    booking_id: str,
    actor_id: str,
    reason: str | None = None,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> ConsultationBooking:
    current = normalize_datetime(now or utc_now())
    booking = await _get_booking(session, booking_id)
    party = party_role(booking, actor_id)
    if party is None:
        raise UnauthorizedError("Unauthorized to cancel this booking")

    status = BookingStatus(booking.status)
    if status == BookingStatus.COMPLETED:
        raise ConflictError("Cannot cancel completed booking")
    if status == BookingStatus.CANCELLED:
        raise ConflictError("Booking is already cancelled")
    assert_valid_transition(status, BookingStatus.CANCELLED)

    paid = status in PAID_STATUSES
    window = timedelta(hours=settings.cancellation_window_hours)
    if paid and normalize_datetime(booking.scheduled_start) - current < window:
        raise CancellationWindowError(
            f"Cannot cancel within {settings.cancellation_window_hours} hours of scheduled session"
        )

    cancellation_reason = reason or "Booking cancelled by user"
    result = await session.execute(
        BOOKINGS.update()
        .where(
            BOOKINGS.c.booking_id == booking_id,
            BOOKINGS.c.status == status.value,
        )
        .values(
            status=BookingStatus.CANCELLED.value,
            cancelled_by=party.value,
            cancellation_reason=cancellation_reason,
            cancelled_at=current,
        )
    )
    if result.rowcount != 1:
        raise ConflictError("Booking status changed; cancellation not applied")

    if paid:
        try:
            await escrow_service.refund_payment(
                session, booking_id, cancellation_reason, party, now=current, commit=False
            )
        except DomainError:
            await _discard_changes(session, booking)
            raise
    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("cancelled")
    logger.info(
        "booking_cancelled",
        extra={"extra": {"booking_id": booking_id, "cancelled_by": party.value, "refunded": paid}},
    )
    await notifications.notify_booking_parties(
        sink,
        notifications.BOOKING_CANCELLED,
        booking,
        occurred_at=current,
        cancelled_by=party.value,
    )
    if paid:
        await notifications.emit_notification(
            sink,
            notifications.PAYMENT_REFUNDED,
            recipients=[booking.client_id],
            booking_id=booking_id,
            occurred_at=current,
            amount_cents=booking.client_payment_cents,
        )
    return booking


async def reschedule_booking(
    session: AsyncSession,
    booking_id: str,
    actor_id: str,
    new_start: datetime,
    new_end: datetime,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> ConsultationBooking:
    """Move a paid booking to a new open slot; the fee stays as booked."""
    current = normalize_datetime(now or utc_now())
    booking = await _get_booking(session, booking_id)
    if booking.client_id != actor_id:
        raise UnauthorizedError("Only the client can reschedule a booking")
    if booking.status != BookingStatus.PAYMENT_CONFIRMED.value:
        raise ConflictError("Only confirmed bookings can be rescheduled")

    start = normalize_datetime(new_start)
    end = normalize_datetime(new_end)
    duration_minutes = _validate_interval(start, end, current)

    await provider_service.get_provider(session, booking.provider_id, lock=True)
    available = await availability_service.is_interval_available(
        session,
        booking.provider_id,
        start,
        end,
        now=current,
        exclude_booking_id=booking.booking_id,
    )
    if not available:
        raise SlotTakenError("New time slot is not available")

    previous_start = normalize_datetime(booking.scheduled_start)
    booking.scheduled_start = start
    booking.scheduled_end = end
    if duration_minutes != booking.duration_minutes:
        # TODO: decide with finance whether a longer reschedule should be re-priced.
        logger.warning(
            "booking_rescheduled_fee_unchanged",
            extra={
                "extra": {
                    "booking_id": booking_id,
                    "previous_minutes": booking.duration_minutes,
                    "new_minutes": duration_minutes,
                    "client_payment_cents": booking.client_payment_cents,
                }
            },
        )
    booking.duration_minutes = duration_minutes
    try:
        await session.flush()
    except IntegrityError as exc:
        await _discard_changes(session, booking)
        raise SlotTakenError("New time slot is not available") from exc
    await session.commit()
    await session.refresh(booking)

    metrics.record_booking("rescheduled")
    logger.info(
        "booking_rescheduled",
        extra={
            "extra": {
                "booking_id": booking_id,
                "previous_start": previous_start.isoformat(),
                "new_start": start.isoformat(),
            }
        },
    )
    await notifications.notify_booking_parties(
        sink,
        notifications.BOOKING_RESCHEDULED,
        booking,
        occurred_at=current,
        previous_start=previous_start.isoformat(),
    )
    return booking


async def resolve_abandoned_holds(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> dict[str, int]:
    """Complete and release paid bookings nobody confirmed within the grace period."""
    counts = {"released": 0, "skipped": 0, "failed": 0}
    days = settings.escrow_auto_release_days
    if days is None:
        return counts

    current = normalize_datetime(now or utc_now())
    cutoff = current - timedelta(days=days)
    confirmable = [status.value for status in CONFIRMABLE_STATUSES]
    result = await session.execute(
        select(ConsultationBooking.booking_id)
        .join(EscrowHold, EscrowHold.booking_id == ConsultationBooking.booking_id)
        .where(
            ConsultationBooking.status.in_(confirmable),
            ConsultationBooking.client_payment_status == ClientPaymentStatus.COMPLETED.value,
            ConsultationBooking.scheduled_end <= cutoff,
            EscrowHold.status == PayoutStatus.PENDING.value,
        )
        .order_by(ConsultationBooking.scheduled_end)
    )
    booking_ids = list(result.scalars().all())
    reason = f"Auto-released after {days} days without dispute"

    for booking_id in booking_ids:
        try:
            updated = await session.execute(
                BOOKINGS.update()
                .where(
                    BOOKINGS.c.booking_id == booking_id,
                    BOOKINGS.c.status.in_(confirmable),
                )
                .values(
                    client_confirmed=True,
                    client_confirmed_at=func.coalesce(BOOKINGS.c.client_confirmed_at, current),
                    provider_confirmed=True,
                    provider_confirmed_at=func.coalesce(BOOKINGS.c.provider_confirmed_at, current),
                    confirmed_by_system=True,
                    status=BookingStatus.COMPLETED.value,
                    actual_end=func.coalesce(BOOKINGS.c.actual_end, BOOKINGS.c.scheduled_end),
                )
            )
            if updated.rowcount != 1:
                counts["skipped"] += 1
                continue
            await escrow_service.release_payment(session, booking_id, reason, now=current, commit=False)
            await session.commit()
        except Exception as exc:  # noqa: BLE001
            await _discard_changes(session)
            counts["failed"] += 1
            logger.warning(
                "escrow_auto_release_failed",
                extra={"extra": {"booking_id": booking_id, "reason": type(exc).__name__}},
            )
            continue

        counts["released"] += 1
        booking = await _get_booking(session, booking_id)
        await notifications.notify_booking_parties(
            sink, notifications.PAYOUT_RELEASED, booking, occurred_at=current, auto_released=True
        )

    if counts["released"]:
        metrics.record_booking("auto_released", counts["released"])
    logger.info("escrow_sweep_complete", extra={"extra": counts})
    return counts


async def send_booking_reminders(
    session: AsyncSession,
    *,
    hours_ahead: int = 24,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> dict[str, int]:
    counts = {"sent": 0, "skipped": 0}
    current = normalize_datetime(now or utc_now())
    for booking in await upcoming_bookings_for_reminders(session, hours_ahead, now=current):
        if booking.reminder_sent_at is not None:
            counts["skipped"] += 1
            continue
        claimed = await session.execute(
            BOOKINGS.update()
            .where(
                BOOKINGS.c.booking_id == booking.booking_id,
                BOOKINGS.c.reminder_sent_at.is_(None),
            )
            .values(reminder_sent_at=current)
        )
        await session.commit()
        if claimed.rowcount != 1:
            counts["skipped"] += 1
            continue
        delivered = await notifications.notify_booking_parties(
            sink,
            notifications.BOOKING_REMINDER,
            booking,
            occurred_at=current,
            scheduled_start=normalize_datetime(booking.scheduled_start).isoformat(),
        )
        counts["sent" if delivered else "skipped"] += 1
    return counts

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.domain.bookings.db_models import ConsultationBooking
from wakili.domain.bookings.statuses import BookingStatus, ClientPaymentStatus, PartyRole, PayoutStatus
from wakili.domain.errors import (
    ConflictError,
    EscrowAlreadyHeldError,
    EscrowAlreadySettledError,
    EscrowHoldNotFoundError,
    NotFoundError,
)
from wakili.domain.escrow import db_models
from wakili.domain.escrow.db_models import EscrowHold, ProviderWallet, WalletTransaction
from wakili.infra.clock import normalize_datetime, utc_now
from wakili.infra.metrics import metrics
from wakili.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ProviderEscrowSummary:
    provider_id: str
    currency: str
    pending_balance_cents: int = 0
    available_balance_cents: int = 0
    balance_cents: int = 0
    pending_holds: list[EscrowHold] = field(default_factory=list)


@dataclass
class PlatformRevenueSummary:
    total_revenue_cents: int = 0
    total_commission_cents: int = 0
    total_paid_out_cents: int = 0
    total_pending_cents: int = 0
    total_refunded_cents: int = 0
    bookings_count: int = 0


async def get_hold(session: AsyncSession, booking_id: str) -> EscrowHold | None:
    result = await session.execute(
        select(EscrowHold)
        .where(EscrowHold.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _require_hold(session: AsyncSession, booking_id: str) -> EscrowHold:
    hold = await get_hold(session, booking_id)
    if hold is None:
        raise EscrowHoldNotFoundError(f"No escrow hold exists for booking {booking_id}")
    return hold


async def _get_booking(session: AsyncSession, booking_id: str) -> ConsultationBooking:
    booking = await session.get(ConsultationBooking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


async def _find_wallet(session: AsyncSession, provider_id: str) -> ProviderWallet | None:
    result = await session.execute(
        select(ProviderWallet)
        .where(ProviderWallet.provider_id == provider_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_wallet(session: AsyncSession, provider_id: str) -> ProviderWallet:
    """Return the provider's wallet, creating it once even under concurrent first holds."""
    wallet = await _find_wallet(session, provider_id)
    if wallet is not None:
        return wallet

    values = {
        "wallet_id": str(uuid.uuid4()),
        "provider_id": provider_id,
        "pending_balance_cents": 0,
        "available_balance_cents": 0,
        "balance_cents": 0,
        "currency": settings.currency,
    }
    dialect = session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        dialect_insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = dialect_insert(ProviderWallet).values(**values).on_conflict_do_nothing(index_elements=["provider_id"])
    else:
        stmt = insert(ProviderWallet).values(**values)
    await session.execute(stmt)

    wallet = await _find_wallet(session, provider_id)
    if wallet is None:
        raise ConflictError(f"Wallet for provider {provider_id} could not be created")
    return wallet


async def _settle(
    session: AsyncSession,
    hold: EscrowHold,
    target: PayoutStatus,
    *,
    reason: str,
    now: datetime,
    cancelled_by: str | None = None,
) -> None:
    """Atomically move a hold out of PENDING; losing a race means already settled."""
    values: dict = {
        "status": target.value,
        "settled_at": now,
        "settlement_reason": reason,
    }
    if target == PayoutStatus.REFUNDED:
        values["cancelled_by"] = cancelled_by
        values["refunded_amount_cents"] = hold.amount_cents
    result = await session.execute(
        update(EscrowHold)
        .where(
            EscrowHold.hold_id == hold.hold_id,
            EscrowHold.status == PayoutStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise EscrowAlreadySettledError(f"Escrow for booking {hold.booking_id} is already settled")
    await session.execute(
        update(ConsultationBooking)
        .where(ConsultationBooking.booking_id == hold.booking_id)
        .values(payout_status=target.value)
        .execution_options(synchronize_session=False)
    )


async def hold_payment(
    session: AsyncSession,
    booking: ConsultationBooking,
    commit: bool = True,
) -> EscrowHold:
    if await get_hold(session, booking.booking_id) is not None:
        raise EscrowAlreadyHeldError(f"Escrow already held for booking {booking.booking_id}")

    hold = EscrowHold(
        booking_id=booking.booking_id,
        client_id=booking.client_id,
        provider_id=booking.provider_id,
        amount_cents=booking.client_payment_cents,
        commission_cents=booking.platform_commission_cents,
        payout_cents=booking.provider_payout_cents,
        status=PayoutStatus.PENDING.value,
    )
    session.add(hold)

    wallet = await get_or_create_wallet(session, booking.provider_id)
    await session.execute(
        update(ProviderWallet)
        .where(ProviderWallet.wallet_id == wallet.wallet_id)
        .values(pending_balance_cents=ProviderWallet.pending_balance_cents + booking.provider_payout_cents)
        .execution_options(synchronize_session=False)
    )
    session.add(
        WalletTransaction(
            wallet_id=wallet.wallet_id,
            booking_id=booking.booking_id,
            kind=db_models.HOLD,
            amount_cents=booking.provider_payout_cents,
            description="Escrow hold for consultation booking",
        )
    )
    await session.flush()
    if commit:
        await session.commit()
    await session.refresh(hold)

    metrics.record_escrow("hold")
    logger.info(
        "escrow_held",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "amount_cents": hold.amount_cents,
                "payout_cents": hold.payout_cents,
            }
        },
    )
    return hold


async def release_payment(
    session: AsyncSession,
    booking_id: str,
    reason: str = "Session completed successfully",
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> EscrowHold:
    booking = await _get_booking(session, booking_id)
    hold = await _require_hold(session, booking_id)
    if hold.status != PayoutStatus.PENDING.value:
        raise EscrowAlreadySettledError(f"Escrow for booking {booking_id} is already {hold.status}")
    if not (booking.client_confirmed and booking.provider_confirmed):
        raise ConflictError("Both parties must confirm completion before payout release")
    if booking.client_payment_status != ClientPaymentStatus.COMPLETED.value:
        raise ConflictError("Client payment not completed")

    current = normalize_datetime(now or utc_now())
    await _settle(session, hold, PayoutStatus.RELEASED, reason=reason, now=current)

    wallet = await get_or_create_wallet(session, hold.provider_id)
    await session.execute(
        update(ProviderWallet)
        .where(ProviderWallet.wallet_id == wallet.wallet_id)
        .values(
            pending_balance_cents=ProviderWallet.pending_balance_cents - hold.payout_cents,
            available_balance_cents=ProviderWallet.available_balance_cents + hold.payout_cents,
            balance_cents=ProviderWallet.balance_cents + hold.payout_cents,
        )
        .execution_options(synchronize_session=False)
    )
    session.add(
        WalletTransaction(
            wallet_id=wallet.wallet_id,
            booking_id=booking_id,
            kind=db_models.PAYOUT,
            amount_cents=hold.payout_cents,
            description=reason,
        )
    )
    await session.flush()
    if commit:
        await session.commit()
    await session.refresh(hold)
    await session.refresh(booking)

    metrics.record_escrow("release")
    logger.info(
        "escrow_released",
        extra={"extra": {"booking_id": booking_id, "payout_cents": hold.payout_cents, "reason": reason}},
    )
    return hold


async def refund_payment(
    session: AsyncSession,
    booking_id: str,
    reason: str,
    cancelled_by: PartyRole | str,
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> EscrowHold:
    booking = await _get_booking(session, booking_id)
    hold = await _require_hold(session, booking_id)
    if hold.status != PayoutStatus.PENDING.value:
        raise EscrowAlreadySettledError(f"Escrow for booking {booking_id} is already {hold.status}")

    current = normalize_datetime(now or utc_now())
    party = PartyRole(cancelled_by).value
    await _settle(
        session,
        hold,
        PayoutStatus.REFUNDED,
        reason=reason,
        now=current,
        cancelled_by=party,
    )

    wallet = await get_or_create_wallet(session, hold.provider_id)
    await session.execute(
        update(ProviderWallet)
        .where(ProviderWallet.wallet_id == wallet.wallet_id)
        .values(pending_balance_cents=ProviderWallet.pending_balance_cents - hold.payout_cents)
        .execution_options(synchronize_session=False)
    )
    session.add(
        WalletTransaction(
            wallet_id=wallet.wallet_id,
            booking_id=booking_id,
            kind=db_models.REVERSAL,
            amount_cents=-hold.payout_cents,
            description=f"Escrow reversal due to cancellation: {reason}",
        )
    )
    await session.flush()
    if commit:
        await session.commit()
    await session.refresh(hold)
    await session.refresh(booking)

    metrics.record_escrow("refund")
    logger.info(
        "escrow_refunded",
        extra={
            "extra": {
                "booking_id": booking_id,
                "amount_cents": hold.amount_cents,
                "cancelled_by": party,
            }
        },
    )
    return hold


async def provider_escrow_summary(session: AsyncSession, provider_id: str) -> ProviderEscrowSummary:
    result = await session.execute(select(ProviderWallet).where(ProviderWallet.provider_id == provider_id))
    wallet = result.scalar_one_or_none()
    if wallet is None:
        return ProviderEscrowSummary(provider_id=provider_id, currency=settings.currency)

    await session.refresh(wallet)
    holds_result = await session.execute(
        select(EscrowHold)
        .where(
            EscrowHold.provider_id == provider_id,
            EscrowHold.status == PayoutStatus.PENDING.value,
        )
        .order_by(EscrowHold.created_at.desc())
    )
    return ProviderEscrowSummary(
        provider_id=provider_id,
        currency=wallet.currency,
        pending_balance_cents=wallet.pending_balance_cents,
        available_balance_cents=wallet.available_balance_cents,
        balance_cents=wallet.balance_cents,
        pending_holds=list(holds_result.scalars().all()),
    )


async def platform_revenue_summary(
    session: AsyncSession,
    start: datetime | None = None,
    end: datetime | None = None,
) -> PlatformRevenueSummary:
    stmt = select(
        ConsultationBooking.status,
        ConsultationBooking.payout_status,
        func.count(ConsultationBooking.booking_id),
        func.coalesce(func.sum(ConsultationBooking.client_payment_cents), 0),
        func.coalesce(func.sum(ConsultationBooking.platform_commission_cents), 0),
        func.coalesce(func.sum(ConsultationBooking.provider_payout_cents), 0),
    ).where(ConsultationBooking.client_payment_status == ClientPaymentStatus.COMPLETED.value)
    if start is not None:
        stmt = stmt.where(ConsultationBooking.client_paid_at >= normalize_datetime(start))
    if end is not None:
        stmt = stmt.where(ConsultationBooking.client_paid_at <= normalize_datetime(end))
    stmt = stmt.group_by(ConsultationBooking.status, ConsultationBooking.payout_status)

    summary = PlatformRevenueSummary()
    for status, payout_status, count, revenue, commission, payout in (await session.execute(stmt)).all():
        summary.bookings_count += int(count)
        if payout_status == PayoutStatus.REFUNDED.value:
            summary.total_refunded_cents += int(revenue)
            continue
        summary.total_revenue_cents += int(revenue)
        summary.total_commission_cents += int(commission)
        if payout_status == PayoutStatus.RELEASED.value:
            summary.total_paid_out_cents += int(payout)
        elif status != BookingStatus.CANCELLED.value:
            summary.total_pending_cents += int(payout)
    return summary

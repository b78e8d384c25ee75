import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from tests.conftest import CLIENT_ID, DEFAULT_NOW, MONDAY, PROVIDER_ID, SECOND_CLIENT_ID, local_dt
from wakili.domain.bookings import service as booking_service
from wakili.domain.bookings.statuses import PartyRole, PayoutStatus
from wakili.domain.errors import (
    ConflictError,
    EscrowAlreadyHeldError,
    EscrowAlreadySettledError,
    EscrowHoldNotFoundError,
)
from wakili.domain.escrow import db_models as escrow_db_models
from wakili.domain.escrow import service as escrow_service


async def _paid_booking(session, hour: int = 10, client_id: str = CLIENT_ID):
    start = local_dt(MONDAY, hour)
    booking = await booking_service.create_booking(
        session,
        client_id=client_id,
        provider_id=PROVIDER_ID,
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=1),
        now=DEFAULT_NOW,
    )
    await booking_service.confirm_payment(
        session, booking.booking_id, f"ref-{hour}", booking.client_payment_cents, now=DEFAULT_NOW
    )
    return await booking_service.get_booking(session, booking.booking_id)


async def _mark_both_confirmed(session, booking) -> None:
    booking.client_confirmed = True
    booking.provider_confirmed = True
    await session.commit()


def test_release_requires_both_confirmations(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            booking = await _paid_booking(session)
            with pytest.raises(ConflictError):
                await escrow_service.release_payment(session, booking.booking_id)
            hold = await escrow_service.get_hold(session, booking.booking_id)
            assert hold.status == PayoutStatus.PENDING.value

    asyncio.run(_run())


def test_release_without_payment_has_no_hold(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            start = local_dt(MONDAY, 10)
            booking = await booking_service.create_booking(
                session,
                client_id=CLIENT_ID,
                provider_id=PROVIDER_ID,
                scheduled_start=start,
                scheduled_end=start + timedelta(hours=1),
                now=DEFAULT_NOW,
            )
            with pytest.raises(EscrowHoldNotFoundError):
                await escrow_service.release_payment(session, booking.booking_id)
            with pytest.raises(EscrowHoldNotFoundError):
                await escrow_service.refund_payment(session, booking.booking_id, "Cancelled", PartyRole.CLIENT)

    asyncio.run(_run())


def test_hold_is_created_once_per_booking(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            booking = await _paid_booking(session)
            with pytest.raises(EscrowAlreadyHeldError):
                await escrow_service.hold_payment(session, booking)

    asyncio.run(_run())


def test_settled_hold_cannot_be_settled_again(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            booking = await _paid_booking(session)
            await _mark_both_confirmed(session, booking)

            hold = await escrow_service.release_payment(session, booking.booking_id, now=DEFAULT_NOW)
            assert hold.status == PayoutStatus.RELEASED.value
            assert hold.settlement_reason == "Session completed successfully"

            with pytest.raises(EscrowAlreadySettledError):
                await escrow_service.release_payment(session, booking.booking_id)
            with pytest.raises(EscrowAlreadySettledError):
                await escrow_service.refund_payment(session, booking.booking_id, "Late refund", PartyRole.CLIENT)

    asyncio.run(_run())


def test_refund_writes_reversal_to_wallet_ledger(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            booking = await _paid_booking(session)
            hold = await escrow_service.refund_payment(
                session, booking.booking_id, "Client cancelled", PartyRole.CLIENT, now=DEFAULT_NOW
            )
            assert hold.status == PayoutStatus.REFUNDED.value
            assert hold.cancelled_by == PartyRole.CLIENT.value

            result = await session.execute(
                select(escrow_db_models.WalletTransaction)
                .where(escrow_db_models.WalletTransaction.booking_id == booking.booking_id)
                .order_by(escrow_db_models.WalletTransaction.created_at)
            )
            kinds = sorted((item.kind, item.amount_cents) for item in result.scalars().all())
            assert kinds == [(escrow_db_models.HOLD, 90_000), (escrow_db_models.REVERSAL, -90_000)]

    asyncio.run(_run())


def test_platform_revenue_summary(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            released = await _paid_booking(session, hour=10)
            refunded = await _paid_booking(session, hour=11, client_id=SECOND_CLIENT_ID)
            await _paid_booking(session, hour=12)

            await _mark_both_confirmed(session, released)
            await escrow_service.release_payment(session, released.booking_id, now=DEFAULT_NOW)
            await booking_service.cancel_booking(session, refunded.booking_id, SECOND_CLIENT_ID, now=DEFAULT_NOW)

            summary = await escrow_service.platform_revenue_summary(session)
            assert summary.bookings_count == 3
            assert summary.total_revenue_cents == 200_000
            assert summary.total_commission_cents == 20_000
            assert summary.total_paid_out_cents == 90_000
            assert summary.total_pending_cents == 90_000
            assert summary.total_refunded_cents == 100_000

            provider_summary = await escrow_service.provider_escrow_summary(session, PROVIDER_ID)
            assert provider_summary.pending_balance_cents == 90_000
            assert provider_summary.available_balance_cents == 90_000
            assert provider_summary.balance_cents == 90_000

    asyncio.run(_run())


def test_summary_for_provider_without_wallet(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            summary = await escrow_service.provider_escrow_summary(session, "prov-no-rate")
            assert summary.currency == "KES"
            assert summary.pending_balance_cents == 0
            assert summary.pending_holds == []

    asyncio.run(_run())


def test_get_or_create_wallet_returns_single_wallet(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            first = await escrow_service.get_or_create_wallet(session, PROVIDER_ID)
            again = await escrow_service.get_or_create_wallet(session, PROVIDER_ID)
            assert again.wallet_id == first.wallet_id
            await session.commit()
            wallet_id = first.wallet_id

        async with async_session_maker() as session:
            wallet = await escrow_service.get_or_create_wallet(session, PROVIDER_ID)
            assert wallet.wallet_id == wallet_id
            result = await session.execute(
                select(escrow_db_models.ProviderWallet).where(
                    escrow_db_models.ProviderWallet.provider_id == PROVIDER_ID
                )
            )
            assert len(result.scalars().all()) == 1

    asyncio.run(_run())


def test_get_or_create_wallet_keeps_existing_row_on_insert_conflict(async_session_maker, monkeypatch):
    async def _run() -> None:
        async with async_session_maker() as session:
            existing = await escrow_service.get_or_create_wallet(session, PROVIDER_ID)
            await session.commit()
            existing_id = existing.wallet_id

        original_find = escrow_service._find_wallet
        calls = []

        async def _miss_first_lookup(session, provider_id):
            calls.append(provider_id)
            if len(calls) == 1:
                return None
            return await original_find(session, provider_id)

        monkeypatch.setattr(escrow_service, "_find_wallet", _miss_first_lookup)
        async with async_session_maker() as session:
            wallet = await escrow_service.get_or_create_wallet(session, PROVIDER_ID)
            assert wallet.wallet_id == existing_id
            await session.commit()

    asyncio.run(_run())

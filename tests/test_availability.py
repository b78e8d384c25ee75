import asyncio
from datetime import datetime, time, timedelta

import pytest

from tests.conftest import DEFAULT_NOW, MONDAY, NAIROBI, PROVIDER_ID, local_dt
from wakili.domain.availability import service as availability_service
from wakili.domain.bookings.db_models import ConsultationBooking
from wakili.domain.bookings.statuses import BookingStatus
from wakili.domain.errors import ConflictError, NotFoundError, ValidationError
from wakili.domain.providers import service as provider_service
from wakili.settings import settings


async def _insert_booking(session, start: datetime, minutes: int = 60, status: str = "PAYMENT_CONFIRMED"):
    booking = ConsultationBooking(
        client_id="client-1",
        provider_id=PROVIDER_ID,
        consultation_type="VIDEO",
        scheduled_start=start,
        scheduled_end=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        original_amount_cents=100_000,
        client_payment_cents=100_000,
        platform_commission_bps=1000,
        platform_commission_cents=10_000,
        provider_payout_cents=90_000,
        status=status,
    )
    session.add(booking)
    await session.commit()
    return booking


def _local_hours(slots) -> list[int]:
    return [slot.start.astimezone(NAIROBI).hour for slot in slots]


def test_working_day_tiles_hourly_slots(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=DEFAULT_NOW
            )
            assert _local_hours(slots) == [9, 10, 11, 12, 13, 14, 15, 16]
            assert all(slot.end - slot.start == timedelta(hours=1) for slot in slots)

    asyncio.run(_run())


def test_blocked_slot_removes_lunch_hour(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            await availability_service.block_slot(
                session, PROVIDER_ID, local_dt(MONDAY, 12), local_dt(MONDAY, 13), "Lunch"
            )
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=DEFAULT_NOW
            )
            assert _local_hours(slots) == [9, 10, 11, 13, 14, 15, 16]

    asyncio.run(_run())


def test_active_bookings_occupy_slots_but_cancelled_do_not(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            await _insert_booking(session, local_dt(MONDAY, 10))
            await _insert_booking(session, local_dt(MONDAY, 14), status=BookingStatus.CANCELLED.value)
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=DEFAULT_NOW
            )
            hours = _local_hours(slots)
            assert 10 not in hours
            assert 14 in hours

    asyncio.run(_run())


def test_slots_straddling_a_booking_are_excluded(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            await _insert_booking(session, local_dt(MONDAY, 10, 30), minutes=30)
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=DEFAULT_NOW
            )
            assert 10 not in _local_hours(slots)
            assert 11 in _local_hours(slots)

    asyncio.run(_run())


def test_today_only_returns_future_slots(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            now = datetime.combine(MONDAY, time(11, 30), tzinfo=NAIROBI)
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=now
            )
            assert _local_hours(slots) == [12, 13, 14, 15, 16]

    asyncio.run(_run())


def test_day_without_working_hours_has_no_slots(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY + timedelta(days=1), 60, now=DEFAULT_NOW
            )
            assert slots == []

    asyncio.run(_run())


def test_unknown_provider_raises_not_found(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            with pytest.raises(NotFoundError):
                await availability_service.compute_available_slots(session, "missing", MONDAY, 60, now=DEFAULT_NOW)

    asyncio.run(_run())


@pytest.mark.parametrize("minutes", [10, 481])
def test_slot_duration_bounds(async_session_maker, minutes):
    async def _run() -> None:
        async with async_session_maker() as session:
            with pytest.raises(ValidationError):
                await availability_service.compute_available_slots(
                    session, PROVIDER_ID, MONDAY, minutes, now=DEFAULT_NOW
                )

    asyncio.run(_run())


def test_range_is_inclusive_and_capped(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            slots_by_day = await availability_service.compute_available_slots_for_range(
                session, PROVIDER_ID, MONDAY, MONDAY + timedelta(days=6), 60, now=DEFAULT_NOW
            )
            assert len(slots_by_day) == 7
            assert len(slots_by_day[MONDAY]) == 8
            assert sum(len(day_slots) for day_slots in slots_by_day.values()) == 8

            with pytest.raises(ValidationError):
                await availability_service.compute_available_slots_for_range(
                    session, PROVIDER_ID, MONDAY, MONDAY + timedelta(days=31), 60, now=DEFAULT_NOW
                )
            with pytest.raises(ValidationError):
                await availability_service.compute_available_slots_for_range(
                    session, PROVIDER_ID, MONDAY, MONDAY - timedelta(days=1), 60, now=DEFAULT_NOW
                )

    asyncio.run(_run())


def test_available_24_7_provider_tiles_whole_day(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            provider = await provider_service.get_provider(session, PROVIDER_ID)
            provider.available_24_7 = True
            await session.commit()
            slots = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY + timedelta(days=2), 120, now=DEFAULT_NOW
            )
            assert len(slots) == 12

    asyncio.run(_run())


def test_block_slot_rejects_inverted_interval(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            with pytest.raises(ValidationError):
                await availability_service.block_slot(
                    session, PROVIDER_ID, local_dt(MONDAY, 13), local_dt(MONDAY, 12)
                )

    asyncio.run(_run())


def test_block_slot_policy_for_existing_bookings(async_session_maker):
    async def _run() -> None:
        async with async_session_maker() as session:
            await _insert_booking(session, local_dt(MONDAY, 10))

            settings.blocked_slot_conflict_policy = "reject"
            with pytest.raises(ConflictError):
                await availability_service.block_slot(
                    session, PROVIDER_ID, local_dt(MONDAY, 9), local_dt(MONDAY, 12)
                )

            settings.blocked_slot_conflict_policy = "allow"
            blocked = await availability_service.block_slot(
                session, PROVIDER_ID, local_dt(MONDAY, 9), local_dt(MONDAY, 12)
            )
            assert blocked.reason == "Unavailable"

            listed = await availability_service.list_blocked_slots(session, PROVIDER_ID)
            assert [item.blocked_slot_id for item in listed] == [blocked.blocked_slot_id]

            await availability_service.unblock_slot(session, PROVIDER_ID, blocked.blocked_slot_id)
            assert await availability_service.list_blocked_slots(session, PROVIDER_ID) == []
            with pytest.raises(NotFoundError):
                await availability_service.unblock_slot(session, PROVIDER_ID, blocked.blocked_slot_id)

    asyncio.run(_run())


def test_replace_working_hours_validates_and_replaces(async_session_maker):
    class Entry:
        def __init__(self, day_of_week, start_time, end_time, is_available=True):
            self.day_of_week = day_of_week
            self.start_time = start_time
            self.end_time = end_time
            self.is_available = is_available

    async def _run() -> None:
        async with async_session_maker() as session:
            with pytest.raises(ValidationError):
                await provider_service.replace_working_hours(
                    session, PROVIDER_ID, [Entry(1, time(17), time(9))]
                )
            with pytest.raises(ValidationError):
                await provider_service.replace_working_hours(
                    session, PROVIDER_ID, [Entry(1, time(9), time(12)), Entry(1, time(13), time(17))]
                )

            records = await provider_service.replace_working_hours(
                session, PROVIDER_ID, [Entry(1, time(8), time(10)), Entry(2, None, None, is_available=False)]
            )
            assert [(record.day_of_week, record.is_available) for record in records] == [(1, True), (2, False)]

            monday = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY, 60, now=DEFAULT_NOW
            )
            tuesday = await availability_service.compute_available_slots(
                session, PROVIDER_ID, MONDAY + timedelta(days=1), 60, now=DEFAULT_NOW
            )
            assert monday == []
            assert _local_hours(tuesday) == [8, 9]

    asyncio.run(_run())

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.domain.bookings.db_models import ConsultationBooking
from wakili.domain.bookings.statuses import ACTIVE_STATUSES
from wakili.domain.errors import ConflictError, NotFoundError, ValidationError
from wakili.domain.providers import service as provider_service
from wakili.domain.providers.db_models import BlockedSlot, ProviderProfile, WorkingHours
from wakili.infra.clock import normalize_datetime, utc_now
from wakili.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 60
DEFAULT_BLOCK_REASON = "Unavailable"


@dataclass(frozen=True, order=True)
class Slot:
    start: datetime
    end: datetime


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [a_start, a_end) and [b_start, b_end) share time."""
    return a_start < b_end and b_start < a_end


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.local_timezone)


def validate_slot_duration(duration_minutes: int) -> None:
    if duration_minutes < settings.min_slot_minutes or duration_minutes > settings.max_slot_minutes:
        raise ValidationError(
            f"Slot duration must be between {settings.min_slot_minutes} "
            f"and {settings.max_slot_minutes} minutes"
        )


def working_window(
    provider: ProviderProfile,
    hours: list[WorkingHours],
    target_date: date,
) -> tuple[datetime, datetime] | None:
    tz = local_tz()
    if provider.available_24_7:
        start_local = datetime.combine(target_date, time(0), tzinfo=tz)
        end_local = datetime.combine(target_date + timedelta(days=1), time(0), tzinfo=tz)
        return normalize_datetime(start_local), normalize_datetime(end_local)

    entry = next((item for item in hours if item.day_of_week == target_date.weekday()), None)
    if entry is None or not entry.is_available or entry.start_time is None or entry.end_time is None:
        return None
    start_local = datetime.combine(target_date, entry.start_time, tzinfo=tz)
    end_local = datetime.combine(target_date, entry.end_time, tzinfo=tz)
    return normalize_datetime(start_local), normalize_datetime(end_local)


def tile_slots(window_start: datetime, window_end: datetime, duration_minutes: int) -> list[Slot]:
    duration = timedelta(minutes=duration_minutes)
    slots: list[Slot] = []
    candidate = window_start
    while candidate + duration <= window_end:
        slots.append(Slot(start=candidate, end=candidate + duration))
        candidate += duration
    return slots


async def busy_windows(
    session: AsyncSession,
    provider_id: str,
    window_start: datetime,
    window_end: datetime,
    exclude_booking_id: str | None = None,
) -> list[tuple[datetime, datetime]]:
    blocked_result = await session.execute(
        select(BlockedSlot.starts_at, BlockedSlot.ends_at).where(
            and_(
                BlockedSlot.provider_id == provider_id,
                BlockedSlot.starts_at < window_end,
                BlockedSlot.ends_at > window_start,
            )
        )
    )
    booking_filters = [
        ConsultationBooking.provider_id == provider_id,
        ConsultationBooking.status.in_([status.value for status in ACTIVE_STATUSES]),
        ConsultationBooking.scheduled_start < window_end,
        ConsultationBooking.scheduled_end > window_start,
    ]
    if exclude_booking_id is not None:
        booking_filters.append(ConsultationBooking.booking_id != exclude_booking_id)
    booking_result = await session.execute(
        select(ConsultationBooking.scheduled_start, ConsultationBooking.scheduled_end).where(and_(*booking_filters))
    )
    windows = [
        (normalize_datetime(start), normalize_datetime(end))
        for start, end in [*blocked_result.all(), *booking_result.all()]
    ]
    return sorted(windows)


async def compute_available_slots(
    session: AsyncSession,
    provider_id: str,
    target_date: date,
    slot_duration_minutes: int = DEFAULT_SLOT_MINUTES,
    *,
    now: datetime | None = None,
    exclude_booking_id: str | None = None,
) -> list[Slot]:
    validate_slot_duration(slot_duration_minutes)
    provider = await provider_service.get_provider(session, provider_id)
    hours = await provider_service.get_working_hours(session, provider_id)
    window = working_window(provider, hours, target_date)
    if window is None:
        return []

    window_start, window_end = window
    busy = await busy_windows(session, provider_id, window_start, window_end, exclude_booking_id)
    slots = [
        slot
        for slot in tile_slots(window_start, window_end, slot_duration_minutes)
        if not any(intervals_overlap(slot.start, slot.end, start, end) for start, end in busy)
    ]

    current = normalize_datetime(now or utc_now())
    if target_date == current.astimezone(local_tz()).date():
        slots = [slot for slot in slots if slot.start > current]
    return slots


async def compute_available_slots_for_range(
    session: AsyncSession,
    provider_id: str,
    start_date: date,
    end_date: date,
    slot_duration_minutes: int = DEFAULT_SLOT_MINUTES,
    *,
    now: datetime | None = None,
) -> dict[date, list[Slot]]:
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    if (end_date - start_date).days > settings.max_range_days:
        raise ValidationError(f"Date range cannot exceed {settings.max_range_days} days")

    slots_by_day: dict[date, list[Slot]] = {}
    current_day = start_date
    while current_day <= end_date:
        slots_by_day[current_day] = await compute_available_slots(
            session, provider_id, current_day, slot_duration_minutes, now=now
        )
        current_day += timedelta(days=1)
    return slots_by_day


async def is_interval_available(
    session: AsyncSession,
    provider_id: str,
    start: datetime,
    end: datetime,
    *,
    now: datetime | None = None,
    exclude_booking_id: str | None = None,
) -> bool:
    """True when [start, end) is exactly one of the provider's open slots right now."""
    start = normalize_datetime(start)
    end = normalize_datetime(end)
    duration_minutes = int((end - start).total_seconds() // 60)
    local_date = start.astimezone(local_tz()).date()
    slots = await compute_available_slots(
        session,
        provider_id,
        local_date,
        duration_minutes,
        now=now,
        exclude_booking_id=exclude_booking_id,
    )
    return Slot(start=start, end=end) in slots


async def list_blocked_slots(session: AsyncSession, provider_id: str) -> list[BlockedSlot]:
    await provider_service.get_provider(session, provider_id)
    result = await session.execute(
        select(BlockedSlot).where(BlockedSlot.provider_id == provider_id).order_by(BlockedSlot.starts_at)
    )
    return list(result.scalars().all())


async def _overlapping_active_bookings(
    session: AsyncSession, provider_id: str, start: datetime, end: datetime
) -> list[str]:
    result = await session.execute(
        select(ConsultationBooking.booking_id).where(
            ConsultationBooking.provider_id == provider_id,
            ConsultationBooking.status.in_([status.value for status in ACTIVE_STATUSES]),
            ConsultationBooking.scheduled_start < end,
            ConsultationBooking.scheduled_end > start,
        )
    )
    return list(result.scalars().all())


async def block_slot(
    session: AsyncSession,
    provider_id: str,
    starts_at: datetime,
    ends_at: datetime,
    reason: str | None = None,
) -> BlockedSlot:
    start = normalize_datetime(starts_at)
    end = normalize_datetime(ends_at)
    if start >= end:
        raise ValidationError("Blocked slot start must be before its end")
    await provider_service.get_provider(session, provider_id)

    conflicts = await _overlapping_active_bookings(session, provider_id, start, end)
    if conflicts:
        if settings.blocked_slot_conflict_policy == "reject":
            raise ConflictError("Blocked slot overlaps an existing booking")
        logger.warning(
            "blocked_slot_overlaps_booking",
            extra={"extra": {"provider_id": provider_id, "booking_ids": conflicts}},
        )

    blocked = BlockedSlot(
        provider_id=provider_id,
        starts_at=start,
        ends_at=end,
        reason=reason or DEFAULT_BLOCK_REASON,
    )
    session.add(blocked)
    await session.commit()
    await session.refresh(blocked)
    return blocked


async def unblock_slot(session: AsyncSession, provider_id: str, blocked_slot_id: str) -> None:
    result = await session.execute(
        select(BlockedSlot).where(
            BlockedSlot.blocked_slot_id == blocked_slot_id,
            BlockedSlot.provider_id == provider_id,
        )
    )
    blocked = result.scalar_one_or_none()
    if blocked is None:
        raise NotFoundError("Blocked slot not found")
    await session.delete(blocked)
    await session.commit()

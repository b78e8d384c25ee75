import logging
from datetime import time

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.domain.errors import NotFoundError, ValidationError
from wakili.domain.providers.db_models import ClientProfile, ProviderProfile, WorkingHours

logger = logging.getLogger(__name__)

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


async def get_provider(session: AsyncSession, provider_id: str, lock: bool = False) -> ProviderProfile:
    stmt = select(ProviderProfile).where(ProviderProfile.provider_id == provider_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    provider = result.scalar_one_or_none()
    if provider is None:
        raise NotFoundError("Provider not found")
    return provider


async def get_client(session: AsyncSession, client_id: str) -> ClientProfile:
    client = await session.get(ClientProfile, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    return client


async def get_working_hours(session: AsyncSession, provider_id: str) -> list[WorkingHours]:
    result = await session.execute(
        select(WorkingHours)
        .where(WorkingHours.provider_id == provider_id)
        .order_by(WorkingHours.day_of_week)
    )
    return list(result.scalars().all())


def _validate_entry(day_of_week: int, start_time: time | None, end_time: time | None, is_available: bool) -> None:
    if day_of_week < 0 or day_of_week > 6:
        raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    if not is_available:
        return
    if start_time is None or end_time is None:
        raise ValidationError(f"{DAY_NAMES[day_of_week]} requires start_time and end_time")
    if start_time >= end_time:
        raise ValidationError(f"{DAY_NAMES[day_of_week]} start_time must be before end_time")


async def replace_working_hours(session: AsyncSession, provider_id: str, entries) -> list[WorkingHours]:
    """Replace the weekly template wholesale; days left out become unavailable."""
    await get_provider(session, provider_id)
    seen: set[int] = set()
    for entry in entries:
        _validate_entry(entry.day_of_week, entry.start_time, entry.end_time, entry.is_available)
        if entry.day_of_week in seen:
            raise ValidationError(f"Duplicate entry for {DAY_NAMES[entry.day_of_week]}")
        seen.add(entry.day_of_week)

    await session.execute(delete(WorkingHours).where(WorkingHours.provider_id == provider_id))
    records = [
        WorkingHours(
            provider_id=provider_id,
            day_of_week=entry.day_of_week,
            start_time=entry.start_time if entry.is_available else None,
            end_time=entry.end_time if entry.is_available else None,
            is_available=entry.is_available,
        )
        for entry in entries
    ]
    session.add_all(records)
    await session.commit()
    logger.info(
        "working_hours_replaced",
        extra={"extra": {"provider_id": provider_id, "days": sorted(seen)}},
    )
    return await get_working_hours(session, provider_id)


async def consume_first_consult_discount(session: AsyncSession, client_id: str) -> bool:
    """Flip the client's one-time discount flag; False if it was already used.

    Runs inside the caller's transaction so a failed booking leaves the
    discount unused.
    """
    result = await session.execute(
        update(ClientProfile)
        .where(
            ClientProfile.client_id == client_id,
            ClientProfile.has_used_first_consult_discount.is_(False),
        )
        .values(has_used_first_consult_discount=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

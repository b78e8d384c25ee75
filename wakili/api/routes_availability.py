from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.api.actor_auth import ActorIdentity, assert_provider_access, get_actor_identity
from wakili.dependencies import get_clock, get_db_session
from wakili.domain.availability import schemas as availability_schemas
from wakili.domain.availability import service as availability_service
from wakili.domain.providers import service as provider_service
from wakili.infra.clock import Clock

router = APIRouter()


def _slot_day(provider_id: str, day, duration_minutes: int, slots) -> availability_schemas.SlotAvailabilityResponse:
    return availability_schemas.SlotAvailabilityResponse(
        provider_id=provider_id,
        date=day,
        duration_minutes=duration_minutes,
        slots=[availability_schemas.SlotResponse(start=slot.start, end=slot.end) for slot in slots],
    )


def _blocked_response(blocked) -> availability_schemas.BlockedSlotResponse:
    return availability_schemas.BlockedSlotResponse(
        blocked_slot_id=blocked.blocked_slot_id,
        provider_id=blocked.provider_id,
        starts_at=blocked.starts_at,
        ends_at=blocked.ends_at,
        reason=blocked.reason,
    )


@router.get(
    "/v1/providers/{provider_id}/slots",
    response_model=availability_schemas.SlotAvailabilityResponse,
)
async def get_slots(
    provider_id: str,
    query: availability_schemas.SlotQuery = Depends(),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> availability_schemas.SlotAvailabilityResponse:
    slots = await availability_service.compute_available_slots(
        session, provider_id, query.date, query.duration_minutes, now=clock()
    )
    return _slot_day(provider_id, query.date, query.duration_minutes, slots)


@router.get(
    "/v1/providers/{provider_id}/slots/range",
    response_model=availability_schemas.SlotRangeResponse,
)
async def get_slots_for_range(
    provider_id: str,
    query: availability_schemas.SlotRangeQuery = Depends(),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> availability_schemas.SlotRangeResponse:
    slots_by_day = await availability_service.compute_available_slots_for_range(
        session,
        provider_id,
        query.start_date,
        query.end_date,
        query.duration_minutes,
        now=clock(),
    )
    return availability_schemas.SlotRangeResponse(
        provider_id=provider_id,
        duration_minutes=query.duration_minutes,
        days=[
            _slot_day(provider_id, day, query.duration_minutes, slots)
            for day, slots in sorted(slots_by_day.items())
        ],
    )


@router.get(
    "/v1/providers/{provider_id}/blocked-slots",
    response_model=list[availability_schemas.BlockedSlotResponse],
)
async def list_blocked_slots(
    provider_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(get_actor_identity),
) -> list[availability_schemas.BlockedSlotResponse]:
    assert_provider_access(identity, provider_id)
    records = await availability_service.list_blocked_slots(session, provider_id)
    return [_blocked_response(record) for record in records]


@router.post(
    "/v1/providers/{provider_id}/blocked-slots",
    response_model=availability_schemas.BlockedSlotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_blocked_slot(
    provider_id: str,
    payload: availability_schemas.BlockedSlotRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(get_actor_identity),
) -> availability_schemas.BlockedSlotResponse:
    assert_provider_access(identity, provider_id)
    blocked = await availability_service.block_slot(
        session, provider_id, payload.starts_at, payload.ends_at, payload.reason
    )
    return _blocked_response(blocked)


@router.delete(
    "/v1/providers/{provider_id}/blocked-slots/{blocked_slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_blocked_slot(
    provider_id: str,
    blocked_slot_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(get_actor_identity),
) -> Response:
    assert_provider_access(identity, provider_id)
    await availability_service.unblock_slot(session, provider_id, blocked_slot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def _working_hours_response(session: AsyncSession, provider_id: str, records=None):
    provider = await provider_service.get_provider(session, provider_id)
    if records is None:
        records = await provider_service.get_working_hours(session, provider_id)
    return availability_schemas.WorkingHoursResponse(
        provider_id=provider_id,
        available_24_7=provider.available_24_7,
        days=[
            availability_schemas.WorkingHoursEntry(
                day_of_week=record.day_of_week,
                start_time=record.start_time,
                end_time=record.end_time,
                is_available=record.is_available,
            )
            for record in records
        ],
    )


@router.get(
    "/v1/providers/{provider_id}/working-hours",
    response_model=availability_schemas.WorkingHoursResponse,
)
async def get_working_hours(
    provider_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> availability_schemas.WorkingHoursResponse:
    return await _working_hours_response(session, provider_id)


@router.put(
    "/v1/providers/{provider_id}/working-hours",
    response_model=availability_schemas.WorkingHoursResponse,
)
async def replace_working_hours(
    provider_id: str,
    payload: availability_schemas.WorkingHoursUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(get_actor_identity),
) -> availability_schemas.WorkingHoursResponse:
    assert_provider_access(identity, provider_id)
    records = await provider_service.replace_working_hours(session, provider_id, payload.days)
    return await _working_hours_response(session, provider_id, records)

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.api.actor_auth import ActorIdentity, require_client
from wakili.dependencies import get_clock, get_db_session, get_notification_sink, get_verification_store
from wakili.domain.verification import schemas as verification_schemas
from wakili.domain.verification import service as verification_service
from wakili.infra.clock import Clock
from wakili.infra.notifications import NotificationSink
from wakili.infra.verification_store import VerificationStore
from wakili.settings import settings

router = APIRouter()


@router.post("/v1/verification/send", response_model=verification_schemas.SendCodeResponse)
async def send_code(
    payload: verification_schemas.SendCodeRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_client),
    store: VerificationStore = Depends(get_verification_store),
    sink: NotificationSink = Depends(get_notification_sink),
) -> verification_schemas.SendCodeResponse:
    phone_number = await verification_service.send_verification_code(
        session, store, sink, identity.actor_id, payload.phone_number
    )
    return verification_schemas.SendCodeResponse(
        phone_number=phone_number,
        expires_in_seconds=settings.verification_code_ttl_seconds,
    )


@router.post("/v1/verification/verify", response_model=verification_schemas.VerifyCodeResponse)
async def verify_code(
    payload: verification_schemas.VerifyCodeRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_client),
    store: VerificationStore = Depends(get_verification_store),
    clock: Clock = Depends(get_clock),
) -> verification_schemas.VerifyCodeResponse:
    client = await verification_service.verify_code(
        session, store, identity.actor_id, payload.code, now=clock()
    )
    return verification_schemas.VerifyCodeResponse(
        phone_number=client.phone_number or "",
        verified=client.phone_verified_at is not None,
    )

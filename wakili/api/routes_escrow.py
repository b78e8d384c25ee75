from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wakili.api.actor_auth import ActorIdentity, require_admin, require_provider
from wakili.dependencies import get_db_session
from wakili.domain.escrow import schemas as escrow_schemas
from wakili.domain.escrow import service as escrow_service

router = APIRouter()


@router.get("/v1/providers/me/escrow", response_model=escrow_schemas.ProviderEscrowResponse)
async def get_my_escrow(
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_provider),
) -> escrow_schemas.ProviderEscrowResponse:
    summary = await escrow_service.provider_escrow_summary(session, identity.actor_id)
    return escrow_schemas.ProviderEscrowResponse(
        provider_id=summary.provider_id,
        currency=summary.currency,
        pending_balance_cents=summary.pending_balance_cents,
        available_balance_cents=summary.available_balance_cents,
        balance_cents=summary.balance_cents,
        pending_holds=[
            escrow_schemas.EscrowHoldResponse(
                hold_id=hold.hold_id,
                booking_id=hold.booking_id,
                amount_cents=hold.amount_cents,
                commission_cents=hold.commission_cents,
                payout_cents=hold.payout_cents,
                status=hold.status,
                created_at=hold.created_at,
            )
            for hold in summary.pending_holds
        ],
    )


@router.get("/v1/admin/escrow/revenue", response_model=escrow_schemas.PlatformRevenueResponse)
async def get_platform_revenue(
    start: datetime | None = None,
    end: datetime | None = None,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_admin),
) -> escrow_schemas.PlatformRevenueResponse:
    del identity
    summary = await escrow_service.platform_revenue_summary(session, start, end)
    return escrow_schemas.PlatformRevenueResponse(
        total_revenue_cents=summary.total_revenue_cents,
        total_commission_cents=summary.total_commission_cents,
        total_paid_out_cents=summary.total_paid_out_cents,
        total_pending_cents=summary.total_pending_cents,
        total_refunded_cents=summary.total_refunded_cents,
        bookings_count=summary.bookings_count,
    )

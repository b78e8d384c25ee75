from datetime import datetime

from pydantic import BaseModel


class EscrowHoldResponse(BaseModel):
    hold_id: str
    booking_id: str
    amount_cents: int
    commission_cents: int
    payout_cents: int
    status: str
    created_at: datetime | None = None


class ProviderEscrowResponse(BaseModel):
    provider_id: str
    currency: str
    pending_balance_cents: int
    available_balance_cents: int
    balance_cents: int
    pending_holds: list[EscrowHoldResponse]


class PlatformRevenueResponse(BaseModel):
    total_revenue_cents: int
    total_commission_cents: int
    total_paid_out_cents: int
    total_pending_cents: int
    total_refunded_cents: int
    bookings_count: int

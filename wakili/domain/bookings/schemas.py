from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from wakili.domain.bookings.statuses import BookingStatus, ConsultationType, PartyRole


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class IntervalRequest(BaseModel):
    scheduled_start: datetime
    scheduled_end: datetime

    @model_validator(mode="after")
    def validate_interval(self) -> "IntervalRequest":
        self.scheduled_start = _as_utc(self.scheduled_start)
        self.scheduled_end = _as_utc(self.scheduled_end)
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        return self


class BookingCreateRequest(IntervalRequest):
    provider_id: str
    consultation_type: ConsultationType = ConsultationType.VIDEO


class BookingRescheduleRequest(IntervalRequest):
    pass


class BookingCancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class BookingListQuery(BaseModel):
    status: BookingStatus | None = None
    upcoming: bool = False


class BookingResponse(BaseModel):
    booking_id: str
    client_id: str
    provider_id: str
    consultation_type: str
    status: str
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    original_amount_cents: int
    client_payment_cents: int
    first_consult_discount: bool
    platform_commission_bps: int
    platform_commission_rate: Decimal
    platform_commission_cents: int
    provider_payout_cents: int
    client_payment_status: str
    payout_status: str
    payment_reference: str | None = None
    client_confirmed: bool
    provider_confirmed: bool
    confirmed_by_system: bool
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None


class CompletionResponse(BaseModel):
    booking_id: str
    confirmed_by: PartyRole
    both_confirmed: bool
    payout_released: bool
    status: str


class PaymentCallbackRequest(BaseModel):
    booking_id: str
    payment_reference: str = Field(min_length=1, max_length=128)
    amount_cents: int = Field(gt=0)
    receipt_number: str | None = Field(None, max_length=64)


class PaymentCallbackResponse(BaseModel):
    booking_id: str
    status: str
    duplicate: bool
    hold_id: str | None = None

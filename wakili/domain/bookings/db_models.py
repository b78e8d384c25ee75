import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DDL, Boolean, DateTime, ForeignKey, Index, Integer, String, event, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wakili.domain.bookings.statuses import BookingStatus, ClientPaymentStatus, PayoutStatus
from wakili.domain.providers.db_models import ClientProfile, ProviderProfile
from wakili.infra.db import Base

ACTIVE_BOOKING_PREDICATE = text(f"status != '{BookingStatus.CANCELLED.value}'")


class ConsultationBooking(Base):
    __tablename__ = "consultation_bookings"

    booking_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    client_id: Mapped[str] = mapped_column(
        ForeignKey("client_profiles.client_id"), nullable=False, index=True
    )
    provider_id: Mapped[str] = mapped_column(
        ForeignKey("provider_profiles.provider_id"), nullable=False, index=True
    )
    consultation_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    original_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    client_payment_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    first_consult_discount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platform_commission_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_commission_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    provider_payout_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BookingStatus.PENDING_PAYMENT.value
    )
    client_payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ClientPaymentStatus.PENDING.value
    )
    payment_reference: Mapped[str | None] = mapped_column(String(128))
    receipt_number: Mapped[str | None] = mapped_column(String(64))
    client_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    client_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    provider_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_by_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PayoutStatus.PENDING.value
    )
    cancelled_by: Mapped[str | None] = mapped_column(String(16))
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    client: Mapped[ClientProfile] = relationship("ClientProfile")
    provider: Mapped[ProviderProfile] = relationship("ProviderProfile")

    __table_args__ = (
        Index("ix_consultation_bookings_status", "status"),
        Index("ix_consultation_bookings_provider_window", "provider_id", "scheduled_start", "scheduled_end"),
        Index(
            "uq_consultation_bookings_provider_start_active",
            "provider_id",
            "scheduled_start",
            unique=True,
            sqlite_where=ACTIVE_BOOKING_PREDICATE,
            postgresql_where=ACTIVE_BOOKING_PREDICATE,
        ),
    )

    @property
    def platform_commission_rate(self) -> Decimal:
        return Decimal(self.platform_commission_bps) / Decimal(10_000)


# Overlapping intervals for one provider are rejected by the database itself;
# the application-level availability check only rejects early.
BOOKING_OVERLAP_EXCLUSION_DDL = (
    "ALTER TABLE consultation_bookings ADD CONSTRAINT ex_consultation_bookings_no_overlap "
    "EXCLUDE USING gist (provider_id WITH =, tstzrange(scheduled_start, scheduled_end, '[)') WITH &&) "
    f"WHERE (status != '{BookingStatus.CANCELLED.value}')"
)

event.listen(
    ConsultationBooking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    ConsultationBooking.__table__,
    "after_create",
    DDL(BOOKING_OVERLAP_EXCLUSION_DDL).execute_if(dialect="postgresql"),
)

import uuid
from datetime import datetime, time

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wakili.infra.db import Base


class ProviderProfile(Base):
    __tablename__ = "provider_profiles"

    provider_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    hourly_rate_cents: Mapped[int | None] = mapped_column(Integer)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allows_first_consult_discount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    available_24_7: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
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

    working_hours: Mapped[list["WorkingHours"]] = relationship(
        "WorkingHours",
        back_populates="provider",
        cascade="all, delete-orphan",
    )
    blocked_slots: Mapped[list["BlockedSlot"]] = relationship(
        "BlockedSlot",
        back_populates="provider",
        cascade="all, delete-orphan",
    )


class ClientProfile(Base):
    __tablename__ = "client_profiles"

    client_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(20))
    phone_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    has_used_first_consult_discount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class WorkingHours(Base):
    __tablename__ = "provider_working_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[str] = mapped_column(
        ForeignKey("provider_profiles.provider_id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time)
    end_time: Mapped[time | None] = mapped_column(Time)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    provider: Mapped[ProviderProfile] = relationship("ProviderProfile", back_populates="working_hours")

    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", name="uq_provider_working_hours_day"),
    )


class BlockedSlot(Base):
    __tablename__ = "provider_blocked_slots"

    blocked_slot_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    provider_id: Mapped[str] = mapped_column(
        ForeignKey("provider_profiles.provider_id", ondelete="CASCADE"), nullable=False
    )
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="Unavailable")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    provider: Mapped[ProviderProfile] = relationship("ProviderProfile", back_populates="blocked_slots")

    __table_args__ = (
        Index("ix_provider_blocked_slots_window", "provider_id", "starts_at", "ends_at"),
    )

from sqlalchemy import String, Integer, DateTime, Float, Text, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import BookingStatus, ReleaseKind, enum_column_type

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reference: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    client_id: Mapped[str] = mapped_column(String(36), index=True)
    provider_id: Mapped[str] = mapped_column(String(36), index=True)
    tier: Mapped[int] = mapped_column(Integer, default=1)  # 1-4

    status: Mapped[BookingStatus] = mapped_column(enum_column_type(BookingStatus), default=BookingStatus.REQUESTED, index=True)
    release_kind: Mapped[ReleaseKind] = mapped_column(enum_column_type(ReleaseKind), nullable=True)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    address: Mapped[str] = mapped_column(String(500), default="")
    latitude: Mapped[float] = mapped_column(Float, nullable=True)
    longitude: Mapped[float] = mapped_column(Float, nullable=True)
    scope: Mapped[str] = mapped_column(Text, default="")

    price: Mapped[int] = mapped_column(Integer)  # minor currency units
    payment_method_ref: Mapped[str] = mapped_column(String(120), default="")

    completion_notes: Mapped[str] = mapped_column(Text, default="")
    confirmed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    observation_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set after a ledger invariant violation; blocks every command until an operator clears it
    halted: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class BookingEvent(Base):
    """Timeline entry. Append-only: rows are never updated or deleted."""

    __tablename__ = "booking_events"
    __table_args__ = (
        UniqueConstraint("booking_id", "seq", name="uq_booking_event_seq"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    seq: Mapped[int] = mapped_column(Integer)
    status: Mapped[BookingStatus] = mapped_column(enum_column_type(BookingStatus))
    note: Mapped[str] = mapped_column(String(1000), default="")
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

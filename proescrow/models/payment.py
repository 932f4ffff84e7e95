from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import PaymentKind, PaymentStatus, enum_column_type

class PaymentTransaction(Base):
    """One gateway capture held in escrow for a booking."""

    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    kind: Mapped[PaymentKind] = mapped_column(enum_column_type(PaymentKind, 20))
    invoice_id: Mapped[str] = mapped_column(String(36), nullable=True)
    amount: Mapped[int] = mapped_column(Integer)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0)
    transaction_id: Mapped[str] = mapped_column(String(120), index=True)
    status: Mapped[PaymentStatus] = mapped_column(enum_column_type(PaymentStatus, 20), default=PaymentStatus.CAPTURED)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    refunded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import InvoiceStatus, enum_column_type

class ScopeChangeInvoice(Base):
    __tablename__ = "scope_change_invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    amount: Mapped[int] = mapped_column(Integer)
    status: Mapped[InvoiceStatus] = mapped_column(enum_column_type(InvoiceStatus, 20), default=InvoiceStatus.PENDING)
    transaction_id: Mapped[str] = mapped_column(String(120), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

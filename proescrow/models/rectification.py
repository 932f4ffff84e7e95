from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import CaseStatus, IssueCategory, enum_column_type

class RectificationCase(Base):
    __tablename__ = "rectification_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    attempt_no: Mapped[int] = mapped_column(Integer, default=1)
    category: Mapped[IssueCategory] = mapped_column(enum_column_type(IssueCategory), default=IssueCategory.OTHER)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[CaseStatus] = mapped_column(enum_column_type(CaseStatus), default=CaseStatus.REPORTED, index=True)

    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    provider_response_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    fix_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_notes: Mapped[str] = mapped_column(Text, default="")
    dispute_reason: Mapped[str] = mapped_column(Text, default="")
    fix_completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    mini_observation_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    resolution: Mapped[str] = mapped_column(String(40), default="")  # fix_accepted, window_lapsed, withdrawn, escalated
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

from sqlalchemy import String, Integer, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import JobKind, JobStatus, enum_column_type

class ScheduledJob(Base):
    """Persisted deadline. The row, not a timer, is the source of truth."""

    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        UniqueConstraint("kind", "booking_id", "ref_id", name="uq_scheduled_job_kind_booking_ref"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[JobKind] = mapped_column(enum_column_type(JobKind, 40))
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    ref_id: Mapped[str] = mapped_column(String(36), default="")  # rectification case id, empty for booking-level jobs

    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[JobStatus] = mapped_column(enum_column_type(JobStatus, 20), default=JobStatus.PENDING, index=True)

    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

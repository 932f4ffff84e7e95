"""Persisted clock.

Deadlines are rows in ``scheduled_jobs``; Celery beat only polls them, so an
observation window that runs for days survives worker restarts. Handlers are
looked up by job kind and must be safe to run more than once: each one checks
the booking's current status before acting.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from proescrow.core.clock import as_utc, utcnow
from proescrow.core.config import settings
from proescrow.core.errors import BookingHalted, BookingNotFound, LedgerInvariantViolation
from proescrow.models.enums import JobKind, JobStatus
from proescrow.models.scheduled_job import ScheduledJob

logger = logging.getLogger(__name__)


def schedule(db: Session, kind: JobKind, booking_id: str, due_at: datetime, ref_id: str = "") -> ScheduledJob:
    """Create or re-arm the job for (kind, booking, ref). Does not commit."""
    job = db.query(ScheduledJob).filter_by(kind=kind, booking_id=booking_id, ref_id=ref_id).first()
    if job is None:
        job = ScheduledJob(
            id=str(uuid.uuid4()),
            kind=kind,
            booking_id=booking_id,
            ref_id=ref_id,
            attempts=0,
            last_error="",
        )
        db.add(job)
    job.due_at = due_at
    job.next_run_at = due_at
    job.status = JobStatus.PENDING
    job.finished_at = None
    db.flush()
    return job


def get_job(db: Session, kind: JobKind, booking_id: str, ref_id: str = "") -> ScheduledJob | None:
    return db.query(ScheduledJob).filter_by(kind=kind, booking_id=booking_id, ref_id=ref_id).first()


def rearm(db: Session, kind: JobKind, booking_id: str, now: datetime, ref_id: str = "") -> ScheduledJob | None:
    """Put a deferred job back on the clock at its original deadline, or now if that has passed."""
    job = get_job(db, kind, booking_id, ref_id)
    if job is None or job.status in (JobStatus.DONE, JobStatus.CANCELLED):
        return None
    job.status = JobStatus.PENDING
    job.next_run_at = max(as_utc(job.due_at), now)
    return job


def cancel_jobs(db: Session, booking_id: str, kinds: list[JobKind] | None = None, ref_id: str | None = None, now: datetime | None = None) -> int:
    q = db.query(ScheduledJob).filter(
        ScheduledJob.booking_id == booking_id,
        ScheduledJob.status.in_([JobStatus.PENDING, JobStatus.DEFERRED]),
    )
    if kinds:
        q = q.filter(ScheduledJob.kind.in_(kinds))
    if ref_id is not None:
        q = q.filter(ScheduledJob.ref_id == ref_id)
    jobs = q.all()
    for job in jobs:
        job.status = JobStatus.CANCELLED
        job.finished_at = now or utcnow()
    return len(jobs)


def backoff_seconds(attempts: int) -> int:
    delay = settings.JOB_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0))
    return min(delay, settings.JOB_RETRY_MAX_SECONDS)


def _handlers() -> dict:
    from proescrow.services import booking_service, rectification_service

    return {
        JobKind.AUTO_RELEASE: booking_service.handle_auto_release,
        JobKind.RECTIFICATION_RESPONSE: rectification_service.handle_response_deadline,
        JobKind.RECTIFICATION_FIX_DEADLINE: rectification_service.handle_fix_deadline,
        JobKind.RECTIFICATION_DISPUTE: rectification_service.handle_dispute_deadline,
        JobKind.MINI_OBSERVATION_END: rectification_service.handle_mini_observation_end,
    }


def run_job(db: Session, job_id: str, now: datetime | None = None) -> JobStatus | None:
    """Run one due job under its booking's lock. Returns the job's new status, or None if skipped."""
    from proescrow.services.locking import halt_booking, lock_booking

    now = now or utcnow()
    handlers = _handlers()
    job = db.get(ScheduledJob, job_id)
    if job is None:
        return None
    booking_id = job.booking_id
    try:
        lock_booking(db, booking_id)
        job = db.execute(
            select(ScheduledJob).where(ScheduledJob.id == job_id).with_for_update()
        ).scalar_one()
        if job.status != JobStatus.PENDING or as_utc(job.next_run_at) > now:
            db.rollback()
            return None
        outcome = handlers[job.kind](db, job, now)
        job.status = outcome
        if outcome == JobStatus.DONE:
            job.finished_at = now
        job.last_error = ""
        db.commit()
        logger.info("job %s (%s) for booking %s -> %s", job_id, job.kind.value, booking_id, outcome.value)
        return outcome
    except BookingHalted:
        db.rollback()
        logger.warning("job %s skipped: booking %s is halted", job_id, booking_id)
        return None
    except LedgerInvariantViolation as e:
        db.rollback()
        halt_booking(db, booking_id, str(e))
        return None
    except BookingNotFound:
        db.rollback()
        job = db.get(ScheduledJob, job_id)
        job.status = JobStatus.CANCELLED
        job.finished_at = now
        db.commit()
        return JobStatus.CANCELLED
    except Exception as e:
        # The obligation is never dropped: record the failure and try again later.
        db.rollback()
        job = db.get(ScheduledJob, job_id)
        if job is None:
            raise
        job.attempts = (job.attempts or 0) + 1
        job.last_error = f"{type(e).__name__}: {e}"[:2000]
        job.next_run_at = now + timedelta(seconds=backoff_seconds(job.attempts))
        db.commit()
        logger.warning(
            "job %s (%s) for booking %s failed (attempt %s), retrying at %s",
            job_id, job.kind.value, booking_id, job.attempts, job.next_run_at.isoformat(), exc_info=True,
        )
        return JobStatus.PENDING


def run_due_jobs(db: Session, now: datetime | None = None, limit: int | None = None) -> dict:
    now = now or utcnow()
    limit = limit or settings.JOB_BATCH_SIZE
    due_ids = [
        row[0]
        for row in db.query(ScheduledJob.id)
        .filter(ScheduledJob.status == JobStatus.PENDING, ScheduledJob.next_run_at <= now)
        .order_by(ScheduledJob.next_run_at.asc())
        .limit(limit)
        .all()
    ]
    db.rollback()
    counts = {"due": len(due_ids), "done": 0, "deferred": 0, "retrying": 0, "skipped": 0}
    for job_id in due_ids:
        outcome = run_job(db, job_id, now=now)
        if outcome == JobStatus.DONE or outcome == JobStatus.CANCELLED:
            counts["done"] += 1
        elif outcome == JobStatus.DEFERRED:
            counts["deferred"] += 1
        elif outcome == JobStatus.PENDING:
            counts["retrying"] += 1
        else:
            counts["skipped"] += 1
    return counts

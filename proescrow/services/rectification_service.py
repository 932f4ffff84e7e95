"""Client-reported defects during the observation window.

Reporting an issue freezes the whole escrow (even a commitment that was
already paid out stays paid, but nothing further can move) until the case is
resolved or escalated to support. Resolving lifts only the case's own freeze.
A resolved case puts the booking back on the observation clock; the original
auto-release deadline is re-armed, not reset.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from proescrow.core.clock import as_utc, utcnow
from proescrow.core.config import get_tier_config, settings
from proescrow.core.errors import InvalidTransition, NotFound
from proescrow.models.booking import Booking
from proescrow.models.enums import BookingStatus, CaseStatus, IssueCategory, JobKind, JobStatus
from proescrow.models.escrow import EscrowLedger
from proescrow.models.rectification import RectificationCase
from proescrow.models.scheduled_job import ScheduledJob
from proescrow.services import escrow_service, notification_service, scheduler_service
from proescrow.services.audit_service import log_audit
from proescrow.services.booking_service import append_event, open_case, require_status, transition
from proescrow.services.locking import commit_checked, lock_booking, lock_ledger

logger = logging.getLogger(__name__)

# frozen_reason while a case holds escrow
FREEZE_REASON = "rectification"

_CASE_JOBS = [
    JobKind.RECTIFICATION_RESPONSE,
    JobKind.RECTIFICATION_FIX_DEADLINE,
    JobKind.RECTIFICATION_DISPUTE,
    JobKind.MINI_OBSERVATION_END,
]


def _load_case(db: Session, case_id: str) -> tuple[Booking, RectificationCase]:
    case = db.get(RectificationCase, case_id)
    if case is None:
        raise NotFound(f"rectification case {case_id} not found")
    booking = lock_booking(db, case.booking_id)
    db.refresh(case)
    return booking, case


def _require_case(case: RectificationCase, command: str, booking: Booking, *allowed: CaseStatus) -> None:
    if case.status not in allowed:
        raise InvalidTransition(command, booking.status.value, f"cannot {command} a case that is {case.status.value}")


def report_issue(
    db: Session,
    booking_id: str,
    description: str,
    category: IssueCategory = IssueCategory.OTHER,
    actor_id: str = "",
    now: datetime | None = None,
) -> RectificationCase:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "report issue", BookingStatus.OBSERVATION)
    ledger = lock_ledger(db, booking_id)

    previous = open_case(db, booking_id)
    if previous is not None:
        # the client is rejecting the re-fix; the earlier case is superseded
        previous.status = CaseStatus.RESOLVED
        previous.resolution = "reopened"
        previous.resolved_at = now
        scheduler_service.cancel_jobs(db, booking_id, _CASE_JOBS, ref_id=previous.id, now=now)

    attempt_no = db.query(RectificationCase).filter(RectificationCase.booking_id == booking_id).count() + 1
    case = RectificationCase(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        attempt_no=attempt_no,
        category=category,
        description=description or "",
        status=CaseStatus.REPORTED,
        reported_at=now,
        provider_response_deadline=now + timedelta(hours=settings.RECTIFICATION_RESPONSE_HOURS),
        provider_notes="",
        dispute_reason="",
        resolution="",
    )
    db.add(case)
    if ledger.freeze(FREEZE_REASON, now):
        notification_service.emit(db, "escrow.frozen", booking, reason=FREEZE_REASON)
    db.flush()

    if attempt_no > settings.MAX_RECTIFICATION_ATTEMPTS:
        _escalate(db, booking, case, ledger, f"issue reported {attempt_no} times", now)
    else:
        transition(db, booking, BookingStatus.RECTIFICATION, "report issue", f"{category.value}: {description}"[:1000], now)
        scheduler_service.schedule(db, JobKind.RECTIFICATION_RESPONSE, booking_id, case.provider_response_deadline, ref_id=case.id)
        notification_service.emit(
            db, "rectification.reported", booking,
            caseId=case.id, category=category.value, responseDeadline=case.provider_response_deadline.isoformat(),
        )
    log_audit(db, actor_id or booking.client_id, "rectification.report", "rectification_case", case.id, {"category": category.value})
    commit_checked(db, ledger)
    return case


def accept_and_schedule(
    db: Session,
    case_id: str,
    fix_date: datetime | None = None,
    notes: str = "",
    actor_id: str = "",
    now: datetime | None = None,
) -> RectificationCase:
    """Provider accepts the report and (optionally) books the re-fix visit."""
    now = now or utcnow()
    fix_date = as_utc(fix_date)
    booking, case = _load_case(db, case_id)
    require_status(booking, "accept fix", BookingStatus.RECTIFICATION)
    _require_case(case, "accept", booking, CaseStatus.REPORTED)
    fix_deadline = now + timedelta(hours=settings.RECTIFICATION_FIX_DEADLINE_HOURS)
    if fix_date is not None and fix_date > fix_deadline:
        raise ValueError(f"fix must be scheduled before {fix_deadline.isoformat()}")

    case.status = CaseStatus.FIX_SCHEDULED if fix_date is not None else CaseStatus.ACCEPTED
    case.fix_date = fix_date
    case.provider_notes = notes or ""
    scheduler_service.cancel_jobs(db, booking.id, [JobKind.RECTIFICATION_RESPONSE], ref_id=case.id, now=now)
    scheduler_service.schedule(db, JobKind.RECTIFICATION_FIX_DEADLINE, booking.id, fix_deadline, ref_id=case.id)
    note = f"fix scheduled for {fix_date.isoformat()}" if fix_date is not None else "provider accepted the issue"
    append_event(db, booking, BookingStatus.RECTIFICATION, note, now)
    notification_service.emit(db, "rectification.accepted", booking, caseId=case.id, fixDate=fix_date)
    log_audit(db, actor_id or booking.provider_id, "rectification.accept", "rectification_case", case.id, {"fix_date": fix_date})
    db.commit()
    return case


def complete_fix(db: Session, case_id: str, notes: str = "", actor_id: str = "", now: datetime | None = None) -> RectificationCase:
    """Provider reports the re-fix done. Opens a short observation window; escrow stays frozen."""
    now = now or utcnow()
    booking, case = _load_case(db, case_id)
    require_status(booking, "complete fix", BookingStatus.RECTIFICATION)
    _require_case(case, "complete fix", booking, CaseStatus.ACCEPTED, CaseStatus.FIX_SCHEDULED)

    days = min(settings.MINI_OBSERVATION_DAYS, get_tier_config(booking.tier)["observation_days"])
    case.status = CaseStatus.FIX_COMPLETE
    case.fix_completed_at = now
    case.mini_observation_ends_at = now + timedelta(days=days)
    if notes:
        case.provider_notes = (case.provider_notes + "\n" + notes).strip()
    scheduler_service.cancel_jobs(db, booking.id, [JobKind.RECTIFICATION_FIX_DEADLINE], ref_id=case.id, now=now)
    scheduler_service.schedule(db, JobKind.MINI_OBSERVATION_END, booking.id, case.mini_observation_ends_at, ref_id=case.id)
    transition(
        db, booking, BookingStatus.OBSERVATION, "complete fix",
        f"re-fix done, re-inspection until {case.mini_observation_ends_at.isoformat()}", now,
    )
    notification_service.emit(db, "rectification.fix_complete", booking, caseId=case.id, windowEndsAt=case.mini_observation_ends_at)
    log_audit(db, actor_id or booking.provider_id, "rectification.fix_complete", "rectification_case", case.id)
    db.commit()
    return case


def confirm_fix(db: Session, case_id: str, actor_id: str = "", now: datetime | None = None) -> RectificationCase:
    """Client accepts the re-inspection before the short window lapses."""
    now = now or utcnow()
    booking, case = _load_case(db, case_id)
    require_status(booking, "confirm fix", BookingStatus.OBSERVATION)
    _require_case(case, "confirm fix", booking, CaseStatus.FIX_COMPLETE)
    ledger = lock_ledger(db, booking.id)
    _resolve(db, booking, case, ledger, "fix_accepted", now)
    log_audit(db, actor_id or booking.client_id, "rectification.confirm_fix", "rectification_case", case.id)
    commit_checked(db, ledger)
    return case


def dispute(db: Session, case_id: str, reason: str = "", actor_id: str = "", now: datetime | None = None) -> RectificationCase:
    """Provider rejects the report. Escalates to support if nobody backs down in time."""
    now = now or utcnow()
    booking, case = _load_case(db, case_id)
    require_status(booking, "dispute issue", BookingStatus.RECTIFICATION)
    _require_case(case, "dispute", booking, CaseStatus.REPORTED)

    case.status = CaseStatus.DISPUTED
    case.dispute_reason = reason or ""
    escalate_at = now + timedelta(hours=settings.RECTIFICATION_DISPUTE_ESCALATE_HOURS)
    scheduler_service.cancel_jobs(db, booking.id, [JobKind.RECTIFICATION_RESPONSE], ref_id=case.id, now=now)
    scheduler_service.schedule(db, JobKind.RECTIFICATION_DISPUTE, booking.id, escalate_at, ref_id=case.id)
    append_event(db, booking, BookingStatus.RECTIFICATION, f"provider disputed the issue: {reason}"[:1000], now)
    notification_service.emit(db, "rectification.disputed", booking, caseId=case.id, escalatesAt=escalate_at)
    log_audit(db, actor_id or booking.provider_id, "rectification.dispute", "rectification_case", case.id, {"reason": reason})
    db.commit()
    return case


def withdraw(db: Session, case_id: str, actor_id: str = "", now: datetime | None = None) -> RectificationCase:
    """Client withdraws the report; the observation clock resumes."""
    now = now or utcnow()
    booking, case = _load_case(db, case_id)
    require_status(booking, "withdraw issue", BookingStatus.RECTIFICATION)
    _require_case(
        case, "withdraw", booking,
        CaseStatus.REPORTED, CaseStatus.ACCEPTED, CaseStatus.FIX_SCHEDULED, CaseStatus.DISPUTED,
    )
    ledger = lock_ledger(db, booking.id)
    _resolve(db, booking, case, ledger, "withdrawn", now)
    log_audit(db, actor_id or booking.client_id, "rectification.withdraw", "rectification_case", case.id)
    commit_checked(db, ledger)
    return case


def escalate(db: Session, case_id: str, reason: str = "", actor_id: str = "", now: datetime | None = None) -> RectificationCase:
    """Either party hands an open case to support without waiting for its deadline."""
    now = now or utcnow()
    booking, case = _load_case(db, case_id)
    require_status(booking, "escalate issue", BookingStatus.RECTIFICATION, BookingStatus.OBSERVATION)
    _require_case(
        case, "escalate", booking,
        CaseStatus.REPORTED, CaseStatus.ACCEPTED, CaseStatus.FIX_SCHEDULED, CaseStatus.FIX_COMPLETE, CaseStatus.DISPUTED,
    )
    ledger = lock_ledger(db, booking.id)
    _escalate(db, booking, case, ledger, (reason or "escalated to support")[:1000], now)
    log_audit(db, actor_id, "rectification.escalate", "rectification_case", case.id, {"reason": reason})
    commit_checked(db, ledger)
    return case


def _resolve(db: Session, booking: Booking, case: RectificationCase, ledger: EscrowLedger, resolution: str, now: datetime) -> None:
    case.status = CaseStatus.RESOLVED
    case.resolution = resolution
    case.resolved_at = now
    scheduler_service.cancel_jobs(db, booking.id, _CASE_JOBS, ref_id=case.id, now=now)
    if booking.status == BookingStatus.RECTIFICATION:
        transition(db, booking, BookingStatus.OBSERVATION, "resolve issue", f"issue resolved ({resolution})", now)
    else:
        append_event(db, booking, booking.status, f"issue resolved ({resolution})", now)
    # a support or safety freeze outlives the case
    if ledger.frozen_reason == FREEZE_REASON and ledger.unfreeze():
        notification_service.emit(db, "escrow.unfrozen", booking)
    scheduler_service.rearm(db, JobKind.AUTO_RELEASE, booking.id, now)
    notification_service.emit(db, "rectification.resolved", booking, caseId=case.id, resolution=resolution)
    logger.info("booking %s: case %s resolved (%s)", booking.id, case.id, resolution)


def _escalate(db: Session, booking: Booking, case: RectificationCase, ledger: EscrowLedger, reason: str, now: datetime) -> None:
    case.status = CaseStatus.ESCALATED
    case.resolution = "escalated"
    case.resolved_at = now
    ledger.freeze(FREEZE_REASON, now)
    scheduler_service.cancel_jobs(db, booking.id, now=now)
    transition(db, booking, BookingStatus.DISPUTED, "escalate", reason, now)
    notification_service.emit(db, "rectification.escalated", booking, caseId=case.id, reason=reason)
    logger.warning("booking %s: case %s escalated to support (%s)", booking.id, case.id, reason)


def _deadline_job(db: Session, job: ScheduledJob, now: datetime, waiting: tuple[CaseStatus, ...], reason: str) -> JobStatus:
    booking = db.get(Booking, job.booking_id)
    case = db.get(RectificationCase, job.ref_id)
    if case is None or case.status not in waiting or booking.status != BookingStatus.RECTIFICATION:
        return JobStatus.DONE
    ledger = lock_ledger(db, booking.id)
    _escalate(db, booking, case, ledger, reason, now)
    escrow_service.assert_consistent(ledger)
    return JobStatus.DONE


def handle_response_deadline(db: Session, job: ScheduledJob, now: datetime) -> JobStatus:
    return _deadline_job(db, job, now, (CaseStatus.REPORTED,), "provider did not respond in time")


def handle_fix_deadline(db: Session, job: ScheduledJob, now: datetime) -> JobStatus:
    return _deadline_job(db, job, now, (CaseStatus.ACCEPTED, CaseStatus.FIX_SCHEDULED), "fix was not completed in time")


def handle_dispute_deadline(db: Session, job: ScheduledJob, now: datetime) -> JobStatus:
    return _deadline_job(db, job, now, (CaseStatus.DISPUTED,), "dispute unresolved")


def handle_mini_observation_end(db: Session, job: ScheduledJob, now: datetime) -> JobStatus:
    booking = db.get(Booking, job.booking_id)
    case = db.get(RectificationCase, job.ref_id)
    if case is None or case.status != CaseStatus.FIX_COMPLETE or booking.status != BookingStatus.OBSERVATION:
        return JobStatus.DONE
    ledger = lock_ledger(db, booking.id)
    _resolve(db, booking, case, ledger, "window_lapsed", now)
    escrow_service.assert_consistent(ledger)
    return JobStatus.DONE

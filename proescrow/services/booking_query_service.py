"""Read-only views. Nothing here mutates state; countdowns are projections of stored deadlines."""
from sqlalchemy.orm import Session

from proescrow.core.clock import as_utc
from proescrow.core.errors import BookingNotFound
from proescrow.models.booking import Booking, BookingEvent
from proescrow.models.enums import JobKind, JobStatus
from proescrow.services import escrow_service, otp_service, scheduler_service
from proescrow.services.booking_service import open_case
from proescrow.services.scope_change_service import list_for_booking


def _iso(dt):
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


def timeline(db: Session, booking_id: str) -> list[dict]:
    events = (
        db.query(BookingEvent)
        .filter(BookingEvent.booking_id == booking_id)
        .order_by(BookingEvent.seq.asc())
        .all()
    )
    return [
        {"seq": e.seq, "status": e.status.value, "occurredAt": _iso(e.occurred_at), "note": e.note or None}
        for e in events
    ]


def escrow_view(db: Session, booking_id: str) -> dict:
    get_booking(db, booking_id)
    return escrow_service.snapshot(escrow_service.get_ledger(db, booking_id))


def booking_view(db: Session, booking_id: str) -> dict:
    b = get_booking(db, booking_id)
    out = {
        "id": b.id,
        "reference": b.reference,
        "clientId": b.client_id,
        "providerId": b.provider_id,
        "tier": b.tier,
        "status": b.status.value,
        "releaseKind": b.release_kind.value if b.release_kind else None,
        "scheduledAt": _iso(b.scheduled_at),
        "location": {"address": b.address, "latitude": b.latitude, "longitude": b.longitude},
        "scope": b.scope,
        "price": b.price,
        "completionNotes": b.completion_notes or None,
        "confirmedAt": _iso(b.confirmed_at),
        "checkedInAt": _iso(b.checked_in_at),
        "completedAt": _iso(b.completed_at),
        "observationEndsAt": _iso(b.observation_ends_at),
        "halted": bool(b.halted),
        "escrow": escrow_view(db, b.id),
        "timeline": timeline(db, b.id),
    }

    otp = otp_service.get_active(db, b.id)
    out["otpExpiresAt"] = _iso(otp.expires_at) if otp and not otp.verified else None

    job = scheduler_service.get_job(db, JobKind.AUTO_RELEASE, b.id)
    if job and job.status in (JobStatus.PENDING, JobStatus.DEFERRED):
        out["scheduledRelease"] = {"at": _iso(job.due_at), "deferred": job.status == JobStatus.DEFERRED}
    else:
        out["scheduledRelease"] = None

    case = open_case(db, b.id)
    out["openCase"] = case_view(case) if case else None
    out["scopeChanges"] = [invoice_view(inv) for inv in list_for_booking(db, b.id)]
    return out


def case_view(case) -> dict:
    return {
        "id": case.id,
        "bookingId": case.booking_id,
        "attemptNo": case.attempt_no,
        "category": case.category.value,
        "description": case.description,
        "status": case.status.value,
        "reportedAt": _iso(case.reported_at),
        "providerResponseDeadline": _iso(case.provider_response_deadline),
        "fixDate": _iso(case.fix_date),
        "miniObservationEndsAt": _iso(case.mini_observation_ends_at),
        "resolution": case.resolution or None,
    }


def invoice_view(inv) -> dict:
    return {
        "id": inv.id,
        "bookingId": inv.booking_id,
        "description": inv.description,
        "amount": inv.amount,
        "status": inv.status.value,
        "createdAt": _iso(inv.created_at),
        "decidedAt": _iso(inv.decided_at),
    }

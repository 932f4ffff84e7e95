"""Emergency SOS.

The one command with no status precondition beyond the booking not having
been refunded: escrow is frozen and the booking forced to ``disputed``
whatever else was in flight.
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from proescrow.core.clock import utcnow
from proescrow.core.errors import InvalidTransition
from proescrow.models.enums import BookingStatus
from proescrow.models.safety_incident import SafetyIncident
from proescrow.services import notification_service, scheduler_service
from proescrow.services.audit_service import log_audit
from proescrow.services.booking_service import is_refunded_status, transition
from proescrow.services.locking import commit_checked, lock_booking, lock_ledger

logger = logging.getLogger(__name__)


def trigger(db: Session, booking_id: str, triggered_by: str, note: str = "", now: datetime | None = None) -> SafetyIncident:
    now = now or utcnow()
    # halted bookings still accept SOS; a frozen ledger is always safe
    booking = lock_booking(db, booking_id, allow_halted=True)
    if is_refunded_status(booking.status):
        raise InvalidTransition("trigger SOS", booking.status.value, f"booking is already {booking.status.value}")
    ledger = lock_ledger(db, booking_id)

    incident = SafetyIncident(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        triggered_by=triggered_by or "",
        previous_status=booking.status.value,
        note=note or "",
        triggered_at=now,
    )
    db.add(incident)
    if ledger.freeze("safety", now):
        notification_service.emit(db, "escrow.frozen", booking, reason="safety")
    scheduler_service.cancel_jobs(db, booking_id, now=now)
    transition(db, booking, BookingStatus.DISPUTED, "trigger SOS", f"safety incident: {note}".strip(": ")[:1000], now)
    notification_service.emit(db, "safety.triggered", booking, incidentId=incident.id, triggeredBy=triggered_by)
    log_audit(db, triggered_by, "safety.trigger", "booking", booking_id, {"previous_status": incident.previous_status})
    logger.warning("booking %s: SOS triggered by %s (was %s)", booking_id, triggered_by, incident.previous_status)
    if booking.halted:
        db.commit()
    else:
        commit_checked(db, ledger)
    return incident


def list_incidents(db: Session, booking_id: str) -> list[SafetyIncident]:
    return (
        db.query(SafetyIncident)
        .filter(SafetyIncident.booking_id == booking_id)
        .order_by(SafetyIncident.triggered_at.asc())
        .all()
    )

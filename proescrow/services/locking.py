import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from proescrow.core.errors import BookingHalted, BookingNotFound, LedgerInvariantViolation
from proescrow.models.booking import Booking
from proescrow.models.escrow import EscrowLedger
from proescrow.services.escrow_service import assert_consistent

logger = logging.getLogger(__name__)


def lock_booking(db: Session, booking_id: str, allow_halted: bool = False) -> Booking:
    """Take the per-booking row lock. Every mutation of a booking starts here."""
    booking = db.execute(
        select(Booking).where(Booking.id == booking_id).with_for_update()
    ).scalar_one_or_none()
    if booking is None:
        raise BookingNotFound(booking_id)
    if booking.halted and not allow_halted:
        raise BookingHalted(booking_id)
    return booking


def lock_ledger(db: Session, booking_id: str) -> EscrowLedger:
    ledger = db.execute(
        select(EscrowLedger).where(EscrowLedger.booking_id == booking_id).with_for_update()
    ).scalar_one_or_none()
    if ledger is None:
        raise LedgerInvariantViolation(f"booking {booking_id} has no escrow ledger")
    return ledger


def halt_booking(db: Session, booking_id: str, reason: str) -> None:
    db.execute(update(Booking).where(Booking.id == booking_id).values(halted=True))
    db.commit()
    logger.critical("booking %s halted: %s", booking_id, reason)


def commit_checked(db: Session, ledger: EscrowLedger) -> None:
    """Check ledger invariants, then commit. A violation rolls back and halts the booking."""
    try:
        assert_consistent(ledger)
    except LedgerInvariantViolation as e:
        booking_id = ledger.booking_id
        db.rollback()
        halt_booking(db, booking_id, str(e))
        raise
    db.commit()

"""Support tooling: human decisions the engine never makes on its own."""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from proescrow.core.clock import utcnow
from proescrow.core.errors import InvalidTransition
from proescrow.models.booking import Booking
from proescrow.models.enums import BookingStatus, CaseStatus, JobKind, ReleaseKind
from proescrow.models.rectification import RectificationCase
from proescrow.services import escrow_service, notification_service, scheduler_service
from proescrow.services.audit_service import log_audit
from proescrow.services.booking_service import append_event, open_case, require_status, transition
from proescrow.services.locking import commit_checked, lock_booking, lock_ledger
from proescrow.services.payment_gateway import get_payment_gateway
from proescrow.services.rectification_service import FREEZE_REASON

logger = logging.getLogger(__name__)

OUTCOMES = ("release", "refund", "split")


def freeze(db: Session, booking_id: str, reason: str, actor_id: str, now: datetime | None = None):
    """Hold escrow for a human review. Takes over a freeze that a case or incident already placed."""
    now = now or utcnow()
    reason = (reason or "support")[:40]
    booking = lock_booking(db, booking_id, allow_halted=True)
    ledger = lock_ledger(db, booking_id)
    if ledger.freeze(reason, now):
        append_event(db, booking, booking.status, f"escrow frozen by support: {reason}", now)
        notification_service.emit(db, "escrow.frozen", booking, reason=reason)
    elif ledger.frozen_reason != reason:
        append_event(db, booking, booking.status, f"support took over the {ledger.frozen_reason} freeze: {reason}", now)
        ledger.frozen_reason = reason
    log_audit(db, actor_id, "escrow.freeze", "booking", booking_id, {"reason": reason})
    db.commit()
    return ledger


def unfreeze(db: Session, booking_id: str, actor_id: str, now: datetime | None = None):
    """Lift a support freeze. Cases and disputes are resolved through their own commands.

    During a re-inspection window the open case still needs escrow held, so
    the freeze is handed back to the case instead of lifted.
    """
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    if booking.status in (BookingStatus.RECTIFICATION, BookingStatus.DISPUTED):
        raise InvalidTransition("unfreeze", booking.status.value, f"resolve the {booking.status.value} first")
    ledger = lock_ledger(db, booking_id)
    if ledger.frozen and open_case(db, booking_id) is not None:
        if ledger.frozen_reason != FREEZE_REASON:
            ledger.frozen_reason = FREEZE_REASON
            append_event(db, booking, booking.status, "support hold lifted, issue still open", now)
    elif ledger.unfreeze():
        append_event(db, booking, booking.status, "escrow unfrozen by support", now)
        notification_service.emit(db, "escrow.unfrozen", booking)
        scheduler_service.rearm(db, JobKind.AUTO_RELEASE, booking_id, now)
    log_audit(db, actor_id, "escrow.unfreeze", "booking", booking_id)
    commit_checked(db, ledger)
    return ledger


def _close_cases(db: Session, booking: Booking, outcome: str, now: datetime) -> None:
    cases = (
        db.query(RectificationCase)
        .filter(RectificationCase.booking_id == booking.id, RectificationCase.status != CaseStatus.RESOLVED)
        .all()
    )
    for case in cases:
        case.status = CaseStatus.RESOLVED
        case.resolution = f"support_{outcome}"
        case.resolved_at = now
        notification_service.emit(db, "rectification.resolved", booking, caseId=case.id, resolution=case.resolution)


def resolve_dispute(
    db: Session,
    booking_id: str,
    outcome: str,
    note: str,
    actor_id: str,
    gateway=None,
    refund_amount: int | None = None,
    now: datetime | None = None,
):
    """Close a disputed booking.

    ``release`` pays the provider whatever is still held, ``refund`` returns it
    to the client and ``split`` refunds ``refund_amount`` and releases the rest.
    A booking disputed after everything was paid out closes with ``release``
    and no money moves.
    """
    now = now or utcnow()
    if outcome not in OUTCOMES:
        raise ValueError(f"outcome must be one of {', '.join(OUTCOMES)}")
    if outcome == "split" and (refund_amount is None or refund_amount <= 0):
        raise ValueError("a split ruling needs a refund amount > 0")
    booking = lock_booking(db, booking_id)
    require_status(booking, "resolve dispute", BookingStatus.DISPUTED)
    ledger = lock_ledger(db, booking_id)
    if ledger.refunded:
        raise InvalidTransition("resolve dispute", booking.status.value, "dispute already settled")
    held = ledger.unreleased_amount
    if outcome != "release" and held == 0:
        raise InvalidTransition("resolve dispute", booking.status.value, "nothing left in escrow to refund")
    if outcome == "split" and refund_amount >= held:
        raise ValueError(f"refund amount must be below the {held} still held")

    to_refund = {"release": 0, "refund": held, "split": refund_amount}[outcome]
    if to_refund > 0:
        gateway = gateway or get_payment_gateway()
        escrow_service.refund_captures(db, gateway, booking, amount=(ledger.refunded_amount or 0) + to_refund, now=now)
        booking = lock_booking(db, booking_id)
        ledger = lock_ledger(db, booking_id)

    _close_cases(db, booking, outcome, now)
    ledger.unfreeze()
    if outcome == "refund":
        ledger.refund(held, now)
        append_event(db, booking, booking.status, note or f"refunded {held} by support", now)
        notification_service.emit(db, "escrow.refunded", booking, amount=held)
    else:
        paid_before = ledger.released_amount
        if outcome == "split":
            ledger.split(refund_amount, now)
            notification_service.emit(db, "escrow.refunded", booking, amount=refund_amount)
        else:
            ledger.release_commitment(now)
            ledger.release_balance(now)
        paid = ledger.released_amount - paid_before
        if paid > 0 or booking.release_kind is None:
            booking.release_kind = ReleaseKind.SUPPORT_RELEASED
        transition(db, booking, BookingStatus.RELEASED, "resolve dispute", note or f"{outcome} by support", now)
        if paid > 0:
            notification_service.emit(db, "escrow.released", booking, amount=paid, releaseKind=booking.release_kind.value)
    log_audit(
        db, actor_id, "support.resolve_dispute", "booking", booking_id,
        {"outcome": outcome, "refund_amount": to_refund, "note": note},
    )
    commit_checked(db, ledger)
    logger.info("booking %s: dispute resolved by %s (%s)", booking_id, actor_id, outcome)
    return booking

import logging
import random
import string
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from proescrow.core.clock import as_utc, utcnow
from proescrow.core.config import get_tier_config, settings
from proescrow.core.errors import (
    InvalidTransition,
    OTPExpiredError,
    OTPInvalidError,
    OTPLockedError,
)
from proescrow.models.booking import Booking, BookingEvent
from proescrow.models.enums import (
    CLOSED_CASE_STATUSES,
    REFUNDED_STATUSES,
    BookingStatus,
    JobKind,
    JobStatus,
    OTPResult,
    PaymentKind,
    ReleaseKind,
)
from proescrow.models.escrow import EscrowLedger
from proescrow.models.rectification import RectificationCase
from proescrow.models.scheduled_job import ScheduledJob
from proescrow.services import escrow_service, notification_service, otp_service, scheduler_service
from proescrow.services.audit_service import log_audit
from proescrow.services.locking import commit_checked, lock_booking, lock_ledger
from proescrow.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

S = BookingStatus

# The only place that decides which status may follow which.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    S.REQUESTED: frozenset({S.CONFIRMED, S.CANCELLED, S.DISPUTED}),
    S.CONFIRMED: frozenset({S.PROVIDER_CONFIRMED, S.CANCELLED, S.DISPUTED}),
    S.PROVIDER_CONFIRMED: frozenset({S.EN_ROUTE, S.NO_SHOW, S.DISPUTED}),
    S.EN_ROUTE: frozenset({S.CHECKED_IN, S.NO_SHOW, S.DISPUTED}),
    S.CHECKED_IN: frozenset({S.COMPLETED, S.DISPUTED}),
    S.COMPLETED: frozenset({S.OBSERVATION, S.DISPUTED}),
    S.OBSERVATION: frozenset({S.RELEASED, S.RECTIFICATION, S.DISPUTED}),
    S.RECTIFICATION: frozenset({S.OBSERVATION, S.DISPUTED}),
    # Terminal states. Only a safety incident or support tooling moves these.
    S.RELEASED: frozenset({S.DISPUTED}),
    S.DISPUTED: frozenset({S.DISPUTED, S.RELEASED}),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

_OTP_ERRORS = {
    OTPResult.MISMATCH: OTPInvalidError,
    OTPResult.ALREADY_USED: OTPInvalidError,
    OTPResult.EXPIRED: OTPExpiredError,
    OTPResult.LOCKED: OTPLockedError,
}


def make_reference() -> str:
    return "PRO-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


def require_status(booking: Booking, command: str, *allowed: BookingStatus) -> None:
    if booking.status in allowed:
        return
    if booking.status.is_terminal:
        raise InvalidTransition(command, booking.status.value, f"booking is already {booking.status.value}")
    raise InvalidTransition(command, booking.status.value)


def append_event(db: Session, booking: Booking, status: BookingStatus, note: str = "", now: datetime | None = None) -> BookingEvent:
    seq = (db.query(func.max(BookingEvent.seq)).filter(BookingEvent.booking_id == booking.id).scalar() or 0) + 1
    ev = BookingEvent(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        seq=seq,
        status=status,
        note=note or "",
        occurred_at=now or utcnow(),
    )
    db.add(ev)
    db.flush()
    return ev


def transition(db: Session, booking: Booking, to: BookingStatus, command: str, note: str = "", now: datetime | None = None) -> None:
    current = booking.status
    if to not in ALLOWED_TRANSITIONS[current]:
        if current.is_terminal:
            raise InvalidTransition(command, current.value, f"booking is already {current.value}")
        raise InvalidTransition(command, current.value)
    booking.status = to
    append_event(db, booking, to, note, now)
    logger.info("booking %s: %s -> %s (%s)", booking.id, current.value, to.value, command)
    notification_service.emit(db, f"booking.{to.value}", booking, previous=current.value, note=note)


def open_case(db: Session, booking_id: str) -> RectificationCase | None:
    return (
        db.query(RectificationCase)
        .filter(
            RectificationCase.booking_id == booking_id,
            RectificationCase.status.notin_(list(CLOSED_CASE_STATUSES)),
        )
        .order_by(RectificationCase.reported_at.desc())
        .first()
    )


def create_booking(
    db: Session,
    client_id: str,
    provider_id: str,
    tier: int,
    scheduled_at: datetime,
    price: int,
    scope: str = "",
    address: str = "",
    latitude: float | None = None,
    longitude: float | None = None,
    payment_method_ref: str = "",
    now: datetime | None = None,
) -> Booking:
    now = now or utcnow()
    get_tier_config(tier)
    if price <= 0:
        raise ValueError("price must be > 0")
    if not client_id or not provider_id:
        raise ValueError("client and provider are required")
    if client_id == provider_id:
        raise ValueError("client and provider must differ")

    # reference must be unique
    for _ in range(10):
        ref = make_reference()
        if not db.query(Booking).filter(Booking.reference == ref).first():
            break
    else:
        raise ValueError("could not allocate booking reference")

    booking = Booking(
        id=str(uuid.uuid4()),
        reference=ref,
        client_id=client_id,
        provider_id=provider_id,
        tier=int(tier),
        status=S.REQUESTED,
        scheduled_at=scheduled_at,
        address=address or "",
        latitude=latitude,
        longitude=longitude,
        scope=scope or "",
        price=int(price),
        payment_method_ref=payment_method_ref or "",
        completion_notes="",
        halted=False,
        created_at=now,
        updated_at=now,
    )
    db.add(booking)
    db.add(EscrowLedger.empty(booking.id))
    db.flush()
    append_event(db, booking, S.REQUESTED, "booking requested", now)
    notification_service.emit(db, "booking.requested", booking)
    log_audit(db, client_id, "booking.create", "booking", booking.id, {"reference": ref, "price": price, "tier": tier})
    db.commit()
    db.refresh(booking)
    return booking


def confirm(db: Session, booking_id: str, actor_id: str = "", gateway=None, now: datetime | None = None) -> Booking:
    """Capture the full price into escrow and confirm the booking."""
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "confirm", S.REQUESTED)
    ledger = lock_ledger(db, booking_id)
    tier = get_tier_config(booking.tier)

    gateway = gateway or get_payment_gateway()
    escrow_service.capture(db, gateway, booking, booking.price, PaymentKind.BOOKING)

    ledger.hold(booking.price, escrow_service.commitment_for(booking.price, tier["commitment_fee_percent"]), now)
    booking.confirmed_at = now
    transition(db, booking, S.CONFIRMED, "confirm", "payment held in escrow", now)
    log_audit(db, actor_id or booking.client_id, "booking.confirm", "booking", booking.id, {"total_held": ledger.total_held})
    commit_checked(db, ledger)
    return booking


def provider_accept(db: Session, booking_id: str, actor_id: str = "", now: datetime | None = None) -> Booking:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "accept", S.CONFIRMED)
    transition(db, booking, S.PROVIDER_CONFIRMED, "accept", "provider accepted", now)
    log_audit(db, actor_id or booking.provider_id, "booking.provider_accept", "booking", booking.id)
    db.commit()
    return booking


def mark_en_route(db: Session, booking_id: str, actor_id: str = "", now: datetime | None = None) -> tuple[Booking, str]:
    """Provider is on the way. Issues the arrival code the client will read out on arrival."""
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "mark en route", S.PROVIDER_CONFIRMED)
    transition(db, booking, S.EN_ROUTE, "mark en route", "provider en route", now)
    rec, code = otp_service.issue(db, booking.id, now)
    notification_service.emit(db, "otp.issued", booking, code=code, expiresAt=rec.expires_at.isoformat(), recipient=booking.client_id)
    log_audit(db, actor_id or booking.provider_id, "booking.en_route", "booking", booking.id)
    db.commit()
    return booking, code


def regenerate_otp(db: Session, booking_id: str, actor_id: str = "", now: datetime | None = None) -> tuple[Booking, str]:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "regenerate arrival code", S.PROVIDER_CONFIRMED, S.EN_ROUTE)
    rec, code = otp_service.issue(db, booking.id, now)
    notification_service.emit(db, "otp.issued", booking, code=code, expiresAt=rec.expires_at.isoformat(), recipient=booking.client_id)
    log_audit(db, actor_id or booking.client_id, "booking.otp_regenerate", "booking", booking.id)
    db.commit()
    return booking, code


def check_in(db: Session, booking_id: str, code: str, actor_id: str = "", now: datetime | None = None) -> Booking:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "check in", S.EN_ROUTE)

    result = otp_service.verify(db, booking.id, code, now)
    if result != OTPResult.OK:
        # keep the attempt count even though the command is rejected
        db.commit()
        logger.info("booking %s: check-in rejected (%s)", booking_id, result.value)
        raise _OTP_ERRORS[result]()

    ledger = lock_ledger(db, booking_id)
    booking.checked_in_at = now
    transition(db, booking, S.CHECKED_IN, "check in", "arrival verified", now)
    # a freeze that landed first always wins over the release
    if not ledger.frozen and ledger.release_commitment(now):
        notification_service.emit(db, "escrow.commitment_released", booking, amount=ledger.commitment_amount)
    log_audit(db, actor_id or booking.provider_id, "booking.check_in", "booking", booking.id)
    commit_checked(db, ledger)
    return booking


def complete(db: Session, booking_id: str, notes: str = "", actor_id: str = "", now: datetime | None = None) -> Booking:
    """Provider checkout. Moves straight into the observation window and arms auto-release."""
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "complete", S.CHECKED_IN)
    ledger = lock_ledger(db, booking_id)
    tier = get_tier_config(booking.tier)

    booking.completion_notes = notes or ""
    booking.completed_at = now
    transition(db, booking, S.COMPLETED, "complete", notes or "work completed", now)
    release_at = now + timedelta(days=tier["observation_days"])
    booking.observation_ends_at = release_at
    transition(db, booking, S.OBSERVATION, "complete", f"observation window until {release_at.isoformat()}", now)
    scheduler_service.schedule(db, JobKind.AUTO_RELEASE, booking.id, release_at)
    log_audit(db, actor_id or booking.provider_id, "booking.complete", "booking", booking.id, {"release_at": release_at})
    commit_checked(db, ledger)
    return booking


def _release_to_provider(db: Session, booking: Booking, ledger: EscrowLedger, kind: ReleaseKind, note: str, now: datetime) -> None:
    ledger.release_commitment(now)
    ledger.release_balance(now)
    booking.release_kind = kind
    transition(db, booking, S.RELEASED, kind.value, note, now)
    notification_service.emit(db, "escrow.released", booking, amount=ledger.released_amount, releaseKind=kind.value)


def handle_auto_release(db: Session, job: ScheduledJob, now: datetime) -> JobStatus:
    """Scheduled at completed_at + observation days. Safe to run any number of times."""
    booking = db.get(Booking, job.booking_id)
    if booking.status not in (S.OBSERVATION, S.RECTIFICATION):
        return JobStatus.DONE
    ledger = lock_ledger(db, booking.id)
    if ledger.frozen or open_case(db, booking.id) is not None:
        logger.info("booking %s: auto-release deferred (frozen=%s)", booking.id, ledger.frozen)
        return JobStatus.DEFERRED
    if booking.status != S.OBSERVATION:
        return JobStatus.DEFERRED
    _release_to_provider(db, booking, ledger, ReleaseKind.AUTO_RELEASED, "observation window lapsed", now)
    escrow_service.assert_consistent(ledger)
    return JobStatus.DONE


def release_early(db: Session, booking_id: str, actor_id: str = "", now: datetime | None = None) -> Booking:
    """Client is satisfied before the window lapses and releases the balance."""
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "release", S.OBSERVATION)
    ledger = lock_ledger(db, booking_id)
    if ledger.frozen or open_case(db, booking.id) is not None:
        raise InvalidTransition("release", booking.status.value, "escrow is frozen while an issue is open")
    _release_to_provider(db, booking, ledger, ReleaseKind.EARLY_RELEASED, "released early by client", now)
    scheduler_service.cancel_jobs(db, booking.id, [JobKind.AUTO_RELEASE], now=now)
    log_audit(db, actor_id or booking.client_id, "booking.release_early", "booking", booking.id)
    commit_checked(db, ledger)
    return booking


def _refund_and_close(db: Session, booking: Booking, gateway, to: BookingStatus, command: str, note: str, actor_id: str, now: datetime) -> Booking:
    ledger = lock_ledger(db, booking.id)
    if ledger.frozen:
        raise InvalidTransition(command, booking.status.value, "escrow is frozen")
    if ledger.total_held > 0:
        gateway = gateway or get_payment_gateway()
        escrow_service.refund_captures(db, gateway, booking, now=now)
        # refund_captures may have committed partial progress; re-take the locks
        booking = lock_booking(db, booking.id)
        ledger = lock_ledger(db, booking.id)
    ledger.refund(now=now)
    transition(db, booking, to, command, note, now)
    scheduler_service.cancel_jobs(db, booking.id, now=now)
    notification_service.emit(db, "escrow.refunded", booking, amount=ledger.refunded_amount)
    log_audit(db, actor_id, f"booking.{command.replace(' ', '_')}", "booking", booking.id, {"refunded": ledger.refunded_amount, "note": note})
    commit_checked(db, ledger)
    return booking


def cancel(db: Session, booking_id: str, reason: str = "", actor_id: str = "", gateway=None, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "cancel", S.REQUESTED, S.CONFIRMED)
    return _refund_and_close(db, booking, gateway, S.CANCELLED, "cancel", reason or "cancelled", actor_id or booking.client_id, now)


def report_no_show(db: Session, booking_id: str, actor_id: str = "", gateway=None, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    booking = lock_booking(db, booking_id)
    require_status(booking, "report no-show", S.PROVIDER_CONFIRMED, S.EN_ROUTE)
    grace_ends = as_utc(booking.scheduled_at) + timedelta(minutes=settings.NO_SHOW_GRACE_MINUTES)
    if now < grace_ends:
        raise InvalidTransition(
            "report no-show", booking.status.value, f"provider has until {grace_ends.isoformat()} to arrive"
        )
    return _refund_and_close(db, booking, gateway, S.NO_SHOW, "no show", "provider did not arrive", actor_id or booking.client_id, now)


def is_refunded_status(status: BookingStatus) -> bool:
    return status in REFUNDED_STATUSES

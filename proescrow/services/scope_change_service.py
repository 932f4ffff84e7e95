import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from proescrow.core.clock import utcnow
from proescrow.core.errors import InvalidTransition, NotFound
from proescrow.models.booking import Booking
from proescrow.models.enums import ACTIVE_STATUSES, InvoiceStatus, PaymentKind
from proescrow.models.scope_change import ScopeChangeInvoice
from proescrow.services import escrow_service, notification_service
from proescrow.services.audit_service import log_audit
from proescrow.services.booking_service import append_event, require_status
from proescrow.services.locking import commit_checked, lock_booking, lock_ledger
from proescrow.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)


def _load_invoice(db: Session, invoice_id: str) -> tuple[Booking, ScopeChangeInvoice]:
    inv = db.get(ScopeChangeInvoice, invoice_id)
    if inv is None:
        raise NotFound(f"scope change invoice {invoice_id} not found")
    booking = lock_booking(db, inv.booking_id)
    db.refresh(inv)
    return booking, inv


def _require_pending(booking: Booking, inv: ScopeChangeInvoice, command: str) -> None:
    if inv.status != InvoiceStatus.PENDING:
        raise InvalidTransition(command, booking.status.value, f"invoice is already {inv.status.value}")


def request(db: Session, booking_id: str, description: str, amount: int, actor_id: str = "", now: datetime | None = None) -> ScopeChangeInvoice:
    now = now or utcnow()
    if amount <= 0:
        raise ValueError("amount must be > 0")
    booking = lock_booking(db, booking_id)
    require_status(booking, "request scope change", *ACTIVE_STATUSES)
    inv = ScopeChangeInvoice(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        description=description or "",
        amount=int(amount),
        status=InvoiceStatus.PENDING,
        transaction_id="",
        created_at=now,
    )
    db.add(inv)
    notification_service.emit(db, "scope_change.requested", booking, invoiceId=inv.id, amount=inv.amount, recipient=booking.client_id)
    log_audit(db, actor_id or booking.provider_id, "scope_change.request", "scope_change_invoice", inv.id, {"amount": amount})
    db.commit()
    return inv


def approve(db: Session, invoice_id: str, actor_id: str = "", gateway=None, now: datetime | None = None) -> ScopeChangeInvoice:
    """Client approves extra work: capture first, then add to escrow in the same commit."""
    now = now or utcnow()
    booking, inv = _load_invoice(db, invoice_id)
    _require_pending(booking, inv, "approve scope change")
    require_status(booking, "approve scope change", *ACTIVE_STATUSES)
    ledger = lock_ledger(db, booking.id)
    if ledger.frozen:
        raise InvalidTransition("approve scope change", booking.status.value, "escrow is frozen")

    gateway = gateway or get_payment_gateway()
    tx = escrow_service.capture(db, gateway, booking, inv.amount, PaymentKind.SCOPE_CHANGE, invoice_id=inv.id)

    ledger.increase_balance(inv.amount)
    booking.price += inv.amount
    inv.status = InvoiceStatus.APPROVED
    inv.transaction_id = tx.transaction_id
    inv.decided_at = now
    append_event(db, booking, booking.status, f"scope change approved: +{inv.amount}", now)
    notification_service.emit(db, "scope_change.approved", booking, invoiceId=inv.id, amount=inv.amount, totalHeld=ledger.total_held)
    log_audit(db, actor_id or booking.client_id, "scope_change.approve", "scope_change_invoice", inv.id, {"amount": inv.amount})
    commit_checked(db, ledger)
    logger.info("booking %s: scope change %s approved, held now %s", booking.id, inv.id, ledger.total_held)
    return inv


def reject(db: Session, invoice_id: str, actor_id: str = "", now: datetime | None = None) -> ScopeChangeInvoice:
    now = now or utcnow()
    booking, inv = _load_invoice(db, invoice_id)
    _require_pending(booking, inv, "reject scope change")
    inv.status = InvoiceStatus.REJECTED
    inv.decided_at = now
    notification_service.emit(db, "scope_change.rejected", booking, invoiceId=inv.id, recipient=booking.provider_id)
    log_audit(db, actor_id or booking.client_id, "scope_change.reject", "scope_change_invoice", inv.id)
    db.commit()
    return inv


def list_for_booking(db: Session, booking_id: str) -> list[ScopeChangeInvoice]:
    return (
        db.query(ScopeChangeInvoice)
        .filter(ScopeChangeInvoice.booking_id == booking_id)
        .order_by(ScopeChangeInvoice.created_at.asc())
        .all()
    )

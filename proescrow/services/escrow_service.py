import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from proescrow.core.clock import utcnow
from proescrow.core.errors import LedgerInvariantViolation, PaymentCaptureError, RefundError
from proescrow.models.booking import Booking
from proescrow.models.enums import PaymentKind, PaymentStatus
from proescrow.models.escrow import EscrowLedger
from proescrow.models.payment import PaymentTransaction
from proescrow.services.payment_gateway import CaptureError, GatewayRefundError

logger = logging.getLogger(__name__)


def commitment_for(price: int, percent: int) -> int:
    """Commitment fee in minor units, rounded half up."""
    return (price * percent + 50) // 100


def get_ledger(db: Session, booking_id: str) -> EscrowLedger:
    ledger = db.get(EscrowLedger, booking_id)
    if ledger is None:
        raise LedgerInvariantViolation(f"booking {booking_id} has no escrow ledger")
    return ledger


def assert_consistent(ledger: EscrowLedger) -> None:
    problems = []
    if ledger.commitment_amount + ledger.balance_amount != ledger.total_held:
        problems.append(
            f"commitment {ledger.commitment_amount} + balance {ledger.balance_amount} != held {ledger.total_held}"
        )
    if min(ledger.total_held, ledger.commitment_amount, ledger.balance_amount) < 0:
        problems.append("negative amount")
    if ledger.refunded_amount < 0 or ledger.refunded_amount > ledger.total_held:
        problems.append(f"refunded {ledger.refunded_amount} outside 0..{ledger.total_held}")
    if ledger.refunded_amount + ledger.released_amount > ledger.total_held:
        problems.append("refunded and released more than held")
    if ledger.withheld_amount and ledger.withheld_amount > ledger.refunded_amount:
        problems.append(f"withheld {ledger.withheld_amount} was never refunded")
    if problems:
        raise LedgerInvariantViolation(f"ledger {ledger.booking_id}: " + "; ".join(problems))


def snapshot(ledger: EscrowLedger) -> dict:
    return {
        "escrowStatus": ledger.escrow_status.value,
        "totalHeld": ledger.total_held,
        "commitmentAmount": ledger.commitment_amount,
        "balanceAmount": ledger.balance_amount,
        "commitmentReleased": ledger.commitment_released,
        "balanceReleased": ledger.balance_released,
        "frozen": ledger.frozen,
        "frozenReason": ledger.frozen_reason or None,
        "refunded": ledger.refunded,
        "refundedAmount": ledger.refunded_amount,
        "releasedAmount": ledger.released_amount,
        "withheldAmount": ledger.withheld_amount or 0,
    }


def capture(
    db: Session,
    gateway,
    booking: Booking,
    amount: int,
    kind: PaymentKind,
    invoice_id: str | None = None,
) -> PaymentTransaction:
    """Capture `amount` from the client's payment method and record the transaction.

    Called before any ledger change; a failure leaves nothing behind.
    """
    reference = booking.reference if invoice_id is None else f"{booking.reference}:{invoice_id}"
    try:
        result = gateway.capture(amount, booking.payment_method_ref, reference=reference)
    except CaptureError as e:
        logger.warning("booking %s: capture of %s failed: %s", booking.id, amount, e)
        status = booking.status.value
        db.rollback()
        raise PaymentCaptureError(str(e), booking_status=status) from e
    if not result.success:
        logger.warning("booking %s: capture of %s declined: %s", booking.id, amount, result.message)
        status = booking.status.value
        db.rollback()
        raise PaymentCaptureError(result.message or "capture declined", booking_status=status)
    tx = PaymentTransaction(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        kind=kind,
        invoice_id=invoice_id,
        amount=int(amount),
        refunded_amount=0,
        transaction_id=result.transaction_id,
        status=PaymentStatus.CAPTURED,
    )
    db.add(tx)
    return tx


def refund_captures(db: Session, gateway, booking: Booking, amount: int | None = None, now: datetime | None = None) -> int:
    """Bring the booking's total refunds up to `amount` (default: everything captured), newest capture first.

    Each successful gateway refund is recorded on its transaction, and a
    failure commits that progress before raising, so a retry only refunds
    what is still outstanding. Returns the amount refunded by this call.
    """
    now = now or utcnow()
    txs = (
        db.query(PaymentTransaction)
        .filter(PaymentTransaction.booking_id == booking.id)
        .order_by(PaymentTransaction.created_at.desc())
        .all()
    )
    already = sum(t.refunded_amount or 0 for t in txs)
    target = sum(t.amount for t in txs) if amount is None else int(amount)
    remaining = target - already
    refunded = 0
    for tx in txs:
        if remaining <= 0:
            break
        outstanding = tx.amount - (tx.refunded_amount or 0)
        if outstanding <= 0:
            continue
        part = min(outstanding, remaining)
        try:
            result = gateway.refund(tx.transaction_id, part)
        except GatewayRefundError as e:
            logger.warning("booking %s: refund of %s on %s failed: %s", booking.id, part, tx.transaction_id, e)
            db.commit()
            raise RefundError(str(e), booking_status=booking.status.value) from e
        if not result.success:
            db.commit()
            raise RefundError(result.message or "refund declined", booking_status=booking.status.value)
        tx.refunded_amount = (tx.refunded_amount or 0) + part
        tx.status = PaymentStatus.REFUNDED if tx.refunded_amount >= tx.amount else PaymentStatus.PARTIALLY_REFUNDED
        tx.refunded_at = now
        remaining -= part
        refunded += part
    return refunded

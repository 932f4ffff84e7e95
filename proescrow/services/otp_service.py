"""Arrival codes.

A booking has at most one active code. Issuing a new one supersedes the old
record rather than editing it, so a code that was verified, expired or locked
can never become valid again.
"""
import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from proescrow.core.clock import as_utc, utcnow
from proescrow.core.config import settings
from proescrow.models.enums import OTPResult
from proescrow.models.otp import OTPRecord

logger = logging.getLogger(__name__)


def _hash_code(booking_id: str, code: str) -> str:
    msg = f"{booking_id}:{code}".encode("utf-8")
    return hmac.new(settings.SECRET_KEY.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _make_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def get_active(db: Session, booking_id: str) -> OTPRecord | None:
    return (
        db.query(OTPRecord)
        .filter(OTPRecord.booking_id == booking_id, OTPRecord.superseded_at.is_(None))
        .order_by(OTPRecord.created_at.desc())
        .first()
    )


def issue(db: Session, booking_id: str, now: datetime | None = None) -> tuple[OTPRecord, str]:
    """Create a fresh code for the booking. Returns the record and the plain code (shown to the client once)."""
    now = now or utcnow()
    for old in db.query(OTPRecord).filter(OTPRecord.booking_id == booking_id, OTPRecord.superseded_at.is_(None)).all():
        old.superseded_at = now

    code = _make_code(settings.OTP_LENGTH)
    rec = OTPRecord(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        code_hash=_hash_code(booking_id, code),
        created_at=now,
        expires_at=now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
        attempts=0,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        verified=False,
    )
    db.add(rec)
    db.flush()
    logger.info("booking %s: issued arrival code %s (expires %s)", booking_id, rec.id, rec.expires_at.isoformat())
    return rec, code


def verify(db: Session, booking_id: str, code: str, now: datetime | None = None) -> OTPResult:
    now = now or utcnow()
    rec = get_active(db, booking_id)
    if rec is None:
        return OTPResult.MISMATCH
    if rec.verified:
        return OTPResult.ALREADY_USED
    if rec.attempts >= rec.max_attempts:
        return OTPResult.LOCKED
    if as_utc(rec.expires_at) <= now:
        return OTPResult.EXPIRED

    if hmac.compare_digest(rec.code_hash, _hash_code(booking_id, (code or "").strip())):
        rec.verified = True
        rec.verified_at = now
        return OTPResult.OK

    rec.attempts += 1
    logger.info("booking %s: wrong arrival code (%s/%s)", booking_id, rec.attempts, rec.max_attempts)
    if rec.attempts >= rec.max_attempts:
        return OTPResult.LOCKED
    return OTPResult.MISMATCH

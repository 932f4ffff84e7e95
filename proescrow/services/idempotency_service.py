import json
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from proescrow.core.errors import IdempotencyConflict
from proescrow.models.idempotency_key import IdempotencyKey

logger = logging.getLogger(__name__)


def lookup(db: Session, key: str, command: str, booking_id: str = "") -> dict | None:
    """Stored response for a replayed key, or None if the key is new."""
    if not key:
        return None
    rec = db.get(IdempotencyKey, key)
    if rec is None:
        return None
    if rec.command != command or (booking_id and rec.booking_id != booking_id):
        raise IdempotencyConflict(f"idempotency key already used for {rec.command}")
    logger.info("replaying %s for idempotency key %s", command, key)
    return json.loads(rec.response_json or "{}")


def store(db: Session, key: str, command: str, booking_id: str, response: dict) -> None:
    if not key:
        return
    db.add(IdempotencyKey(
        key=key,
        command=command,
        booking_id=booking_id or "",
        response_json=json.dumps(response, ensure_ascii=False, default=str),
    ))
    try:
        db.commit()
    except IntegrityError:
        # a concurrent retry stored it first; its response wins
        db.rollback()

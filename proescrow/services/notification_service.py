import json
import logging
import uuid
from datetime import datetime, timezone

import requests
from sqlalchemy.orm import Session

from proescrow.core.config import settings
from proescrow.models.booking import Booking
from proescrow.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)


def emit(db: Session, event: str, booking: Booking, **payload) -> str:
    """Queue a notification in the caller's transaction. Delivery happens in the worker."""
    nid = str(uuid.uuid4())
    body = {
        "event": event,
        "bookingId": booking.id,
        "reference": booking.reference,
        "clientId": booking.client_id,
        "providerId": booking.provider_id,
        "status": booking.status.value if booking.status else None,
        **payload,
    }
    db.add(NotificationLog(
        id=nid,
        event=event,
        booking_id=booking.id,
        payload_json=json.dumps(body, ensure_ascii=False, default=str),
        status="queued",
        attempts=0,
    ))
    return nid


def deliver(event: str, payload: dict) -> None:
    r = requests.post(
        settings.NOTIFICATION_WEBHOOK_URL,
        json={"event": event, "data": payload},
        timeout=10,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"notification webhook error {r.status_code}: {r.text[:200]}")


def process_pending_notifications(db: Session, limit: int = 50) -> dict:
    """Deliver up to `limit` queued or failed notifications. Returns counts."""
    pending = (
        db.query(NotificationLog)
        .filter(NotificationLog.status.in_(["queued", "failed"]))
        .order_by(NotificationLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed, skipped = 0, 0, 0
    for log in pending:
        if not settings.NOTIFICATION_WEBHOOK_URL:
            log.status = "skipped"
            skipped += 1
            continue
        log.attempts = (log.attempts or 0) + 1
        try:
            deliver(log.event, json.loads(log.payload_json or "{}"))
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except (requests.RequestException, RuntimeError) as e:
            logger.warning("notification %s (%s) delivery failed: %s", log.id, log.event, e)
            log.status = "failed"
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed, "skipped": skipped}

import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from proescrow.db.session import SessionLocal
from proescrow.services import scheduler_service
from proescrow.services.notification_service import process_pending_notifications

logger = logging.getLogger(__name__)


def run_due_jobs() -> dict:
    """Fire every scheduled deadline that has come due. Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            counts = scheduler_service.run_due_jobs(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if counts["due"]:
            logger.info("scheduled jobs: %s", counts)
        return counts
    finally:
        db.close()


def process_notification_queue(limit: int = 50) -> dict:
    """Deliver queued/failed notifications. Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_notifications(db, limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()

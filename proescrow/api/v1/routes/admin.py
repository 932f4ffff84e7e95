from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from proescrow.db.session import get_db
from proescrow.api.deps import get_actor_id, get_gateway, idempotency_key, run_command
from proescrow.schemas.support import FreezeRequest, ResolveDisputeRequest
from proescrow.services import safety_service, support_service
from proescrow.services.booking_query_service import booking_view

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/bookings/{booking_id}/freeze")
def freeze_escrow(
    booking_id: str,
    body: FreezeRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        support_service.freeze(db, booking_id, body.reason, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "support.freeze", booking_id, key, _do)


@router.post("/bookings/{booking_id}/unfreeze")
def unfreeze_escrow(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        support_service.unfreeze(db, booking_id, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "support.unfreeze", booking_id, key, _do)


@router.post("/bookings/{booking_id}/resolve")
def resolve_dispute(
    booking_id: str,
    body: ResolveDisputeRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
    gateway=Depends(get_gateway),
):
    def _do():
        support_service.resolve_dispute(
            db, booking_id, body.outcome, body.note, actor_id=actor_id, gateway=gateway, refund_amount=body.refundAmount,
        )
        return booking_view(db, booking_id)
    return run_command(db, "support.resolve", booking_id, key, _do)


@router.get("/bookings/{booking_id}/incidents")
def list_incidents(booking_id: str, db: Session = Depends(get_db)):
    return [
        {
            "id": i.id,
            "triggeredBy": i.triggered_by,
            "triggeredAt": i.triggered_at.isoformat() if i.triggered_at else None,
            "previousStatus": i.previous_status,
            "note": i.note,
        }
        for i in safety_service.list_incidents(db, booking_id)
    ]

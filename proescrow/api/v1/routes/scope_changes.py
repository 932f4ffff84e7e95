from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from proescrow.db.session import get_db
from proescrow.api.deps import get_actor_id, get_gateway, idempotency_key, run_command
from proescrow.schemas.scope_change import ScopeChangeCreate
from proescrow.services import scope_change_service
from proescrow.services.booking_query_service import booking_view, invoice_view

router = APIRouter(tags=["scope-changes"])


def _invoice_response(db: Session, inv) -> dict:
    return {"invoice": invoice_view(inv), "booking": booking_view(db, inv.booking_id)}


@router.post("/bookings/{booking_id}/scope-changes")
def request_scope_change(
    booking_id: str,
    body: ScopeChangeCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        inv = scope_change_service.request(db, booking_id, body.description, body.amount, actor_id=actor_id)
        return _invoice_response(db, inv)
    return run_command(db, "scope_change.request", booking_id, key, _do)


@router.post("/scope-changes/{invoice_id}/approve")
def approve_scope_change(
    invoice_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
    gateway=Depends(get_gateway),
):
    def _do():
        inv = scope_change_service.approve(db, invoice_id, actor_id=actor_id, gateway=gateway)
        return _invoice_response(db, inv)
    return run_command(db, "scope_change.approve", invoice_id, key, _do)


@router.post("/scope-changes/{invoice_id}/reject")
def reject_scope_change(
    invoice_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        inv = scope_change_service.reject(db, invoice_id, actor_id=actor_id)
        return _invoice_response(db, inv)
    return run_command(db, "scope_change.reject", invoice_id, key, _do)

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from proescrow.db.session import get_db
from proescrow.api.deps import get_actor_id, idempotency_key, run_command
from proescrow.schemas.rectification import (
    AcceptFixRequest,
    DisputeIssueRequest,
    EscalateIssueRequest,
    FixCompleteRequest,
    ReportIssueRequest,
)
from proescrow.services import rectification_service
from proescrow.services.booking_query_service import booking_view, case_view

router = APIRouter(tags=["rectification"])


def _case_response(db: Session, case) -> dict:
    return {"case": case_view(case), "booking": booking_view(db, case.booking_id)}


@router.post("/bookings/{booking_id}/issues")
def report_issue(
    booking_id: str,
    body: ReportIssueRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.report_issue(db, booking_id, body.description, body.category, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.report", booking_id, key, _do)


@router.post("/issues/{case_id}/accept")
def accept_fix(
    case_id: str,
    body: AcceptFixRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.accept_and_schedule(db, case_id, body.fixDate, body.notes, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.accept", case_id, key, _do)


@router.post("/issues/{case_id}/dispute")
def dispute_issue(
    case_id: str,
    body: DisputeIssueRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.dispute(db, case_id, body.reason, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.dispute", case_id, key, _do)


@router.post("/issues/{case_id}/fix-complete")
def complete_fix(
    case_id: str,
    body: FixCompleteRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.complete_fix(db, case_id, body.notes, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.fix_complete", case_id, key, _do)


@router.post("/issues/{case_id}/confirm-fix")
def confirm_fix(
    case_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.confirm_fix(db, case_id, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.confirm_fix", case_id, key, _do)


@router.post("/issues/{case_id}/withdraw")
def withdraw_issue(
    case_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.withdraw(db, case_id, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.withdraw", case_id, key, _do)


@router.post("/issues/{case_id}/escalate")
def escalate_issue(
    case_id: str,
    body: EscalateIssueRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        case = rectification_service.escalate(db, case_id, body.reason, actor_id=actor_id)
        return _case_response(db, case)
    return run_command(db, "rectification.escalate", case_id, key, _do)

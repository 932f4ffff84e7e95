from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from proescrow.db.session import get_db
from proescrow.api.deps import get_actor_id, get_gateway, idempotency_key, run_command
from proescrow.schemas.booking import BookingCreate, CancelRequest, CheckInRequest, CompleteRequest, OTPOut
from proescrow.schemas.support import SOSRequest
from proescrow.services import booking_service, safety_service
from proescrow.services.booking_query_service import booking_view, escrow_view

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("")
def create_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        b = booking_service.create_booking(
            db,
            client_id=body.clientId,
            provider_id=body.providerId,
            tier=body.tier,
            scheduled_at=body.scheduledAt,
            price=body.price,
            scope=body.scope,
            address=body.location.address,
            latitude=body.location.latitude,
            longitude=body.location.longitude,
            payment_method_ref=body.paymentMethodRef,
        )
        return booking_view(db, b.id)
    return run_command(db, "booking.create", "", key, _do)


@router.get("/{booking_id}")
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return booking_view(db, booking_id)


@router.get("/{booking_id}/escrow")
def get_escrow_status(booking_id: str, db: Session = Depends(get_db)):
    return {"bookingId": booking_id, **escrow_view(db, booking_id)}


@router.post("/{booking_id}/confirm")
def confirm_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
    gateway=Depends(get_gateway),
):
    def _do():
        booking_service.confirm(db, booking_id, actor_id=actor_id, gateway=gateway)
        return booking_view(db, booking_id)
    return run_command(db, "booking.confirm", booking_id, key, _do)


@router.post("/{booking_id}/provider-accept")
def provider_accept(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        booking_service.provider_accept(db, booking_id, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "booking.provider_accept", booking_id, key, _do)


@router.post("/{booking_id}/en-route")
def mark_en_route(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        booking_service.mark_en_route(db, booking_id, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "booking.en_route", booking_id, key, _do)


@router.post("/{booking_id}/otp", response_model=OTPOut)
def regenerate_otp(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    # Not idempotent by key: a replay must never hand out a code that was superseded.
    booking, code = booking_service.regenerate_otp(db, booking_id, actor_id=actor_id)
    view = booking_view(db, booking.id)
    return OTPOut(bookingId=booking.id, code=code, expiresAt=view["otpExpiresAt"])


@router.post("/{booking_id}/check-in")
def check_in(
    booking_id: str,
    body: CheckInRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        booking_service.check_in(db, booking_id, body.code, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "booking.check_in", booking_id, key, _do)


@router.post("/{booking_id}/complete")
def complete_booking(
    booking_id: str,
    body: CompleteRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        booking_service.complete(db, booking_id, notes=body.notes, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "booking.complete", booking_id, key, _do)


@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    body: CancelRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
    gateway=Depends(get_gateway),
):
    def _do():
        booking_service.cancel(db, booking_id, reason=body.reason, actor_id=actor_id, gateway=gateway)
        return booking_view(db, booking_id)
    return run_command(db, "booking.cancel", booking_id, key, _do)


@router.post("/{booking_id}/no-show")
def report_no_show(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
    gateway=Depends(get_gateway),
):
    def _do():
        booking_service.report_no_show(db, booking_id, actor_id=actor_id, gateway=gateway)
        return booking_view(db, booking_id)
    return run_command(db, "booking.no_show", booking_id, key, _do)


@router.post("/{booking_id}/release")
def release_early(
    booking_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        booking_service.release_early(db, booking_id, actor_id=actor_id)
        return booking_view(db, booking_id)
    return run_command(db, "booking.release", booking_id, key, _do)


@router.post("/{booking_id}/sos")
def trigger_sos(
    booking_id: str,
    body: SOSRequest,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    key: str | None = Depends(idempotency_key),
):
    def _do():
        incident = safety_service.trigger(db, booking_id, triggered_by=actor_id, note=body.note)
        return {"incidentId": incident.id, "booking": booking_view(db, booking_id)}
    return run_command(db, "safety.trigger", booking_id, key, _do)

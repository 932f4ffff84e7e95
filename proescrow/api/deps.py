from typing import Callable

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session
from proescrow.db.session import get_db
from proescrow.services import idempotency_service
from proescrow.services.payment_gateway import get_payment_gateway


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str:
    """Identity is upstream; the gateway in front of this service sets X-Actor-Id."""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id")
    return x_actor_id


def get_gateway():
    try:
        return get_payment_gateway()
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))


def run_command(
    db: Session,
    command: str,
    booking_id: str,
    idempotency_key: str | None,
    fn: Callable[[], dict],
) -> dict:
    """Execute a command once per idempotency key; replays return the stored response."""
    stored = idempotency_service.lookup(db, idempotency_key or "", command, booking_id)
    if stored is not None:
        return stored
    try:
        response = fn()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    idempotency_service.store(db, idempotency_key or "", command, booking_id, response)
    return response


def idempotency_key(idempotency_key: str | None = Header(default=None)) -> str | None:
    return idempotency_key


"""Engine error taxonomy.

Every error carries a stable ``code`` for clients, the HTTP status the API
renders it with, and a ``user_message`` that is safe to show to clients and
providers. Financial errors never expose ledger internals in ``user_message``.
"""

PAYMENT_FAILED_MESSAGE = "Payment could not be processed"


class EngineError(Exception):
    code = "engine_error"
    status_code = 400

    def __init__(self, message: str = "", *, booking_status: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.booking_status = booking_status

    @property
    def user_message(self) -> str:
        return self.message


class NotFound(EngineError):
    code = "not_found"
    status_code = 404


class BookingNotFound(NotFound):
    code = "booking_not_found"

    def __init__(self, booking_id: str):
        super().__init__(f"booking {booking_id} not found")
        self.booking_id = booking_id


class InvalidTransition(EngineError):
    """Command is not legal from the booking's current status. Caller should refresh."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, command: str, current_status: str, reason: str = ""):
        msg = reason or f"cannot {command} while booking is {current_status}"
        super().__init__(msg, booking_status=current_status)
        self.command = command
        self.current_status = current_status


class OTPError(EngineError):
    status_code = 422


class OTPInvalidError(OTPError):
    code = "otp_invalid"

    def __init__(self, message: str = "arrival code is incorrect"):
        super().__init__(message)


class OTPExpiredError(OTPError):
    code = "otp_expired"

    def __init__(self, message: str = "arrival code has expired, request a new one"):
        super().__init__(message)


class OTPLockedError(OTPError):
    code = "otp_locked"

    def __init__(self, message: str = "too many wrong attempts, request a new code"):
        super().__init__(message)


class PaymentCaptureError(EngineError):
    code = "payment_capture_failed"
    status_code = 402

    @property
    def user_message(self) -> str:
        return PAYMENT_FAILED_MESSAGE


class RefundError(EngineError):
    code = "refund_failed"
    status_code = 502

    @property
    def user_message(self) -> str:
        return PAYMENT_FAILED_MESSAGE


class IdempotencyConflict(EngineError):
    code = "idempotency_conflict"
    status_code = 409


class BookingHalted(EngineError):
    code = "booking_halted"
    status_code = 423

    def __init__(self, booking_id: str):
        super().__init__(f"booking {booking_id} is halted pending operator review")


class LedgerInvariantViolation(EngineError):
    """Internal consistency failure. Never expected; halts the booking."""

    code = "ledger_invariant_violation"
    status_code = 500

    @property
    def user_message(self) -> str:
        return "booking is temporarily unavailable"

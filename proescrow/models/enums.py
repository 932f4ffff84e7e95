import enum

from sqlalchemy import Enum as SAEnum


class BookingStatus(str, enum.Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    PROVIDER_CONFIRMED = "provider_confirmed"
    EN_ROUTE = "en_route"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    OBSERVATION = "observation"
    RECTIFICATION = "rectification"
    RELEASED = "released"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    DISPUTED = "disputed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    BookingStatus.RELEASED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
    BookingStatus.DISPUTED,
})

# Work is under way and the price may still change
ACTIVE_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.PROVIDER_CONFIRMED,
    BookingStatus.EN_ROUTE,
    BookingStatus.CHECKED_IN,
})

# Escrow has been refunded; nothing left to protect
REFUNDED_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


class ReleaseKind(str, enum.Enum):
    AUTO_RELEASED = "auto_released"
    EARLY_RELEASED = "early_released"
    SUPPORT_RELEASED = "support_released"


class EscrowStatus(str, enum.Enum):
    HELD = "held"
    COMMITMENT_RELEASED = "commitment_released"
    BALANCE_RELEASED = "balance_released"
    FROZEN = "frozen"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class OTPResult(str, enum.Enum):
    OK = "ok"
    EXPIRED = "expired"
    LOCKED = "locked"
    MISMATCH = "mismatch"
    ALREADY_USED = "already_used"


class CaseStatus(str, enum.Enum):
    REPORTED = "reported"
    ACCEPTED = "accepted"
    FIX_SCHEDULED = "fix_scheduled"
    FIX_COMPLETE = "fix_complete"
    DISPUTED = "disputed"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


CLOSED_CASE_STATUSES = frozenset({CaseStatus.ESCALATED, CaseStatus.RESOLVED})


class IssueCategory(str, enum.Enum):
    INCOMPLETE_WORK = "incomplete_work"
    POOR_QUALITY = "poor_quality"
    WRONG_MATERIALS = "wrong_materials"
    DAMAGE = "damage"
    SCOPE_DEVIATION = "scope_deviation"
    SAFETY_CONCERN = "safety_concern"
    LATE_COMPLETION = "late_completion"
    OTHER = "other"


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentKind(str, enum.Enum):
    BOOKING = "booking"
    SCOPE_CHANGE = "scope_change"


class PaymentStatus(str, enum.Enum):
    CAPTURED = "captured"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class JobKind(str, enum.Enum):
    AUTO_RELEASE = "auto_release"
    RECTIFICATION_RESPONSE = "rectification_response"
    RECTIFICATION_FIX_DEADLINE = "rectification_fix_deadline"
    RECTIFICATION_DISPUTE = "rectification_dispute"
    MINI_OBSERVATION_END = "mini_observation_end"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    DEFERRED = "deferred"
    DONE = "done"
    CANCELLED = "cancelled"


def enum_column_type(enum_cls, length: int = 30) -> SAEnum:
    """Store the enum's value as a plain string column (no native DB enum)."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )

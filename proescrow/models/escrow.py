from sqlalchemy import String, Integer, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from proescrow.db.session import Base
from proescrow.models.enums import EscrowStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EscrowLedger(Base):
    """Per-booking escrow state.

    Only the guarded mutators below change the ledger. Every mutator is
    idempotent and returns True when it changed something. While ``frozen``
    every mutator except ``freeze`` and ``unfreeze`` is a no-op, and once
    ``refunded`` nothing can be released or added.

    ``withheld_amount`` is the part of a released tranche that a split
    ruling sent back to the client instead of the provider.
    """

    __tablename__ = "escrow_ledgers"

    booking_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    total_held: Mapped[int] = mapped_column(Integer, default=0)
    commitment_amount: Mapped[int] = mapped_column(Integer, default=0)
    balance_amount: Mapped[int] = mapped_column(Integer, default=0)

    commitment_released: Mapped[bool] = mapped_column(Boolean, default=False)
    balance_released: Mapped[bool] = mapped_column(Boolean, default=False)
    frozen: Mapped[bool] = mapped_column(Boolean, default=False)
    frozen_reason: Mapped[str] = mapped_column(String(40), default="")
    refunded: Mapped[bool] = mapped_column(Boolean, default=False)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0)
    withheld_amount: Mapped[int] = mapped_column(Integer, default=0)

    held_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    commitment_released_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    balance_released_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    frozen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def empty(cls, booking_id: str) -> "EscrowLedger":
        return cls(
            booking_id=booking_id,
            total_held=0,
            commitment_amount=0,
            balance_amount=0,
            commitment_released=False,
            balance_released=False,
            frozen=False,
            frozen_reason="",
            refunded=False,
            refunded_amount=0,
            withheld_amount=0,
        )

    @property
    def escrow_status(self) -> EscrowStatus:
        if self.refunded:
            return EscrowStatus.REFUNDED
        if self.frozen:
            return EscrowStatus.FROZEN
        if self.withheld_amount:
            return EscrowStatus.PARTIALLY_REFUNDED
        if self.balance_released:
            return EscrowStatus.BALANCE_RELEASED
        if self.commitment_released:
            return EscrowStatus.COMMITMENT_RELEASED
        return EscrowStatus.HELD

    @property
    def _tranches_released(self) -> int:
        return (self.commitment_amount if self.commitment_released else 0) + (
            self.balance_amount if self.balance_released else 0
        )

    @property
    def released_amount(self) -> int:
        """Paid out to the provider."""
        return self._tranches_released - (self.withheld_amount or 0)

    @property
    def unreleased_amount(self) -> int:
        """Still sitting in escrow, owed to nobody yet."""
        return self.total_held - self._tranches_released

    def _blocked(self) -> bool:
        return self.frozen or self.refunded

    def hold(self, total: int, commitment: int, now: datetime | None = None) -> bool:
        """Record the captured booking price. Amounts are fixed once held."""
        if self._blocked() or self.held_at is not None:
            return False
        self.total_held = total
        self.commitment_amount = commitment
        self.balance_amount = total - commitment
        self.held_at = now or _now()
        return True

    def release_commitment(self, now: datetime | None = None) -> bool:
        if self._blocked() or self.commitment_released:
            return False
        self.commitment_released = True
        self.commitment_released_at = now or _now()
        return True

    def release_balance(self, now: datetime | None = None) -> bool:
        if self._blocked() or self.balance_released:
            return False
        self.balance_released = True
        self.balance_released_at = now or _now()
        return True

    def freeze(self, reason: str = "", now: datetime | None = None) -> bool:
        if self.frozen:
            return False
        self.frozen = True
        self.frozen_reason = reason
        self.frozen_at = now or _now()
        return True

    def unfreeze(self) -> bool:
        if not self.frozen:
            return False
        self.frozen = False
        self.frozen_reason = ""
        return True

    def refund(self, amount: int | None = None, now: datetime | None = None) -> bool:
        if self._blocked():
            return False
        self.refunded = True
        self.refunded_amount = (self.refunded_amount or 0) + (self.unreleased_amount if amount is None else amount)
        self.refunded_at = now or _now()
        return True

    def split(self, refund_amount: int, now: datetime | None = None) -> bool:
        """Refund ``refund_amount`` of what is still held and release the rest."""
        if self._blocked() or self.withheld_amount or not 0 < refund_amount <= self.unreleased_amount:
            return False
        now = now or _now()
        self.release_commitment(now)
        self.release_balance(now)
        self.withheld_amount = refund_amount
        self.refunded_amount = (self.refunded_amount or 0) + refund_amount
        self.refunded_at = now
        return True

    def increase_balance(self, amount: int) -> bool:
        if self._blocked() or self.balance_released or amount <= 0:
            return False
        self.total_held += amount
        self.balance_amount += amount
        return True

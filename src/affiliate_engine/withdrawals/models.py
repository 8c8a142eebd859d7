"""Withdrawal request database models."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from affiliate_engine.storage.models import Base, Money, utcnow


class WithdrawalStatus(str, Enum):
    """Withdrawal lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    """Supported payout methods."""
    PIX = "pix"
    TRANSFER = "transfer"


# Legal transitions; anything else is an IllegalTransition
WITHDRAWAL_TRANSITIONS: dict[WithdrawalStatus, frozenset[WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: frozenset({WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED}),
    WithdrawalStatus.APPROVED: frozenset({WithdrawalStatus.PROCESSING, WithdrawalStatus.REJECTED}),
    WithdrawalStatus.PROCESSING: frozenset({WithdrawalStatus.PAID}),
    WithdrawalStatus.PAID: frozenset(),
    WithdrawalStatus.REJECTED: frozenset(),
}

# Statuses whose allocation still holds commissions out of the available balance
OPEN_WITHDRAWAL_STATUSES = (
    WithdrawalStatus.PENDING.value,
    WithdrawalStatus.APPROVED.value,
    WithdrawalStatus.PROCESSING.value,
)


class WithdrawalRequest(Base):
    """Payout request backed by an exclusive set of confirmed commissions.

    amount is fixed at creation and always equals the sum of the
    commissions allocated to it.
    """
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)

    # Payment
    payment_method = Column(String(20), nullable=False)
    payment_details = Column(JSON, nullable=True)  # Opaque to the engine

    # Processing
    requested_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<WithdrawalRequest(id={self.id}, amount={self.amount}, status={self.status})>"

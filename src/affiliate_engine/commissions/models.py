"""Commission and qualifying event database models."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint

from affiliate_engine.storage.models import Base, Money, utcnow


class CommissionStatus(str, Enum):
    """Commission states. Terminal states are final.

    A split commission was confirmed and has been replaced in the balance by
    its child rows; it keeps the amount it was created with.
    """
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    SPLIT = "split"


# Statuses that count as earned for reporting and promotion
EARNED_COMMISSION_STATUSES = (CommissionStatus.CONFIRMED.value, CommissionStatus.SPLIT.value)


class CommissionType(str, Enum):
    """Qualifying monetary events that earn a commission."""
    AUTHOR_REGISTRATION = "author_registration"
    SUBSCRIPTION = "subscription"


class Commission(Base):
    """Monetary credit owed to an affiliate for one qualifying event.

    amount = base_price * commission_rate / 100, rounded to cents, and never
    changes after creation. Child rows (split_from_id set) carry the parts of
    a split commission.
    paid_in_withdrawal_id is set only while allocated to a withdrawal.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("type", "reference_id", name="uq_commissions_type_reference"),
    )

    id = Column(Integer, primary_key=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    reference_id = Column(String(128), nullable=True)

    # Amounts
    base_price = Column(Money, nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    amount = Column(Money, nullable=False)

    # Status
    status = Column(String(20), nullable=False, default=CommissionStatus.WAITING.value, index=True)
    paid_in_withdrawal_id = Column(
        Integer, ForeignKey("withdrawal_requests.id"), nullable=True, index=True
    )

    # Parts of a commission that a withdrawal consumed only partially
    split_from_id = Column(Integer, ForeignKey("commissions.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)  # When it reached a terminal state

    def __repr__(self):
        return f"<Commission(id={self.id}, amount={self.amount}, status={self.status})>"


class ScheduledEvent(Base):
    """Durable qualifying event waiting for its due time.

    Each row fires exactly once: fired_at is claimed with a conditional update.
    """
    __tablename__ = "scheduled_events"
    __table_args__ = (
        UniqueConstraint("event_type", "reference_id", name="uq_scheduled_events_type_reference"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(40), nullable=False)
    reference_id = Column(String(128), nullable=False)
    base_price = Column(Money, nullable=False)

    due_at = Column(DateTime, nullable=False, index=True)
    fired_at = Column(DateTime, nullable=True)
    outcome = Column(String(40), nullable=True)  # commission_created | no_attribution
    commission_id = Column(Integer, ForeignKey("commissions.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ScheduledEvent(id={self.id}, {self.event_type}:{self.reference_id}, fired={self.fired_at is not None})>"

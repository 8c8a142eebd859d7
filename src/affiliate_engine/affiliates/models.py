"""Affiliate profile database models."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from affiliate_engine.storage.models import Base, Money, utcnow


class AffiliateStatus(str, Enum):
    """Affiliate lifecycle states. Affiliates are never deleted."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class AffiliateLevel(str, Enum):
    """Affiliate tiers, each with a default commission rate."""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


class Affiliate(Base):
    """Marketing partner with a unique, immutable referral code.

    Running totals:
    - total_earnings: confirmed commissions not yet paid out
    - total_paid: amount settled through paid withdrawals
    """
    __tablename__ = "affiliates"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    code = Column(String(40), unique=True, nullable=False, index=True)

    # Status
    status = Column(String(20), nullable=False, default=AffiliateStatus.PENDING.value)
    level = Column(String(20), nullable=False, default=AffiliateLevel.BRONZE.value)
    custom_commission_rate = Column(Numeric(5, 2), nullable=True)  # Percent, overrides level

    # Totals
    total_earnings = Column(Money, nullable=False, default=Decimal("0.00"))
    total_paid = Column(Money, nullable=False, default=Decimal("0.00"))

    # Bumped by every withdrawal allocation (optimistic lock)
    allocation_version = Column(Integer, nullable=False, default=0)

    # Application details
    full_name = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    promotion_strategy = Column(Text, nullable=True)

    # Timestamps
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.APPROVED.value

    def __repr__(self):
        return f"<Affiliate(id={self.id}, code={self.code}, status={self.status})>"

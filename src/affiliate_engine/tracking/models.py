"""Click and conversion database models."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from affiliate_engine.storage.models import Base, utcnow


class ConversionType:
    """Conversion types recorded at binding time."""
    SIGNUP = "signup"
    AUTHOR_REGISTRATION = "author_registration"
    SUBSCRIPTION = "subscription"


class Click(Base):
    """A tracked visit through an affiliate's referral link.

    Unbound clicks are kept forever as an audit trail.
    """
    __tablename__ = "clicks"
    __table_args__ = (
        Index("ix_clicks_affiliate_unbound", "affiliate_id", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)
    converted = Column(Boolean, nullable=False, default=False)

    # Visit metadata
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referrer = Column(String(1024), nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Click(id={self.id}, affiliate_id={self.affiliate_id}, user_id={self.user_id})>"


class Conversion(Base):
    """Binding of a click to a newly signed-up user.

    A user is attributed at most once (first attribution wins), and a click
    is bound at most once.
    """
    __tablename__ = "conversions"

    id = Column(Integer, primary_key=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, unique=True)
    click_id = Column(Integer, ForeignKey("clicks.id"), nullable=False, unique=True)
    type = Column(String(40), nullable=False, default=ConversionType.SIGNUP)
    reference_id = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    click = relationship("Click")

    def __repr__(self):
        return f"<Conversion(id={self.id}, affiliate_id={self.affiliate_id}, user_id={self.user_id})>"

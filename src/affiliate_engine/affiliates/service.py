"""Affiliate profile service: applications, approval and rate settings."""

import re
import secrets
import unicodedata
from decimal import Decimal
from urllib.parse import quote

from sqlalchemy.orm import Session

from affiliate_engine.affiliates.models import Affiliate, AffiliateLevel, AffiliateStatus
from affiliate_engine.errors import (
    AffiliateAlreadyExists,
    AffiliateNotFound,
    IllegalTransition,
    InvalidAmount,
)
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import utcnow

logger = get_logger(__name__)

# Exclude confusing characters: 0, O, I, l, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

AFFILIATE_TRANSITIONS: dict[AffiliateStatus, frozenset[AffiliateStatus]] = {
    AffiliateStatus.PENDING: frozenset({AffiliateStatus.APPROVED, AffiliateStatus.REJECTED}),
    AffiliateStatus.APPROVED: frozenset({AffiliateStatus.SUSPENDED}),
    AffiliateStatus.SUSPENDED: frozenset({AffiliateStatus.APPROVED}),
    AffiliateStatus.REJECTED: frozenset(),
}


def generate_code(full_name: str | None, suffix_length: int = 5) -> str:
    """Generate a readable referral code.

    Format: up to 6 letters from the first name followed by a random suffix,
    e.g. MARIA7K2PX.
    """
    prefix = ""
    if full_name:
        first = full_name.strip().split()[0] if full_name.strip() else ""
        ascii_name = unicodedata.normalize("NFKD", first).encode("ascii", "ignore").decode()
        prefix = re.sub(r"[^A-Z]", "", ascii_name.upper())[:6]
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(suffix_length))
    return f"{prefix or 'AFF'}{suffix}"


def normalize_code(code: str) -> str:
    return code.upper().strip()


def get_affiliate_or_raise(session: Session, affiliate_id: int, for_update: bool = False) -> Affiliate:
    """Load an affiliate inside an open session."""
    query = session.query(Affiliate).filter(Affiliate.id == affiliate_id)
    if for_update:
        query = query.with_for_update()
    affiliate = query.first()
    if not affiliate:
        raise AffiliateNotFound(affiliate_id)
    return affiliate


class AffiliateService:
    """Service for affiliate profiles."""

    def __init__(
        self,
        database: Database | None = None,
        settings: Settings | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.db = database or default_db
        self.settings = settings or default_settings
        self.publisher = publisher or EventPublisher()
        self.logger = get_logger(__name__)

    def apply(
        self,
        user_id: str,
        full_name: str,
        contact_email: str | None = None,
        promotion_strategy: str | None = None,
    ) -> Affiliate:
        """Create a pending affiliate application with a fresh code.

        Raises:
            AffiliateAlreadyExists: If the user already applied
        """
        with self.db.session() as session:
            existing = session.query(Affiliate).filter(Affiliate.user_id == user_id).first()
            if existing:
                raise AffiliateAlreadyExists(user_id)

            code = generate_code(full_name)
            attempts = 0
            while attempts < 10:
                taken = session.query(Affiliate.id).filter(Affiliate.code == code).first()
                if not taken:
                    break
                code = generate_code(full_name)
                attempts += 1

            affiliate = Affiliate(
                user_id=user_id,
                code=code,
                status=AffiliateStatus.PENDING.value,
                level=AffiliateLevel.BRONZE.value,
                total_earnings=Decimal("0.00"),
                total_paid=Decimal("0.00"),
                allocation_version=0,
                full_name=full_name,
                contact_email=contact_email,
                promotion_strategy=promotion_strategy,
            )
            session.add(affiliate)
            session.flush()

        self.logger.info("affiliate_applied", affiliate_id=affiliate.id, user_id=user_id, code=code)
        self.publisher.publish("affiliate_applied", affiliate_id=affiliate.id, code=code)
        return affiliate

    def get(self, affiliate_id: int) -> Affiliate:
        with self.db.session() as session:
            return get_affiliate_or_raise(session, affiliate_id)

    def get_by_code(self, code: str) -> Affiliate | None:
        """Look up an affiliate by code (case-insensitive), any status."""
        if not code:
            return None
        with self.db.session() as session:
            return session.query(Affiliate).filter(Affiliate.code == normalize_code(code)).first()

    def approve(self, affiliate_id: int) -> Affiliate:
        return self._transition(affiliate_id, AffiliateStatus.APPROVED)

    def reject(self, affiliate_id: int) -> Affiliate:
        return self._transition(affiliate_id, AffiliateStatus.REJECTED)

    def suspend(self, affiliate_id: int) -> Affiliate:
        return self._transition(affiliate_id, AffiliateStatus.SUSPENDED)

    def reinstate(self, affiliate_id: int) -> Affiliate:
        return self._transition(affiliate_id, AffiliateStatus.APPROVED)

    def _transition(self, affiliate_id: int, target: AffiliateStatus) -> Affiliate:
        with self.db.session() as session:
            affiliate = get_affiliate_or_raise(session, affiliate_id, for_update=True)
            current = AffiliateStatus(affiliate.status)
            if target not in AFFILIATE_TRANSITIONS[current]:
                raise IllegalTransition("affiliate", current.value, target.value)

            affiliate.status = target.value
            if target == AffiliateStatus.APPROVED and affiliate.approved_at is None:
                affiliate.approved_at = utcnow()

        self.logger.info(
            "affiliate_status_changed",
            affiliate_id=affiliate_id,
            from_status=current.value,
            to_status=target.value,
        )
        self.publisher.publish(
            "affiliate_status_changed",
            affiliate_id=affiliate_id,
            status=target.value,
        )
        return affiliate

    def set_level(self, affiliate_id: int, level: AffiliateLevel | str) -> Affiliate:
        level = AffiliateLevel(level)
        with self.db.session() as session:
            affiliate = get_affiliate_or_raise(session, affiliate_id)
            affiliate.level = level.value

        self.logger.info("affiliate_level_changed", affiliate_id=affiliate_id, level=level.value)
        return affiliate

    def set_custom_rate(self, affiliate_id: int, rate: Decimal | None) -> Affiliate:
        """Set or clear the per-affiliate rate override (percent)."""
        if rate is not None:
            rate = Decimal(str(rate))
            if rate < 0 or rate > 100:
                raise InvalidAmount(rate, reason="Commission rate must be between 0 and 100")

        with self.db.session() as session:
            affiliate = get_affiliate_or_raise(session, affiliate_id)
            affiliate.custom_commission_rate = rate

        self.logger.info("affiliate_rate_changed", affiliate_id=affiliate_id, rate=str(rate) if rate is not None else None)
        return affiliate

    def resolve_rate(self, affiliate: Affiliate) -> Decimal:
        """Custom override first, then the level default."""
        if affiliate.custom_commission_rate is not None:
            return Decimal(str(affiliate.custom_commission_rate))
        return Decimal(str(self.settings.level_rates[affiliate.level]))

    def referral_link(self, affiliate: Affiliate, campaign: str | None = None) -> str:
        link = f"{self.settings.referral_base_url.rstrip('/')}/{affiliate.code}"
        if campaign:
            link += f"?utm_campaign={quote(campaign)}"
        return link

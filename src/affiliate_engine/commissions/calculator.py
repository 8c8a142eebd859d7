"""Commission calculation for qualifying monetary events."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.affiliates.service import AffiliateService, get_affiliate_or_raise
from affiliate_engine.commissions.models import Commission, CommissionStatus, CommissionType
from affiliate_engine.errors import DuplicateQualifyingEvent, InvalidAmount, NoAttribution
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import CENTS, utcnow
from affiliate_engine.tracking.models import Conversion

logger = get_logger(__name__)


def commission_amount(base_price: Decimal, rate: Decimal) -> Decimal:
    """base_price * rate / 100, rounded half-up to cents."""
    return (Decimal(str(base_price)) * Decimal(str(rate)) / Decimal("100")).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )


class CommissionCalculator:
    """Creates waiting commissions for attributed users."""

    def __init__(
        self,
        database: Database | None = None,
        settings: Settings | None = None,
        publisher: EventPublisher | None = None,
        affiliates: AffiliateService | None = None,
    ):
        self.db = database or default_db
        self.settings = settings or default_settings
        self.publisher = publisher or EventPublisher()
        self.affiliates = affiliates or AffiliateService(self.db, self.settings, self.publisher)
        self.logger = get_logger(__name__)

    def compute_commission(
        self,
        affiliate_id: int,
        user_id: str,
        event_type: CommissionType | str,
        reference_id: str,
        base_price: Decimal,
        now: datetime | None = None,
    ) -> Commission:
        """Create (or return) the commission for one qualifying event.

        Calling twice for the same (event_type, reference_id) returns the
        commission created by the first call.

        Raises:
            NoAttribution: If the user is not attributed to the affiliate
            InvalidAmount: If base_price is not positive
        """
        try:
            with self.db.session() as session:
                commission, created = self.create_in_session(
                    session, affiliate_id, user_id, event_type, reference_id, base_price, now=now
                )
        except DuplicateQualifyingEvent as exc:
            # Lost the insert race; the winner's row is the answer
            with self.db.session() as session:
                commission = self._find_existing(session, exc.event_type, exc.reference_id)
            created = False

        if created:
            self.publisher.publish(
                "commission_created",
                commission_id=commission.id,
                affiliate_id=commission.affiliate_id,
                amount=commission.amount,
            )
        return commission

    def create_in_session(
        self,
        session: Session,
        affiliate_id: int,
        user_id: str,
        event_type: CommissionType | str,
        reference_id: str,
        base_price: Decimal,
        now: datetime | None = None,
    ) -> tuple[Commission, bool]:
        """Create the commission inside an open transaction.

        Returns:
            (commission, created) where created is False for a duplicate event
        """
        event_type = CommissionType(event_type)
        base_price = Decimal(str(base_price))
        if base_price <= 0:
            raise InvalidAmount(base_price)

        existing = self._find_existing(session, event_type.value, reference_id)
        if existing:
            self.logger.info(
                "commission_duplicate_event",
                commission_id=existing.id,
                event_type=event_type.value,
                reference_id=reference_id,
            )
            return existing, False

        conversion = session.query(Conversion).filter(
            Conversion.affiliate_id == affiliate_id,
            Conversion.user_id == user_id,
        ).first()
        if not conversion:
            raise NoAttribution(affiliate_id, user_id)

        affiliate = get_affiliate_or_raise(session, affiliate_id)
        rate = self.affiliates.resolve_rate(affiliate)

        commission = Commission(
            affiliate_id=affiliate_id,
            user_id=user_id,
            type=event_type.value,
            reference_id=reference_id,
            base_price=base_price,
            commission_rate=rate,
            amount=commission_amount(base_price, rate),
            status=CommissionStatus.WAITING.value,
            created_at=now or utcnow(),
        )
        session.add(commission)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateQualifyingEvent(event_type.value, reference_id) from exc

        self.logger.info(
            "commission_created",
            commission_id=commission.id,
            affiliate_id=affiliate_id,
            user_id=user_id,
            event_type=event_type.value,
            rate=str(rate),
            amount=str(commission.amount),
        )
        return commission, True

    @staticmethod
    def _find_existing(session: Session, event_type: str, reference_id: str) -> Commission | None:
        return session.query(Commission).filter(
            Commission.type == event_type,
            Commission.reference_id == reference_id,
        ).first()

"""Attribution: click recording and signup-to-click binding."""

from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from affiliate_engine.affiliates.models import Affiliate, AffiliateStatus
from affiliate_engine.affiliates.service import normalize_code
from affiliate_engine.errors import UnknownAffiliateCode
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import utcnow
from affiliate_engine.tracking.models import Click, Conversion, ConversionType

logger = get_logger(__name__)

CLICK_METADATA_FIELDS = (
    "ip_address",
    "user_agent",
    "referrer",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
)


class AttributionTracker:
    """Records clicks on referral links.

    Clicks are never deduplicated: every click-through is its own row.
    """

    def __init__(
        self,
        database: Database | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.db = database or default_db
        self.publisher = publisher or EventPublisher()
        self.logger = get_logger(__name__)

    def record_click(
        self,
        affiliate_code: str,
        now: datetime | None = None,
        **metadata: str | None,
    ) -> Click:
        """Persist a new unbound click.

        Args:
            affiliate_code: Referral code from the link
            now: Click time (defaults to current UTC time)
            **metadata: Optional visit details (ip_address, user_agent,
                referrer, utm_source, utm_medium, utm_campaign, utm_content)

        Returns:
            Created click

        Raises:
            UnknownAffiliateCode: If the code is not an approved affiliate
        """
        unknown = set(metadata) - set(CLICK_METADATA_FIELDS)
        if unknown:
            raise TypeError(f"Unexpected click metadata: {', '.join(sorted(unknown))}")

        code = normalize_code(affiliate_code or "")
        with self.db.session() as session:
            affiliate = session.query(Affiliate).filter(
                Affiliate.code == code,
                Affiliate.status == AffiliateStatus.APPROVED.value,
            ).first()

            if not affiliate:
                raise UnknownAffiliateCode(affiliate_code)

            click = Click(
                affiliate_id=affiliate.id,
                converted=False,
                created_at=now or utcnow(),
                **{key: value for key, value in metadata.items() if value is not None},
            )
            session.add(click)
            session.flush()

        self.logger.info("click_recorded", click_id=click.id, affiliate_id=affiliate.id, code=code)
        self.publisher.publish("click_recorded", click_id=click.id, affiliate_id=affiliate.id)
        return click


class ConversionLinker:
    """Binds a new user to the latest unbound click of an affiliate.

    Every miss is a silent no-op: a user without a matching click simply
    gets no referral credit.
    """

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

    def link_signup(
        self,
        affiliate_code: str,
        user_id: str,
        now: datetime | None = None,
    ) -> Conversion | None:
        """Attribute a signup to the affiliate's most recent unbound click.

        Args:
            affiliate_code: Code the user arrived with
            user_id: Newly signed-up user
            now: Signup time (defaults to current UTC time)

        Returns:
            Created conversion, or None when nothing was attributed
        """
        now = now or utcnow()
        code = normalize_code(affiliate_code or "")
        cutoff = now - timedelta(days=self.settings.click_retention_days)

        try:
            with self.db.session() as session:
                affiliate = session.query(Affiliate).filter(Affiliate.code == code).first()
                if not affiliate or affiliate.status != AffiliateStatus.APPROVED.value:
                    self.logger.info("signup_link_skipped", reason="unknown_affiliate", code=code, user_id=user_id)
                    return None

                # First attribution wins, whichever affiliate it came from
                already = session.query(Conversion.id).filter(Conversion.user_id == user_id).first()
                if already:
                    self.logger.info("signup_link_skipped", reason="already_attributed", user_id=user_id)
                    return None

                click = session.query(Click).filter(
                    Click.affiliate_id == affiliate.id,
                    Click.user_id.is_(None),
                    Click.created_at >= cutoff,
                    Click.created_at <= now,
                ).order_by(Click.created_at.desc(), Click.id.desc()).first()

                if not click:
                    self.logger.info("signup_link_skipped", reason="no_pending_click", code=code, user_id=user_id)
                    return None

                # Conditional bind: only succeeds while the click is still unbound
                bound = session.query(Click).filter(
                    Click.id == click.id,
                    Click.user_id.is_(None),
                ).update(
                    {Click.user_id: user_id, Click.converted: True},
                    synchronize_session=False,
                )
                if bound != 1:
                    self.logger.info("signup_link_skipped", reason="click_claimed", click_id=click.id, user_id=user_id)
                    return None

                conversion = Conversion(
                    affiliate_id=affiliate.id,
                    user_id=user_id,
                    click_id=click.id,
                    type=ConversionType.SIGNUP,
                    created_at=now,
                )
                session.add(conversion)
                session.flush()
        except IntegrityError:
            # A concurrent signup attributed this user or claimed this click first
            self.logger.info("signup_link_skipped", reason="concurrent_conversion", user_id=user_id)
            return None

        self.logger.info(
            "signup_linked",
            conversion_id=conversion.id,
            affiliate_id=conversion.affiliate_id,
            click_id=conversion.click_id,
            user_id=user_id,
        )
        self.publisher.publish(
            "signup_linked",
            conversion_id=conversion.id,
            affiliate_id=conversion.affiliate_id,
            user_id=user_id,
        )
        return conversion

    def get_conversion_for_user(self, user_id: str) -> Conversion | None:
        with self.db.session() as session:
            return session.query(Conversion).filter(Conversion.user_id == user_id).first()

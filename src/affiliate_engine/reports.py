"""Read-side queries for affiliate dashboards and operators.

These reads may be eventually consistent; none of them mutate the ledger.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func

from affiliate_engine.affiliates.service import get_affiliate_or_raise
from affiliate_engine.commissions.evaluator import referral_status
from affiliate_engine.commissions.models import Commission, CommissionStatus
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import to_money, utcnow
from affiliate_engine.tracking.models import Click, Conversion
from affiliate_engine.withdrawals.models import WithdrawalRequest, WithdrawalStatus


@dataclass(frozen=True)
class ReferralView:
    """One attributed user with the derived commission status."""
    conversion_id: int
    user_id: str
    click_id: int
    converted_at: datetime
    expiration_date: datetime
    days_remaining: int
    commission_status: str
    commission_count: int
    commission_total: Decimal


@dataclass(frozen=True)
class AffiliateStats:
    total_clicks: int
    total_conversions: int
    conversion_rate: float  # percent
    total_earnings: Decimal
    pending_earnings: Decimal
    paid_earnings: Decimal
    this_month_earnings: Decimal


@dataclass(frozen=True)
class WithdrawalOverview:
    pending: int
    approved: int
    processing: int
    paid: int
    open_amount: Decimal
    paid_this_month: int


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class ReportingService:
    """Referral lists, dashboard stats and withdrawal overviews."""

    def __init__(self, database: Database | None = None, settings: Settings | None = None):
        self.db = database or default_db
        self.settings = settings or default_settings

    def list_referrals(self, affiliate_id: int, now: datetime | None = None) -> list[ReferralView]:
        """Attributed users of an affiliate, newest first."""
        now = now or utcnow()
        window = timedelta(days=self.settings.eligibility_window_days)

        with self.db.session() as session:
            get_affiliate_or_raise(session, affiliate_id)
            conversions = session.query(Conversion).filter(
                Conversion.affiliate_id == affiliate_id,
            ).order_by(Conversion.created_at.desc(), Conversion.id.desc()).all()

            # Split parts are already represented by the commission they came from
            commissions = session.query(Commission).filter(
                Commission.affiliate_id == affiliate_id,
                Commission.split_from_id.is_(None),
            ).all()

        by_user: dict[str, list[Commission]] = defaultdict(list)
        for commission in commissions:
            by_user[commission.user_id].append(commission)

        views = []
        for conversion in conversions:
            user_commissions = by_user.get(conversion.user_id, [])
            expiration = conversion.created_at + window
            views.append(ReferralView(
                conversion_id=conversion.id,
                user_id=conversion.user_id,
                click_id=conversion.click_id,
                converted_at=conversion.created_at,
                expiration_date=expiration,
                days_remaining=max(0, (expiration - now).days),
                commission_status=referral_status(
                    conversion.created_at,
                    (c.status for c in user_commissions),
                    now,
                    self.settings.eligibility_window_days,
                ),
                commission_count=len(user_commissions),
                commission_total=to_money(sum((c.amount for c in user_commissions), Decimal("0"))),
            ))
        return views

    def get_stats(self, affiliate_id: int, now: datetime | None = None) -> AffiliateStats:
        now = now or utcnow()

        with self.db.session() as session:
            affiliate = get_affiliate_or_raise(session, affiliate_id)

            total_clicks = session.query(func.count(Click.id)).filter(
                Click.affiliate_id == affiliate_id,
            ).scalar() or 0

            total_conversions = session.query(func.count(Conversion.id)).filter(
                Conversion.affiliate_id == affiliate_id,
            ).scalar() or 0

            pending = session.query(func.sum(Commission.amount)).filter(
                Commission.affiliate_id == affiliate_id,
                Commission.status == CommissionStatus.WAITING.value,
            ).scalar()

            this_month = session.query(func.sum(Commission.amount)).filter(
                Commission.affiliate_id == affiliate_id,
                Commission.status != CommissionStatus.EXPIRED.value,
                Commission.split_from_id.is_(None),
                Commission.created_at >= _month_start(now),
            ).scalar()

            return AffiliateStats(
                total_clicks=total_clicks,
                total_conversions=total_conversions,
                conversion_rate=(total_conversions / total_clicks * 100) if total_clicks else 0.0,
                total_earnings=to_money(affiliate.total_earnings),
                pending_earnings=to_money(pending),
                paid_earnings=to_money(affiliate.total_paid),
                this_month_earnings=to_money(this_month),
            )

    def list_commissions(
        self,
        affiliate_id: int,
        status: CommissionStatus | str | None = None,
    ) -> list[Commission]:
        with self.db.session() as session:
            query = session.query(Commission).filter(Commission.affiliate_id == affiliate_id)
            if status is not None:
                query = query.filter(Commission.status == CommissionStatus(status).value)
            return query.order_by(Commission.created_at.desc(), Commission.id.desc()).all()

    def withdrawal_overview(self, now: datetime | None = None) -> WithdrawalOverview:
        """Counts across all affiliates for the operator queue."""
        now = now or utcnow()

        with self.db.session() as session:
            counts = dict(
                session.query(WithdrawalRequest.status, func.count(WithdrawalRequest.id))
                .group_by(WithdrawalRequest.status)
                .all()
            )
            open_amount = session.query(func.sum(WithdrawalRequest.amount)).filter(
                WithdrawalRequest.status.in_([
                    WithdrawalStatus.PENDING.value,
                    WithdrawalStatus.APPROVED.value,
                ]),
            ).scalar()
            paid_this_month = session.query(func.count(WithdrawalRequest.id)).filter(
                WithdrawalRequest.status == WithdrawalStatus.PAID.value,
                WithdrawalRequest.processed_at >= _month_start(now),
            ).scalar() or 0

        return WithdrawalOverview(
            pending=counts.get(WithdrawalStatus.PENDING.value, 0),
            approved=counts.get(WithdrawalStatus.APPROVED.value, 0),
            processing=counts.get(WithdrawalStatus.PROCESSING.value, 0),
            paid=counts.get(WithdrawalStatus.PAID.value, 0),
            open_amount=to_money(open_amount),
            paid_this_month=paid_this_month,
        )

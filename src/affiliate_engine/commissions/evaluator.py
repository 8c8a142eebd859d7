"""Periodic expiration sweep for waiting commissions."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import func

from affiliate_engine.affiliates.models import Affiliate, AffiliateLevel
from affiliate_engine.commissions.models import (
    EARNED_COMMISSION_STATUSES,
    Commission,
    CommissionStatus,
    CommissionType,
)
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import utcnow
from affiliate_engine.tracking.models import Conversion

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Outcome of one sweep."""
    confirmed: list[int] = field(default_factory=list)
    expired: list[int] = field(default_factory=list)
    promoted_affiliates: list[int] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.confirmed) + len(self.expired)


def referral_status(
    converted_at: datetime,
    commission_statuses: Iterable[str],
    now: datetime,
    window_days: int,
) -> str:
    """Derive the commission status shown for a conversion.

    A conversion without any commission is "expired" once its window has
    passed. This is computed on read and never persisted.
    """
    statuses = set(commission_statuses)
    if statuses & set(EARNED_COMMISSION_STATUSES):
        return CommissionStatus.CONFIRMED.value
    if CommissionStatus.WAITING.value in statuses:
        return CommissionStatus.WAITING.value
    if statuses or now > converted_at + timedelta(days=window_days):
        return CommissionStatus.EXPIRED.value
    return CommissionStatus.WAITING.value


class ExpirationEvaluator:
    """Promotes waiting commissions once their eligibility window elapses.

    A commission whose qualifying event happened within the window of its
    conversion becomes confirmed; one recorded after the deadline expires.
    Terminal commissions are never touched, so re-running is a no-op.
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

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.settings.eligibility_window_days)

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Evaluate every waiting commission whose conversion is past its window."""
        now = now or utcnow()
        result = SweepResult()

        with self.db.session() as session:
            rows = session.query(Commission, Conversion.created_at).join(
                Conversion,
                (Conversion.affiliate_id == Commission.affiliate_id)
                & (Conversion.user_id == Commission.user_id),
            ).filter(
                Commission.status == CommissionStatus.WAITING.value,
                Conversion.created_at <= now - self.window,
            ).order_by(Commission.id).all()

            touched_affiliates: set[int] = set()
            for commission, converted_at in rows:
                deadline = converted_at + self.window
                if commission.created_at <= deadline:
                    target = CommissionStatus.CONFIRMED
                else:
                    target = CommissionStatus.EXPIRED

                # Conditional update keeps the transition one-directional
                changed = session.query(Commission).filter(
                    Commission.id == commission.id,
                    Commission.status == CommissionStatus.WAITING.value,
                ).update(
                    {Commission.status: target.value, Commission.processed_at: now},
                    synchronize_session=False,
                )
                if changed != 1:
                    continue

                if target == CommissionStatus.CONFIRMED:
                    session.query(Affiliate).filter(Affiliate.id == commission.affiliate_id).update(
                        {Affiliate.total_earnings: Affiliate.total_earnings + commission.amount},
                        synchronize_session=False,
                    )
                    result.confirmed.append(commission.id)
                    touched_affiliates.add(commission.affiliate_id)
                else:
                    result.expired.append(commission.id)

            for affiliate_id in sorted(touched_affiliates):
                if self._promote_if_eligible(session, affiliate_id):
                    result.promoted_affiliates.append(affiliate_id)

        self.logger.info(
            "commission_sweep_completed",
            confirmed=len(result.confirmed),
            expired=len(result.expired),
            promoted=len(result.promoted_affiliates),
        )
        for commission_id in result.confirmed:
            self.publisher.publish("commission_confirmed", commission_id=commission_id)
        for commission_id in result.expired:
            self.publisher.publish("commission_expired", commission_id=commission_id)
        for affiliate_id in result.promoted_affiliates:
            self.publisher.publish("affiliate_promoted", affiliate_id=affiliate_id, level=AffiliateLevel.SILVER.value)
        return result

    def _promote_if_eligible(self, session, affiliate_id: int) -> bool:
        """Bronze affiliates move to silver after enough confirmed registrations."""
        affiliate = session.get(Affiliate, affiliate_id)
        if affiliate is None or affiliate.level != AffiliateLevel.BRONZE.value:
            return False

        confirmed_registrations = session.query(func.count(Commission.id)).filter(
            Commission.affiliate_id == affiliate_id,
            Commission.type == CommissionType.AUTHOR_REGISTRATION.value,
            Commission.status.in_(EARNED_COMMISSION_STATUSES),
            Commission.split_from_id.is_(None),
        ).scalar() or 0

        if confirmed_registrations < self.settings.silver_promotion_threshold:
            return False

        affiliate.level = AffiliateLevel.SILVER.value
        self.logger.info(
            "affiliate_promoted",
            affiliate_id=affiliate_id,
            level=AffiliateLevel.SILVER.value,
            confirmed_registrations=confirmed_registrations,
        )
        return True

    def run_periodically(
        self,
        stop_event: threading.Event | None = None,
        interval_seconds: float | None = None,
        max_runs: int | None = None,
    ) -> int:
        """Sweep on a fixed interval until stopped.

        Returns:
            Number of sweeps executed
        """
        stop_event = stop_event or threading.Event()
        interval = interval_seconds if interval_seconds is not None else self.settings.sweep_interval_seconds
        runs = 0
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                # The next tick retries; each sweep is all-or-nothing
                self.logger.exception("commission_sweep_failed")
            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            stop_event.wait(interval)
        return runs

"""Durable queue of qualifying events that fire at a deadline.

A job is claimed by a conditional update on fired_at, and its commission is
created in the same transaction, so each job fires exactly once even when
several dispatchers run or a dispatcher restarts mid-batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from affiliate_engine.commissions.calculator import CommissionCalculator
from affiliate_engine.commissions.models import CommissionType, ScheduledEvent
from affiliate_engine.errors import DuplicateQualifyingEvent, InvalidAmount
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import utcnow
from affiliate_engine.tracking.models import Conversion

logger = get_logger(__name__)

OUTCOME_COMMISSION_CREATED = "commission_created"
OUTCOME_DUPLICATE = "duplicate_event"
OUTCOME_NO_ATTRIBUTION = "no_attribution"


@dataclass
class DispatchResult:
    """Outcome of one dispatch pass."""
    fired: list[int] = field(default_factory=list)
    commissions: list[int] = field(default_factory=list)
    unattributed: list[int] = field(default_factory=list)


class QualifyingEventQueue:
    """Schedules and dispatches qualifying events."""

    def __init__(
        self,
        database: Database | None = None,
        calculator: CommissionCalculator | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.db = database or default_db
        self.publisher = publisher or EventPublisher()
        self.calculator = calculator or CommissionCalculator(self.db, publisher=self.publisher)
        self.logger = get_logger(__name__)

    def enqueue(
        self,
        user_id: str,
        event_type: CommissionType | str,
        reference_id: str,
        base_price: Decimal,
        due_at: datetime | None = None,
    ) -> ScheduledEvent:
        """Schedule a qualifying event. Duplicates return the existing job."""
        event_type = CommissionType(event_type)
        base_price = Decimal(str(base_price))
        if base_price <= 0:
            raise InvalidAmount(base_price)

        try:
            with self.db.session() as session:
                existing = self._find(session, event_type.value, reference_id)
                if existing:
                    return existing

                job = ScheduledEvent(
                    user_id=user_id,
                    event_type=event_type.value,
                    reference_id=reference_id,
                    base_price=base_price,
                    due_at=due_at or utcnow(),
                )
                session.add(job)
                session.flush()
        except IntegrityError:
            with self.db.session() as session:
                return self._find(session, event_type.value, reference_id)

        self.logger.info(
            "qualifying_event_scheduled",
            job_id=job.id,
            user_id=user_id,
            event_type=event_type.value,
            due_at=job.due_at.isoformat(),
        )
        return job

    def dispatch_due(self, now: datetime | None = None, limit: int = 500) -> DispatchResult:
        """Fire every unfired job whose due time has passed."""
        now = now or utcnow()
        result = DispatchResult()

        with self.db.session() as session:
            due_ids = [
                job_id
                for (job_id,) in session.query(ScheduledEvent.id).filter(
                    ScheduledEvent.fired_at.is_(None),
                    ScheduledEvent.due_at <= now,
                ).order_by(ScheduledEvent.due_at, ScheduledEvent.id).limit(limit)
            ]

        for job_id in due_ids:
            try:
                self._fire(job_id, now, result)
            except DuplicateQualifyingEvent:
                # Claim rolled back with the insert; the next pass records the duplicate
                self.logger.info("qualifying_event_retry_later", job_id=job_id)

        if result.fired:
            self.logger.info(
                "qualifying_events_dispatched",
                fired=len(result.fired),
                commissions=len(result.commissions),
                unattributed=len(result.unattributed),
            )
        return result

    def _fire(self, job_id: int, now: datetime, result: DispatchResult) -> None:
        created = False
        with self.db.session() as session:
            claimed = session.query(ScheduledEvent).filter(
                ScheduledEvent.id == job_id,
                ScheduledEvent.fired_at.is_(None),
            ).update({ScheduledEvent.fired_at: now}, synchronize_session=False)
            if claimed != 1:
                return

            job = session.get(ScheduledEvent, job_id)
            conversion = session.query(Conversion).filter(Conversion.user_id == job.user_id).first()
            if not conversion:
                job.outcome = OUTCOME_NO_ATTRIBUTION
                result.fired.append(job_id)
                result.unattributed.append(job_id)
                self.logger.info("qualifying_event_unattributed", job_id=job_id, user_id=job.user_id)
                return

            commission, created = self.calculator.create_in_session(
                session,
                conversion.affiliate_id,
                job.user_id,
                job.event_type,
                job.reference_id,
                job.base_price,
                now=job.due_at,
            )
            job.outcome = OUTCOME_COMMISSION_CREATED if created else OUTCOME_DUPLICATE
            job.commission_id = commission.id
            result.fired.append(job_id)
            result.commissions.append(commission.id)

        if created:
            self.publisher.publish(
                "commission_created",
                commission_id=commission.id,
                affiliate_id=commission.affiliate_id,
                amount=commission.amount,
            )

    def pending(self) -> list[ScheduledEvent]:
        with self.db.session() as session:
            return session.query(ScheduledEvent).filter(
                ScheduledEvent.fired_at.is_(None),
            ).order_by(ScheduledEvent.due_at).all()

    @staticmethod
    def _find(session, event_type: str, reference_id: str) -> ScheduledEvent | None:
        return session.query(ScheduledEvent).filter(
            ScheduledEvent.event_type == event_type,
            ScheduledEvent.reference_id == reference_id,
        ).first()

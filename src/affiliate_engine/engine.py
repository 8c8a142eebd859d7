"""Engine facade: the operations exposed to calling layers.

Handlers are stateless; every call goes straight to the ledger store, so any
number of engine instances can serve requests side by side.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from affiliate_engine.affiliates.service import AffiliateService
from affiliate_engine.commissions.calculator import CommissionCalculator
from affiliate_engine.commissions.evaluator import ExpirationEvaluator, SweepResult
from affiliate_engine.commissions.models import Commission, CommissionType
from affiliate_engine.commissions.queue import DispatchResult, QualifyingEventQueue
from affiliate_engine.errors import ConcurrentAllocationConflict
from affiliate_engine.events import EventPublisher, WebhookNotifier
from affiliate_engine.reports import AffiliateStats, ReferralView, ReportingService
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.tracking.service import AttributionTracker, ConversionLinker
from affiliate_engine.withdrawals.models import PaymentMethod, WithdrawalRequest, WithdrawalStatus
from affiliate_engine.withdrawals.service import AffiliateBalance, WithdrawalSettlement


class AffiliateEngine:
    """Composes every service over one database, settings and publisher."""

    def __init__(
        self,
        database: Database | None = None,
        settings: Settings | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.db = database or default_db
        self.settings = settings or default_settings
        self.events = publisher or EventPublisher()
        self.webhook: WebhookNotifier | None = None
        if self.settings.webhook_url:
            self.webhook = WebhookNotifier(settings=self.settings)
            self.events.subscribe(self.webhook)

        self.affiliates = AffiliateService(self.db, self.settings, self.events)
        self.tracker = AttributionTracker(self.db, self.events)
        self.linker = ConversionLinker(self.db, self.settings, self.events)
        self.calculator = CommissionCalculator(self.db, self.settings, self.events, self.affiliates)
        self.evaluator = ExpirationEvaluator(self.db, self.settings, self.events)
        self.queue = QualifyingEventQueue(self.db, self.calculator, self.events)
        self.settlement = WithdrawalSettlement(self.db, self.settings, self.events)
        self.reports = ReportingService(self.db, self.settings)

    # Attribution

    def record_click(self, affiliate_code: str, now: datetime | None = None, **metadata: str | None) -> int:
        return self.tracker.record_click(affiliate_code, now=now, **metadata).id

    def link_signup(self, affiliate_code: str, user_id: str, now: datetime | None = None) -> int | None:
        conversion = self.linker.link_signup(affiliate_code, user_id, now=now)
        return conversion.id if conversion else None

    # Commissions

    def compute_commission(
        self,
        affiliate_id: int,
        user_id: str,
        event_type: CommissionType | str,
        reference_id: str,
        base_price: Decimal,
        now: datetime | None = None,
    ) -> int:
        return self.calculator.compute_commission(
            affiliate_id, user_id, event_type, reference_id, base_price, now=now
        ).id

    def schedule_qualifying_event(
        self,
        user_id: str,
        event_type: CommissionType | str,
        reference_id: str,
        base_price: Decimal,
        due_at: datetime | None = None,
    ) -> int:
        return self.queue.enqueue(user_id, event_type, reference_id, base_price, due_at=due_at).id

    def dispatch_qualifying_events(self, now: datetime | None = None) -> DispatchResult:
        return self.queue.dispatch_due(now=now)

    def run_expiration_sweep(self, now: datetime | None = None) -> SweepResult:
        return self.evaluator.sweep(now=now)

    # Settlement

    def get_affiliate_balance(self, affiliate_id: int) -> AffiliateBalance:
        return self.settlement.get_balance(affiliate_id)

    def request_withdrawal(
        self,
        affiliate_id: int,
        amount: Decimal | str,
        payment_method: PaymentMethod | str,
        payment_details: dict[str, Any] | None,
        now: datetime | None = None,
    ) -> int:
        return self.settlement.request_withdrawal(
            affiliate_id, amount, payment_method, payment_details, now=now
        ).id

    @retry(
        retry=retry_if_exception_type(ConcurrentAllocationConflict),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def request_withdrawal_with_retry(
        self,
        affiliate_id: int,
        amount: Decimal | str,
        payment_method: PaymentMethod | str,
        payment_details: dict[str, Any] | None,
        now: datetime | None = None,
    ) -> int:
        """request_withdrawal, retrying transient allocation conflicts."""
        return self.request_withdrawal(affiliate_id, amount, payment_method, payment_details, now=now)

    def advance_withdrawal_status(
        self,
        withdrawal_id: int,
        new_status: WithdrawalStatus | str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> None:
        self.settlement.advance_status(withdrawal_id, new_status, reason=reason, now=now)

    # Queries

    def list_referrals(self, affiliate_id: int, now: datetime | None = None) -> list[ReferralView]:
        return self.reports.list_referrals(affiliate_id, now=now)

    def list_withdrawals(self, affiliate_id: int) -> list[WithdrawalRequest]:
        return self.settlement.list_withdrawals(affiliate_id)

    def list_commissions(self, affiliate_id: int, status: str | None = None) -> list[Commission]:
        return self.reports.list_commissions(affiliate_id, status=status)

    def get_affiliate_stats(self, affiliate_id: int, now: datetime | None = None) -> AffiliateStats:
        return self.reports.get_stats(affiliate_id, now=now)

    def close(self) -> None:
        """Finish queued webhook deliveries."""
        if self.webhook is not None:
            self.webhook.close()

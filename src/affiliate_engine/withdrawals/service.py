"""Withdrawal settlement: allocation of confirmed commissions to payouts."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from affiliate_engine.affiliates.models import Affiliate
from affiliate_engine.affiliates.service import get_affiliate_or_raise
from affiliate_engine.commissions.models import Commission, CommissionStatus
from affiliate_engine.errors import (
    BelowMinimumWithdrawal,
    ConcurrentAllocationConflict,
    IllegalTransition,
    InsufficientBalance,
    InvalidAmount,
    InvalidPaymentDetails,
    WithdrawalNotFound,
)
from affiliate_engine.events import EventPublisher
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.db import Database, db as default_db
from affiliate_engine.storage.models import CENTS, to_money, utcnow
from affiliate_engine.withdrawals.models import (
    OPEN_WITHDRAWAL_STATUSES,
    WITHDRAWAL_TRANSITIONS,
    PaymentMethod,
    WithdrawalRequest,
    WithdrawalStatus,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class AffiliateBalance:
    """Balance snapshot for one affiliate."""
    affiliate_id: int
    available: Decimal  # confirmed, not allocated to any withdrawal
    pending: Decimal  # waiting commissions
    reserved: Decimal  # allocated to open withdrawals
    total_earnings: Decimal
    total_paid: Decimal


def parse_amount(value: Any) -> Decimal:
    """Parse a money amount, rejecting more than two decimal places."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(value, reason="Amount is not a number") from exc
    if not amount.is_finite():
        raise InvalidAmount(amount, reason="Amount is not a number")
    if amount != amount.quantize(CENTS):
        raise InvalidAmount(amount, reason="Amount must have at most 2 decimal places")
    if amount <= 0:
        raise InvalidAmount(amount)
    return amount.quantize(CENTS)


def available_balance(session: Session, affiliate_id: int) -> Decimal:
    """Sum of confirmed commissions not allocated to any withdrawal."""
    total = session.query(func.sum(Commission.amount)).filter(
        Commission.affiliate_id == affiliate_id,
        Commission.status == CommissionStatus.CONFIRMED.value,
        Commission.paid_in_withdrawal_id.is_(None),
    ).scalar()
    return to_money(total)


class WithdrawalSettlement:
    """Drives withdrawal requests through their lifecycle.

    Lifecycle: pending -> approved -> processing -> paid, with
    pending/approved -> rejected releasing the allocated commissions.
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

    def request_withdrawal(
        self,
        affiliate_id: int,
        amount: Decimal | str | float,
        payment_method: PaymentMethod | str,
        payment_details: dict[str, Any] | None,
        now: datetime | None = None,
    ) -> WithdrawalRequest:
        """Create a withdrawal and allocate commissions to it atomically.

        Confirmed, unallocated commissions are consumed oldest first. When the
        last one is larger than what is still needed it is split into two
        confirmed parts; the unallocated part stays available.

        Raises:
            BelowMinimumWithdrawal: If amount < settings.minimum_withdrawal
            InvalidPaymentDetails: If the method is unknown or details are empty
            InsufficientBalance: If the available balance cannot cover amount
            ConcurrentAllocationConflict: If another allocation for the same
                affiliate committed first (retry)
        """
        amount = parse_amount(amount)
        if amount < self.settings.minimum_withdrawal:
            raise BelowMinimumWithdrawal(amount, self.settings.minimum_withdrawal)
        try:
            method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise InvalidPaymentDetails(f"Unknown payment method: {payment_method}") from exc
        if not payment_details:
            raise InvalidPaymentDetails("Payment details are required")
        now = now or utcnow()

        with self.db.session() as session:
            affiliate = self._lock_affiliate(session, affiliate_id)
            version = affiliate.allocation_version

            # Re-checked inside the transaction that allocates
            candidates = session.query(Commission).filter(
                Commission.affiliate_id == affiliate_id,
                Commission.status == CommissionStatus.CONFIRMED.value,
                Commission.paid_in_withdrawal_id.is_(None),
            ).order_by(Commission.created_at, Commission.id).all()
            available = to_money(sum((c.amount for c in candidates), Decimal("0")))
            if amount > available:
                raise InsufficientBalance(amount, available)

            # Optimistic lock: exactly one allocation per version wins
            bumped = session.query(Affiliate).filter(
                Affiliate.id == affiliate_id,
                Affiliate.allocation_version == version,
            ).update(
                {Affiliate.allocation_version: version + 1},
                synchronize_session=False,
            )
            if bumped != 1:
                raise ConcurrentAllocationConflict(affiliate_id)

            withdrawal = WithdrawalRequest(
                affiliate_id=affiliate_id,
                amount=amount,
                status=WithdrawalStatus.PENDING.value,
                payment_method=method.value,
                payment_details=payment_details,
                requested_at=now,
            )
            session.add(withdrawal)
            session.flush()

            allocated = self._allocate(session, withdrawal, candidates, amount)

        self.logger.info(
            "withdrawal_requested",
            withdrawal_id=withdrawal.id,
            affiliate_id=affiliate_id,
            amount=str(amount),
            commissions=len(allocated),
        )
        self.publisher.publish(
            "withdrawal_requested",
            withdrawal_id=withdrawal.id,
            affiliate_id=affiliate_id,
            amount=amount,
        )
        return withdrawal

    def _lock_affiliate(self, session: Session, affiliate_id: int) -> Affiliate:
        return get_affiliate_or_raise(session, affiliate_id, for_update=True)

    def _allocate(
        self,
        session: Session,
        withdrawal: WithdrawalRequest,
        candidates: list[Commission],
        amount: Decimal,
    ) -> list[int]:
        remaining = amount
        selected: list[int] = []
        for commission in candidates:
            if remaining <= 0:
                break
            if commission.amount > remaining:
                allocated, _ = self._split(session, commission, remaining)
                selected.append(allocated.id)
                remaining -= to_money(allocated.amount)
            else:
                selected.append(commission.id)
                remaining -= to_money(commission.amount)

        stamped = session.query(Commission).filter(
            Commission.id.in_(selected),
            Commission.status == CommissionStatus.CONFIRMED.value,
            Commission.paid_in_withdrawal_id.is_(None),
        ).update(
            {Commission.paid_in_withdrawal_id: withdrawal.id},
            synchronize_session=False,
        )
        if stamped != len(selected):
            raise ConcurrentAllocationConflict(withdrawal.affiliate_id)

        allocated_total = to_money(session.query(func.sum(Commission.amount)).filter(
            Commission.paid_in_withdrawal_id == withdrawal.id,
        ).scalar())
        if allocated_total != amount:
            # Cannot happen unless rows changed under us; never commit a mismatch
            raise ConcurrentAllocationConflict(withdrawal.affiliate_id)
        return selected

    def _split(self, session: Session, commission: Commission, needed: Decimal) -> tuple[Commission, Commission]:
        """Replace commission by two confirmed parts: needed and the rest.

        The original row keeps its amount and leaves the balance with status
        split, so repeated lookups of the qualifying event still see the
        amount it was created with.
        """
        superseded = session.query(Commission).filter(
            Commission.id == commission.id,
            Commission.status == CommissionStatus.CONFIRMED.value,
            Commission.paid_in_withdrawal_id.is_(None),
        ).update({Commission.status: CommissionStatus.SPLIT.value}, synchronize_session=False)
        if superseded != 1:
            raise ConcurrentAllocationConflict(commission.affiliate_id)

        parts = [
            Commission(
                affiliate_id=commission.affiliate_id,
                user_id=commission.user_id,
                type=commission.type,
                reference_id=None,
                base_price=commission.base_price,
                commission_rate=commission.commission_rate,
                amount=part,
                status=CommissionStatus.CONFIRMED.value,
                split_from_id=commission.id,
                created_at=commission.created_at,
                processed_at=commission.processed_at,
            )
            for part in (to_money(needed), to_money(commission.amount - needed))
        ]
        session.add_all(parts)
        session.flush()
        allocated, remainder = parts
        self.logger.info(
            "commission_split",
            commission_id=commission.id,
            allocated_id=allocated.id,
            remainder_id=remainder.id,
            allocated=str(allocated.amount),
            remainder=str(remainder.amount),
        )
        return allocated, remainder

    def advance_status(
        self,
        withdrawal_id: int,
        new_status: WithdrawalStatus | str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> WithdrawalRequest:
        """Move a withdrawal along its lifecycle.

        Rejection releases the allocated commissions back to the available
        balance; payment moves the allocated sum from total_earnings to
        total_paid.

        Raises:
            WithdrawalNotFound: If the withdrawal does not exist
            IllegalTransition: If the move is not in the transition table
        """
        target = WithdrawalStatus(new_status)
        now = now or utcnow()

        with self.db.session() as session:
            withdrawal = session.query(WithdrawalRequest).filter(
                WithdrawalRequest.id == withdrawal_id,
            ).with_for_update().first()
            if not withdrawal:
                raise WithdrawalNotFound(withdrawal_id)

            current = WithdrawalStatus(withdrawal.status)
            if target not in WITHDRAWAL_TRANSITIONS[current]:
                raise IllegalTransition("withdrawal", current.value, target.value)

            values: dict[Any, Any] = {
                WithdrawalRequest.status: target.value,
                WithdrawalRequest.updated_at: now,
            }
            if target in (WithdrawalStatus.PAID, WithdrawalStatus.REJECTED):
                values[WithdrawalRequest.processed_at] = now
            if target == WithdrawalStatus.REJECTED:
                values[WithdrawalRequest.rejection_reason] = reason

            # Conditional on the status we validated against
            changed = session.query(WithdrawalRequest).filter(
                WithdrawalRequest.id == withdrawal_id,
                WithdrawalRequest.status == current.value,
            ).update(values, synchronize_session=False)
            if changed != 1:
                raise IllegalTransition("withdrawal", current.value, target.value)

            if target == WithdrawalStatus.REJECTED:
                released = session.query(Commission).filter(
                    Commission.paid_in_withdrawal_id == withdrawal_id,
                ).update({Commission.paid_in_withdrawal_id: None}, synchronize_session=False)
                self.logger.info("withdrawal_allocation_released", withdrawal_id=withdrawal_id, commissions=released)

            elif target == WithdrawalStatus.PAID:
                allocated_total = to_money(session.query(func.sum(Commission.amount)).filter(
                    Commission.paid_in_withdrawal_id == withdrawal_id,
                ).scalar())
                session.query(Affiliate).filter(Affiliate.id == withdrawal.affiliate_id).update(
                    {
                        Affiliate.total_paid: Affiliate.total_paid + withdrawal.amount,
                        Affiliate.total_earnings: Affiliate.total_earnings - allocated_total,
                    },
                    synchronize_session=False,
                )

            session.refresh(withdrawal)

        self.logger.info(
            "withdrawal_status_changed",
            withdrawal_id=withdrawal_id,
            from_status=current.value,
            to_status=target.value,
        )
        self.publisher.publish(
            "withdrawal_status_changed",
            withdrawal_id=withdrawal_id,
            affiliate_id=withdrawal.affiliate_id,
            status=target.value,
        )
        return withdrawal

    def get_balance(self, affiliate_id: int) -> AffiliateBalance:
        """Available, pending and reserved amounts plus running totals."""
        with self.db.session() as session:
            affiliate = get_affiliate_or_raise(session, affiliate_id)

            pending = session.query(func.sum(Commission.amount)).filter(
                Commission.affiliate_id == affiliate_id,
                Commission.status == CommissionStatus.WAITING.value,
            ).scalar()

            reserved = session.query(func.sum(Commission.amount)).join(
                WithdrawalRequest, WithdrawalRequest.id == Commission.paid_in_withdrawal_id,
            ).filter(
                Commission.affiliate_id == affiliate_id,
                WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
            ).scalar()

            return AffiliateBalance(
                affiliate_id=affiliate_id,
                available=available_balance(session, affiliate_id),
                pending=to_money(pending),
                reserved=to_money(reserved),
                total_earnings=to_money(affiliate.total_earnings),
                total_paid=to_money(affiliate.total_paid),
            )

    def get_withdrawal(self, withdrawal_id: int) -> WithdrawalRequest:
        with self.db.session() as session:
            withdrawal = session.get(WithdrawalRequest, withdrawal_id)
            if not withdrawal:
                raise WithdrawalNotFound(withdrawal_id)
            return withdrawal

    def list_withdrawals(
        self,
        affiliate_id: int,
        status: WithdrawalStatus | str | None = None,
    ) -> list[WithdrawalRequest]:
        """Withdrawals for an affiliate, newest first."""
        with self.db.session() as session:
            query = session.query(WithdrawalRequest).filter(
                WithdrawalRequest.affiliate_id == affiliate_id,
            )
            if status is not None:
                query = query.filter(WithdrawalRequest.status == WithdrawalStatus(status).value)
            return query.order_by(
                WithdrawalRequest.requested_at.desc(),
                WithdrawalRequest.id.desc(),
            ).all()

    def allocated_commissions(self, withdrawal_id: int) -> list[Commission]:
        with self.db.session() as session:
            return session.query(Commission).filter(
                Commission.paid_in_withdrawal_id == withdrawal_id,
            ).order_by(Commission.created_at, Commission.id).all()

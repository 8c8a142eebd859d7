"""Withdrawal requests and settlement."""

from affiliate_engine.withdrawals.models import PaymentMethod, WithdrawalRequest, WithdrawalStatus
from affiliate_engine.withdrawals.service import AffiliateBalance, WithdrawalSettlement

__all__ = [
    "AffiliateBalance",
    "PaymentMethod",
    "WithdrawalRequest",
    "WithdrawalSettlement",
    "WithdrawalStatus",
]

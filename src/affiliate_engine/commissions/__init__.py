"""Commission calculation, expiration sweep and qualifying event queue."""

from affiliate_engine.commissions.calculator import CommissionCalculator, commission_amount
from affiliate_engine.commissions.evaluator import ExpirationEvaluator, SweepResult, referral_status
from affiliate_engine.commissions.models import (
    Commission,
    CommissionStatus,
    CommissionType,
    ScheduledEvent,
)
from affiliate_engine.commissions.queue import DispatchResult, QualifyingEventQueue

__all__ = [
    "Commission",
    "CommissionCalculator",
    "CommissionStatus",
    "CommissionType",
    "DispatchResult",
    "ExpirationEvaluator",
    "QualifyingEventQueue",
    "ScheduledEvent",
    "SweepResult",
    "commission_amount",
    "referral_status",
]

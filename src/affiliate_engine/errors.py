"""Error taxonomy for the affiliate engine.

Only money-correctness violations are hard failures. Attribution misses are
reported as no-ops by the services and never reach this module.
"""

from decimal import Decimal


class AffiliateEngineError(Exception):
    """Base class for all engine errors."""


class UnknownAffiliateCode(AffiliateEngineError):
    """Raised when a code does not resolve to an approved affiliate."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Unknown or inactive affiliate code: {code}")


class AffiliateNotFound(AffiliateEngineError):
    """Raised when an affiliate id does not exist."""

    def __init__(self, affiliate_id: int):
        self.affiliate_id = affiliate_id
        super().__init__(f"Affiliate {affiliate_id} not found")


class AffiliateAlreadyExists(AffiliateEngineError):
    """Raised when a user applies twice."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} already has an affiliate profile")


class NoAttribution(AffiliateEngineError):
    """Raised when a commission is requested for an unattributed user."""

    def __init__(self, affiliate_id: int | None, user_id: str):
        self.affiliate_id = affiliate_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not attributed to affiliate {affiliate_id}")


class DuplicateQualifyingEvent(AffiliateEngineError):
    """Raised internally when a commission already exists for an event."""

    def __init__(self, event_type: str, reference_id: str):
        self.event_type = event_type
        self.reference_id = reference_id
        super().__init__(f"Commission already recorded for {event_type}:{reference_id}")


class InvalidAmount(AffiliateEngineError):
    """Raised for non-positive or malformed monetary amounts."""

    def __init__(self, amount: Decimal, reason: str = "Amount must be positive"):
        self.amount = amount
        super().__init__(f"{reason}: {amount}")


class BelowMinimumWithdrawal(InvalidAmount):
    """Raised when a withdrawal is smaller than the configured minimum."""

    def __init__(self, amount: Decimal, minimum: Decimal):
        self.minimum = minimum
        super().__init__(amount, reason=f"Minimum withdrawal is {minimum}")


class InsufficientBalance(AffiliateEngineError):
    """Raised when the available balance cannot cover a withdrawal."""

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient balance: requested {requested}, available {available}")


class IllegalTransition(AffiliateEngineError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal {entity} transition: {current} -> {target}")


class ConcurrentAllocationConflict(AffiliateEngineError):
    """Raised when another allocation for the same affiliate won the race.

    Transient: the caller should retry the withdrawal request.
    """

    def __init__(self, affiliate_id: int):
        self.affiliate_id = affiliate_id
        super().__init__(f"Concurrent allocation for affiliate {affiliate_id}, retry")


class WithdrawalNotFound(AffiliateEngineError):
    """Raised when a withdrawal id does not exist."""

    def __init__(self, withdrawal_id: int):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal {withdrawal_id} not found")


class InvalidPaymentDetails(AffiliateEngineError):
    """Raised when a withdrawal names an unknown method or carries no payout details."""

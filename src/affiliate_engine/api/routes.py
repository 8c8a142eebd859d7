"""Affiliate API v1 endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from affiliate_engine.api.rate_limit import limiter
from affiliate_engine.commissions.models import CommissionType
from affiliate_engine.engine import AffiliateEngine
from affiliate_engine.errors import (
    AffiliateAlreadyExists,
    AffiliateEngineError,
    AffiliateNotFound,
    ConcurrentAllocationConflict,
    IllegalTransition,
    InsufficientBalance,
    InvalidAmount,
    InvalidPaymentDetails,
    NoAttribution,
    UnknownAffiliateCode,
    WithdrawalNotFound,
)
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import settings
from affiliate_engine.withdrawals.models import PaymentMethod, WithdrawalStatus

logger = get_logger(__name__)

router = APIRouter(tags=["affiliates"])


def get_engine(request: Request) -> AffiliateEngine:
    return request.app.state.engine


def _http_error(exc: AffiliateEngineError) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(exc, (AffiliateNotFound, WithdrawalNotFound, UnknownAffiliateCode)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (InvalidAmount, InvalidPaymentDetails)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, ConcurrentAllocationConflict):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, (InsufficientBalance, IllegalTransition, NoAttribution, AffiliateAlreadyExists)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


# ==================== MODELS ====================


class ApplyRequest(BaseModel):
    """Affiliate application."""
    user_id: str = Field(..., min_length=1, max_length=64)
    full_name: str = Field(..., min_length=1, max_length=255)
    contact_email: str | None = None
    promotion_strategy: str | None = None


class AffiliateResponse(BaseModel):
    id: int
    user_id: str
    code: str
    status: str
    level: str
    custom_commission_rate: Decimal | None
    total_earnings: Decimal
    total_paid: Decimal
    link: str | None = None

    model_config = ConfigDict(from_attributes=True)


class StatusChangeRequest(BaseModel):
    status: str
    reason: str | None = None


class TrackClickRequest(BaseModel):
    """Request to track a referral link click."""
    code: str
    referrer: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None


class SignupRequest(BaseModel):
    code: str
    user_id: str = Field(..., min_length=1, max_length=64)


class SignupResponse(BaseModel):
    attributed: bool
    conversion_id: int | None = None


class CommissionRequest(BaseModel):
    affiliate_id: int
    user_id: str
    event_type: CommissionType
    reference_id: str
    base_price: Decimal


class QualifyingEventRequest(BaseModel):
    user_id: str
    event_type: CommissionType
    reference_id: str
    base_price: Decimal
    due_at: datetime | None = None


class BalanceResponse(BaseModel):
    affiliate_id: int
    available: Decimal
    pending: Decimal
    reserved: Decimal
    total_earnings: Decimal
    total_paid: Decimal


class WithdrawalCreateRequest(BaseModel):
    amount: Decimal
    payment_method: PaymentMethod
    payment_details: dict[str, Any]


class WithdrawalResponse(BaseModel):
    id: int
    affiliate_id: int
    amount: Decimal
    status: str
    payment_method: str
    requested_at: datetime
    processed_at: datetime | None
    rejection_reason: str | None

    model_config = ConfigDict(from_attributes=True)


class ReferralResponse(BaseModel):
    conversion_id: int
    user_id: str
    converted_at: datetime
    expiration_date: datetime
    days_remaining: int
    commission_status: str
    commission_count: int
    commission_total: Decimal

    model_config = ConfigDict(from_attributes=True)


# ==================== AFFILIATES ====================


@router.post("/affiliates", response_model=AffiliateResponse, status_code=status.HTTP_201_CREATED)
def apply_for_affiliate(body: ApplyRequest, engine: AffiliateEngine = Depends(get_engine)):
    """Submit an affiliate application (starts as pending)."""
    try:
        affiliate = engine.affiliates.apply(
            body.user_id,
            body.full_name,
            contact_email=body.contact_email,
            promotion_strategy=body.promotion_strategy,
        )
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return AffiliateResponse.model_validate(affiliate).model_copy(
        update={"link": engine.affiliates.referral_link(affiliate)}
    )


@router.post("/affiliates/{affiliate_id}/status", response_model=AffiliateResponse)
def change_affiliate_status(
    affiliate_id: int,
    body: StatusChangeRequest,
    engine: AffiliateEngine = Depends(get_engine),
):
    """Operator action: approve, reject, suspend or reinstate."""
    actions = {
        "approved": engine.affiliates.approve,
        "rejected": engine.affiliates.reject,
        "suspended": engine.affiliates.suspend,
    }
    action = actions.get(body.status)
    if action is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown status: {body.status}")
    try:
        affiliate = action(affiliate_id)
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return AffiliateResponse.model_validate(affiliate)


@router.get("/affiliates/{affiliate_id}/balance", response_model=BalanceResponse)
def get_balance(affiliate_id: int, engine: AffiliateEngine = Depends(get_engine)):
    try:
        balance = engine.get_affiliate_balance(affiliate_id)
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return BalanceResponse(**balance.__dict__)


@router.get("/affiliates/{affiliate_id}/referrals", response_model=list[ReferralResponse])
def list_referrals(affiliate_id: int, engine: AffiliateEngine = Depends(get_engine)):
    try:
        referrals = engine.list_referrals(affiliate_id)
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return [ReferralResponse.model_validate(r) for r in referrals]


@router.get("/affiliates/{affiliate_id}/stats")
def get_stats(affiliate_id: int, engine: AffiliateEngine = Depends(get_engine)):
    try:
        stats = engine.get_affiliate_stats(affiliate_id)
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return stats.__dict__


# ==================== ATTRIBUTION ====================


@router.post("/clicks", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.click_rate_limit)
def track_click(request: Request, body: TrackClickRequest, engine: AffiliateEngine = Depends(get_engine)):
    """Track a click on a referral link.

    Called when someone visits /ref/CODE.
    """
    try:
        click_id = engine.record_click(
            body.code,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            referrer=body.referrer,
            utm_source=body.utm_source,
            utm_medium=body.utm_medium,
            utm_campaign=body.utm_campaign,
            utm_content=body.utm_content,
        )
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return {"click_id": click_id}


@router.post("/signups", response_model=SignupResponse)
def link_signup(body: SignupRequest, engine: AffiliateEngine = Depends(get_engine)):
    """Attribute a new user. Never fails for missing clicks."""
    conversion_id = engine.link_signup(body.code, body.user_id)
    return SignupResponse(attributed=conversion_id is not None, conversion_id=conversion_id)


# ==================== COMMISSIONS ====================


@router.post("/commissions", status_code=status.HTTP_201_CREATED)
def compute_commission(body: CommissionRequest, engine: AffiliateEngine = Depends(get_engine)):
    try:
        commission_id = engine.compute_commission(
            body.affiliate_id,
            body.user_id,
            body.event_type,
            body.reference_id,
            body.base_price,
        )
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return {"commission_id": commission_id}


@router.post("/qualifying-events", status_code=status.HTTP_202_ACCEPTED)
def schedule_qualifying_event(body: QualifyingEventRequest, engine: AffiliateEngine = Depends(get_engine)):
    try:
        job_id = engine.schedule_qualifying_event(
            body.user_id,
            body.event_type,
            body.reference_id,
            body.base_price,
            due_at=body.due_at,
        )
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return {"job_id": job_id}


# ==================== WITHDRAWALS ====================


@router.post(
    "/affiliates/{affiliate_id}/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
)
def request_withdrawal(
    affiliate_id: int,
    body: WithdrawalCreateRequest,
    engine: AffiliateEngine = Depends(get_engine),
):
    try:
        withdrawal_id = engine.request_withdrawal_with_retry(
            affiliate_id,
            body.amount,
            body.payment_method,
            body.payment_details,
        )
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    return WithdrawalResponse.model_validate(engine.settlement.get_withdrawal(withdrawal_id))


@router.get("/affiliates/{affiliate_id}/withdrawals", response_model=list[WithdrawalResponse])
def list_withdrawals(affiliate_id: int, engine: AffiliateEngine = Depends(get_engine)):
    return [WithdrawalResponse.model_validate(w) for w in engine.list_withdrawals(affiliate_id)]


@router.post("/withdrawals/{withdrawal_id}/status", response_model=WithdrawalResponse)
def advance_withdrawal(
    withdrawal_id: int,
    body: StatusChangeRequest,
    engine: AffiliateEngine = Depends(get_engine),
):
    """Operator action on a withdrawal request."""
    try:
        target = WithdrawalStatus(body.status)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown status: {body.status}")
    try:
        engine.advance_withdrawal_status(withdrawal_id, target, reason=body.reason)
    except AffiliateEngineError as exc:
        raise _http_error(exc)
    logger.info("withdrawal_status_changed_via_api", withdrawal_id=withdrawal_id, status=target.value)
    return WithdrawalResponse.model_validate(engine.settlement.get_withdrawal(withdrawal_id))

"""
API endpoints for subscription management.

Endpoints:
- GET /subscription - Current entitlement (subscription, plan, usage)
- GET /subscription/plans - Available plans
- POST /subscription/checkout - Start a provider checkout
- POST /subscription/cancel - Cancel the current subscription
- GET /subscription/billing - Payment and subscription history
"""
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_payment_client
from app.core.auth import get_current_user
from app.core.rate_limit import limiter
from app.db.base import get_db
from app.models import Subscription, SubscriptionPlan, User
from app.schemas import (
    BillingHistory,
    CancelRequest,
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
    EntitlementResponse,
    PlanDetail,
    PaymentTransactionDetail,
    PlanList,
    SubscriptionDetail,
    UsageCounters,
)
from app.services.providers import PaymentProviderClient, ProviderError
from app.services.subscription_ledger import SubscriptionLedger, plan_features_list
from app.services.usage_meter import ACTIVE_STATUSES, UsageMeter
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _days_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


def plan_detail(plan: SubscriptionPlan) -> PlanDetail:
    detail = PlanDetail.model_validate(plan)
    detail.features_list = plan_features_list(plan)
    return detail


def usage_counters(usage, plan: SubscriptionPlan) -> UsageCounters:
    def remaining(limit, used):
        return None if limit is None else max(0, limit - used)

    return UsageCounters(
        period_start=usage.period_start,
        period_end=usage.period_end,
        images_generated=usage.images_generated_count,
        models_trained=usage.models_trained_count,
        image_generation_limit=plan.image_generation_limit,
        model_training_limit=plan.model_training_limit,
        remaining_images=remaining(plan.image_generation_limit, usage.images_generated_count),
        remaining_models=remaining(plan.model_training_limit, usage.models_trained_count),
    )


def is_free_tier(subscription: Subscription) -> bool:
    return (
        subscription.status == "trialing"
        and subscription.trial_start is not None
        and subscription.trial_end is not None
    )


@router.get("", response_model=EntitlementResponse)
async def get_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get the current user's subscription, plan and usage.

    Provisions the free trial on first call and opens a new usage window when
    the billing period has rolled over.
    """
    ledger = SubscriptionLedger(db)
    meter = UsageMeter(db)
    now = datetime.utcnow()

    entitlement = ledger.get_entitlement(current_user.id, now=now)
    subscription, plan = entitlement.subscription, entitlement.plan

    meter.roll_over_if_needed(subscription, plan, now=now)
    usage = meter.current_usage_period(subscription, plan, now=now)

    image_check = meter.check_quota(current_user.id, "generate_image", now=now)
    model_check = meter.check_quota(current_user.id, "train_model", now=now)

    trial_days = None
    if is_free_tier(subscription):
        trial_days = _days_until(subscription.trial_end, now)

    return EntitlementResponse(
        subscription=SubscriptionDetail.model_validate(subscription),
        plan=plan_detail(plan),
        usage=usage_counters(usage, plan),
        can_generate_image=image_check.allowed,
        can_train_model=model_check.allowed,
        is_active=subscription.status in ACTIVE_STATUSES,
        is_expired=now > subscription.current_period_end,
        is_free_tier=is_free_tier(subscription),
        trial_days_remaining=trial_days,
        billing_period_days_remaining=_days_until(subscription.current_period_end, now),
    )


@router.get("/plans", response_model=PlanList)
async def list_plans(db: Session = Depends(get_db)):
    """Get active subscription plans ordered by price."""
    plans = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )
    return PlanList(plans=[plan_detail(plan) for plan in plans])


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit("5/minute")
async def create_checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payment_client: PaymentProviderClient = Depends(get_payment_client),
):
    """
    Start a checkout for a paid plan.

    The subscription is recorded when the provider's webhook arrives.
    """
    ledger = SubscriptionLedger(db, payment_client=payment_client)
    try:
        result = await ledger.create_checkout(current_user, payload.plan_name, payload.return_url)
    except ProviderError as e:
        logger.error(f"Checkout failed for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Payment provider unavailable") from e

    logger.info(f"Created checkout for user {current_user.id}: {result['subscription_id']}")
    return CheckoutResponse(**result)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    payload: CancelRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payment_client: PaymentProviderClient = Depends(get_payment_client),
):
    """
    Cancel the current paid subscription, by default at the end of the period.
    """
    ledger = SubscriptionLedger(db, payment_client=payment_client)
    try:
        subscription = await ledger.cancel(current_user.id, at_period_end=payload.cancel_at_period_end)
    except ProviderError as e:
        logger.error(f"Cancellation failed for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Payment provider unavailable") from e

    if payload.cancel_at_period_end:
        message = "Subscription will be cancelled at the end of the billing period"
    else:
        message = "Subscription cancellation requested"

    return CancelResponse(
        message=message,
        subscription_id=subscription.id,
        cancel_at_period_end=payload.cancel_at_period_end,
    )


@router.get("/billing", response_model=BillingHistory)
async def get_billing_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get payment transactions, subscription history and total spent."""
    history = SubscriptionLedger(db).billing_history(current_user.id)
    return BillingHistory(
        transactions=[PaymentTransactionDetail.model_validate(t) for t in history["transactions"]],
        subscriptions=[SubscriptionDetail.model_validate(s) for s in history["subscriptions"]],
        total_spent=history["total_spent"],
    )

"""
API endpoints for usage and quota.

Provides the current billing period's counters and the increment endpoint
clients call after a metered action completed.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.routes.subscriptions import usage_counters
from app.core.auth import get_current_user
from app.db.base import get_db
from app.models import User
from app.schemas import UsageIncrementRequest, UsageIncrementResponse, UsageSummary
from app.services.usage_meter import UsageMeter

router = APIRouter()


@router.get("", response_model=UsageSummary)
async def get_usage(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Get usage counters and remaining quota for the current billing period.
    """
    meter = UsageMeter(db)
    subscription = meter.ensure_trial_subscription(current_user.id)
    plan = subscription.plan
    meter.roll_over_if_needed(subscription, plan)
    usage = meter.current_usage_period(subscription, plan)

    counters = usage_counters(usage, plan)
    return UsageSummary(
        **counters.model_dump(),
        plan_name=plan.name,
        subscription_status=subscription.status,
    )


@router.post("/increment", response_model=UsageIncrementResponse)
async def increment_usage(
    payload: UsageIncrementRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Record one completed action. An unknown action is rejected with 400.
    """
    meter = UsageMeter(db)
    usage = meter.increment(current_user.id, payload.action)
    if usage is None:
        return UsageIncrementResponse(action=payload.action, usage=None, recorded=False)

    subscription = meter.current_subscription(current_user.id)
    return UsageIncrementResponse(
        action=payload.action,
        usage=usage_counters(usage, subscription.plan),
        recorded=True,
    )

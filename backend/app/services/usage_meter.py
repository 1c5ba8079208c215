"""
Usage metering for billing and quota enforcement.

Tracks, per subscription and billing period:
- Images generated
- Models trained

Checks quotas before an action and increments counters after it succeeded.
Usage periods are append-only; a new billing period gets a new row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import PlanNotFoundError
from app.db.base import insert_or_ignore
from app.models import Subscription, SubscriptionPlan, UsagePeriod

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")

# action -> (counter column, limit column, denial reason)
ACTIONS = {
    "generate_image": ("images_generated_count", "image_generation_limit", "Image generation limit reached"),
    "train_model": ("models_trained_count", "model_training_limit", "Model training limit reached"),
}


@dataclass
class QuotaCheck:
    """Result of a quota check. ``remaining`` is None when the limit is unlimited."""

    allowed: bool
    remaining: Optional[int]
    reason: Optional[str] = None


def _validate_action(action: str):
    if action not in ACTIONS:
        raise ValueError(f"Invalid action: {action}")
    return ACTIONS[action]


class UsageMeter:
    """
    Service for metering usage against plan quotas.

    Provides methods to:
    - Auto-provision the free trial on first use
    - Check quotas before an action
    - Increment counters after an action
    - Roll usage over into a new billing period
    """

    def __init__(self, db: Session):
        """
        Initialize usage meter.

        Args:
            db: Database session
        """
        self.db = db

    def current_subscription(self, user_id: UUID) -> Optional[Subscription]:
        """
        Pick the subscription that governs the user's entitlement.

        Active-equivalent subscriptions win over inactive ones, provider-backed
        subscriptions win over the free trial, then the latest period wins.
        """
        subscriptions = self.db.query(Subscription).filter(Subscription.user_id == user_id).all()
        if not subscriptions:
            return None

        return max(
            subscriptions,
            key=lambda s: (
                s.status in ACTIVE_STATUSES,
                s.external_subscription_id is not None,
                s.current_period_end,
                s.created_at or datetime.min,
            ),
        )

    def ensure_trial_subscription(self, user_id: UUID, now: Optional[datetime] = None) -> Subscription:
        """
        Return the user's subscription, provisioning a free trial if they have none.

        Concurrent first requests collapse onto one trial row through the
        partial unique index on user_id for subscriptions without a provider id.

        Raises:
            PlanNotFoundError: If the free plan is not seeded
        """
        existing = self.current_subscription(user_id)
        if existing is not None:
            return existing

        plan = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.name == settings.free_plan_name)
            .first()
        )
        if plan is None:
            raise PlanNotFoundError(f"Free plan '{settings.free_plan_name}' is not configured")

        now = now or datetime.utcnow()
        trial_end = now + timedelta(days=settings.trial_period_days)

        inserted = insert_or_ignore(
            self.db,
            Subscription,
            {
                "user_id": user_id,
                "plan_id": plan.id,
                "status": "trialing",
                "current_period_start": now,
                "current_period_end": trial_end,
                "trial_start": now,
                "trial_end": trial_end,
                "cancel_at_period_end": False,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id"],
            index_where=Subscription.external_subscription_id.is_(None),
        )
        self.db.commit()

        subscription = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.external_subscription_id.is_(None))
            .first()
        )
        if inserted:
            logger.info(f"Provisioned free trial for user {user_id} until {trial_end.isoformat()}")

        self.ensure_usage_period(subscription, plan)
        return subscription

    def ensure_usage_period(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> UsagePeriod:
        """
        Make sure a usage row exists for the given window (default: the subscription's current period).

        A row created concurrently by another request is accepted as-is.
        """
        start = period_start or subscription.current_period_start
        end = period_end or subscription.current_period_end

        inserted = insert_or_ignore(
            self.db,
            UsagePeriod,
            {
                "user_id": subscription.user_id,
                "subscription_id": subscription.id,
                "period_start": start,
                "period_end": end,
                "images_generated_count": 0,
                "models_trained_count": 0,
                "image_generation_limit": plan.image_generation_limit,
                "model_training_limit": plan.model_training_limit,
                "created_at": datetime.utcnow(),
                "updated_at": datetime.utcnow(),
            },
            index_elements=["subscription_id", "period_start", "period_end"],
        )
        self.db.commit()

        if inserted:
            logger.debug(f"Opened usage period {start.isoformat()} - {end.isoformat()} for subscription {subscription.id}")

        return (
            self.db.query(UsagePeriod)
            .filter(
                UsagePeriod.subscription_id == subscription.id,
                UsagePeriod.period_start == start,
                UsagePeriod.period_end == end,
            )
            .first()
        )

    def current_usage_period(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        now: Optional[datetime] = None,
    ) -> UsagePeriod:
        """
        Get the usage row that counts toward the subscription's quota right now.

        The row matching the subscription's own period wins while that period is
        running. After it ended, the latest rolled-over window containing now is
        used; failing both, the row for the subscription's period is ensured.
        """
        now = now or datetime.utcnow()

        if now <= subscription.current_period_end:
            return self.ensure_usage_period(subscription, plan)

        rolled = (
            self.db.query(UsagePeriod)
            .filter(
                UsagePeriod.subscription_id == subscription.id,
                UsagePeriod.period_start <= now,
                UsagePeriod.period_end >= now,
            )
            .order_by(UsagePeriod.period_start.desc())
            .first()
        )
        if rolled is not None:
            return rolled

        return self.ensure_usage_period(subscription, plan)

    def check_quota(self, user_id: UUID, action: str, now: Optional[datetime] = None) -> QuotaCheck:
        """
        Check whether the user may perform an action.

        Args:
            user_id: User ID
            action: "generate_image" or "train_model"
            now: Evaluation time (defaults to utcnow)

        Returns:
            QuotaCheck with allowed flag, remaining count and denial reason

        Raises:
            ValueError: If the action is unknown
        """
        counter_column, limit_column, limit_reason = _validate_action(action)
        now = now or datetime.utcnow()

        subscription = self.ensure_trial_subscription(user_id, now=now)
        plan = subscription.plan

        if subscription.status not in ACTIVE_STATUSES:
            return QuotaCheck(allowed=False, remaining=0, reason="Subscription is not active")

        if now > subscription.current_period_end:
            return QuotaCheck(allowed=False, remaining=0, reason="Subscription has expired")

        usage = self.current_usage_period(subscription, plan, now=now)
        limit = getattr(plan, limit_column)
        used = getattr(usage, counter_column)

        if limit is None:
            return QuotaCheck(allowed=True, remaining=None)

        remaining = max(0, limit - used)
        if used >= limit:
            logger.info(f"Quota denied for user {user_id}: {action} {used}/{limit}")
            return QuotaCheck(allowed=False, remaining=0, reason=limit_reason)

        return QuotaCheck(allowed=True, remaining=remaining)

    def increment(self, user_id: UUID, action: str, now: Optional[datetime] = None) -> Optional[UsagePeriod]:
        """
        Count one completed action against the current usage period.

        Must only be called after the action succeeded. Failures are logged and
        swallowed so they never undo the completed action.

        Returns:
            Updated UsagePeriod, or None if the increment failed

        Raises:
            ValueError: If the action is unknown
        """
        counter_column, _, _ = _validate_action(action)

        try:
            subscription = self.ensure_trial_subscription(user_id, now=now)
            usage = self.current_usage_period(subscription, subscription.plan, now=now)

            column = getattr(UsagePeriod, counter_column)
            self.db.query(UsagePeriod).filter(UsagePeriod.id == usage.id).update(
                {column: column + 1, UsagePeriod.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
            self.db.commit()
            self.db.refresh(usage)
            logger.info(f"Recorded {action} for user {user_id}: {counter_column}={getattr(usage, counter_column)}")
            return usage
        except Exception as e:
            logger.error(f"Failed to record {action} usage for user {user_id}: {str(e)}", exc_info=True)
            self.db.rollback()
            return None

    def roll_over_if_needed(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        now: Optional[datetime] = None,
    ) -> Optional[UsagePeriod]:
        """
        Open a fresh usage window once the subscription's period has ended.

        The new window is the billing-period-sized window containing now,
        stepping forward from the old period end. Earlier rows are never touched.

        Returns:
            The current rolled-over UsagePeriod, or None when no rollover is due
        """
        now = now or datetime.utcnow()
        if now <= subscription.current_period_end:
            return None

        step = timedelta(days=settings.billing_period_days)
        start = subscription.current_period_end
        while start + step < now:
            start += step

        period = self.ensure_usage_period(subscription, plan, period_start=start, period_end=start + step)
        logger.info(
            f"Billing period rolled over for subscription {subscription.id}: "
            f"{period.period_start.isoformat()} - {period.period_end.isoformat()}"
        )
        return period

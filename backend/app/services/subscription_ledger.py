"""
Subscription ledger.

Handles:
- Applying payment provider subscription events as state transitions
- Recording payment transactions
- Entitlement lookup (current subscription and plan)
- Checkout creation and cancellation through the payment provider

The ledger is the only writer of provider-backed subscriptions. Events are
applied in delivery order; a later delivery carrying a logically older state
is not reordered, except that a cancelled or expired subscription is never
reactivated.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    PlanNotFoundError,
    SubscriptionNotFoundError,
    UserResolutionError,
)
from app.db.base import insert_or_ignore
from app.models import PaymentTransaction, Subscription, SubscriptionPlan, User
from app.services.providers import PaymentProviderClient
from app.services.usage_meter import ACTIVE_STATUSES, UsageMeter

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("cancelled", "expired")
LIVE_STATUSES = ("trialing", "active", "past_due")

# Provider status -> local status
STATUS_MAP = {
    "trialing": "trialing",
    "active": "active",
    "past_due": "past_due",
    "on_hold": "past_due",
    "pending": "past_due",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "expired": "expired",
    "failed": "expired",
}

# Status implied by the event type when the payload carries none
EVENT_TYPE_STATUS = {
    "subscription.created": "active",
    "subscription.activated": "active",
    "subscription.renewed": "active",
    "subscription.active": "active",
    "subscription.on_hold": "past_due",
    "subscription.cancelled": "cancelled",
    "subscription.expired": "expired",
}

PAYMENT_STATUSES = ("pending", "succeeded", "failed", "refunded")
PAYMENT_EVENT_STATUS = {
    "payment.succeeded": "succeeded",
    "payment.failed": "failed",
    "payment.refunded": "refunded",
    "payment.processing": "pending",
}

# Currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}


@dataclass
class Entitlement:
    """The subscription and plan currently governing a user's access."""

    subscription: Subscription
    plan: SubscriptionPlan


def parse_provider_datetime(value: Any) -> Optional[datetime]:
    """Parse a unix timestamp or ISO-8601 string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    raise ValueError(f"Unsupported datetime value: {value!r}")


def to_major_units(amount: Any, currency: str) -> Decimal:
    """Convert a provider amount in minor units (cents) to major units."""
    value = Decimal(str(amount or 0))
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return value
    return (value / Decimal(100)).quantize(Decimal("0.01"))


def map_subscription_status(event_type: str, provider_status: Optional[str]) -> str:
    """
    Map a provider status (or, when absent, the event type) to a local status.

    Raises:
        ValueError: If neither yields a known status
    """
    if provider_status:
        status = STATUS_MAP.get(provider_status.lower())
        if status is None:
            raise ValueError(f"Unknown subscription status: {provider_status}")
        return status

    status = EVENT_TYPE_STATUS.get(event_type)
    if status is None:
        raise ValueError(f"Cannot derive subscription status from event {event_type}")
    return status


def plan_features_list(plan: SubscriptionPlan) -> List[str]:
    """Get plan features as a readable list."""
    features = []
    if plan.image_generation_limit is None:
        features.append("Unlimited image generation")
    else:
        features.append(f"{plan.image_generation_limit:,} images per month")

    if plan.model_training_limit is None:
        features.append("Unlimited model training")
    else:
        features.append(f"{plan.model_training_limit} models per month")

    flags = plan.features or {}
    if flags.get("priority_support"):
        features.append("Priority support")
    if flags.get("advanced_features"):
        features.append("Advanced features")
    if flags.get("api_access"):
        features.append("API access")
    if flags.get("team_management"):
        features.append("Team management")
    return features


def _customer_field(data: Dict[str, Any], field: str) -> Optional[str]:
    customer = data.get("customer") or {}
    if field == "email":
        return data.get("customer_email") or customer.get("email")
    return data.get("customer_id") or customer.get("customer_id")


class UserResolver:
    """
    Correlates provider events with local users.

    Precedence: the event's customer email, then the owner of any subscription
    already linked to the event's provider customer id.
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, email: Optional[str], customer_id: Optional[str]) -> User:
        """
        Raises:
            UserResolutionError: When both lookups miss
        """
        if email:
            user = self.db.query(User).filter(User.email == email).first()
            if user:
                return user

        if customer_id:
            subscription = (
                self.db.query(Subscription)
                .filter(Subscription.external_customer_id == customer_id)
                .first()
            )
            if subscription:
                logger.info(f"Resolved customer {customer_id} to user {subscription.user_id} by customer id")
                return subscription.user

        raise UserResolutionError(f"No user for email={email!r} customer_id={customer_id!r}")


class SubscriptionLedger:
    """Service applying provider events to subscriptions and payments."""

    def __init__(self, db: Session, payment_client: Optional[PaymentProviderClient] = None):
        self.db = db
        self.payment_client = payment_client
        self.users = UserResolver(db)
        self.usage = UsageMeter(db)

    # ------------------------------------------------------------------
    # Webhook-driven transitions
    # ------------------------------------------------------------------

    def apply_subscription_event(self, event_type: str, data: Dict[str, Any]) -> Subscription:
        """
        Create or update the subscription described by a provider event.

        Args:
            event_type: Envelope type, e.g. "subscription.renewed"
            data: Envelope data object

        Returns:
            The stored Subscription

        Raises:
            UserResolutionError: If the customer cannot be matched to a user
            PlanNotFoundError: If the product id matches no plan
            ValueError: If the payload is missing required fields or carries an unknown status
        """
        external_id = data.get("subscription_id")
        if not external_id:
            raise ValueError("Subscription event is missing subscription_id")

        customer_id = _customer_field(data, "customer_id")
        user = self.users.resolve(_customer_field(data, "email"), customer_id)

        product_id = data.get("product_id")
        plan = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.external_plan_id == product_id)
            .first()
        ) if product_id else None
        if plan is None:
            raise PlanNotFoundError(f"No plan for product {product_id!r}")

        status = map_subscription_status(event_type, data.get("status"))
        period_start = parse_provider_datetime(
            data.get("current_period_start") or data.get("previous_billing_date")
        )
        period_end = parse_provider_datetime(
            data.get("current_period_end") or data.get("next_billing_date")
        )

        subscription = self._get_by_external_id(external_id)
        if subscription is None:
            now = datetime.utcnow()
            start = period_start or now
            end = period_end or start + timedelta(days=settings.billing_period_days)
            inserted = insert_or_ignore(
                self.db,
                Subscription,
                {
                    "id": uuid.uuid4(),
                    "user_id": user.id,
                    "plan_id": plan.id,
                    "status": status,
                    "current_period_start": start,
                    "current_period_end": end,
                    "trial_start": parse_provider_datetime(data.get("trial_start")),
                    "trial_end": parse_provider_datetime(data.get("trial_end")),
                    "cancel_at_period_end": bool(
                        data.get("cancel_at_period_end", data.get("cancel_at_next_billing_date", False))
                    ),
                    "cancelled_at": (
                        parse_provider_datetime(data.get("cancelled_at")) or now
                    ) if status == "cancelled" else None,
                    "external_subscription_id": external_id,
                    "external_customer_id": customer_id,
                    "created_at": now,
                    "updated_at": now,
                },
                index_elements=["external_subscription_id"],
            )
            self.db.commit()
            subscription = self._get_by_external_id(external_id)
            if inserted:
                logger.info(f"Created subscription {external_id} for user {user.id} ({plan.name}, {status})")
            else:
                # A concurrent delivery created it first; apply this event on top
                self._update(subscription, plan, status, period_start, period_end, customer_id, data, event_type)
        else:
            self._update(subscription, plan, status, period_start, period_end, customer_id, data, event_type)

        self.usage.ensure_usage_period(subscription, subscription.plan)
        return subscription

    def _get_by_external_id(self, external_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.external_subscription_id == external_id)
            .first()
        )

    def _update(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        status: str,
        period_start: Optional[datetime],
        period_end: Optional[datetime],
        customer_id: Optional[str],
        data: Dict[str, Any],
        event_type: str,
    ) -> None:
        if not _transition_allowed(subscription.status, status):
            logger.warning(
                f"Ignoring {event_type} for subscription {subscription.external_subscription_id}: "
                f"{subscription.status} -> {status} would reactivate a terminated subscription"
            )
            return

        subscription.plan_id = plan.id
        subscription.status = status
        if period_start:
            subscription.current_period_start = period_start
        if period_end:
            subscription.current_period_end = period_end
        if customer_id:
            subscription.external_customer_id = customer_id
        if "cancel_at_period_end" in data or "cancel_at_next_billing_date" in data:
            subscription.cancel_at_period_end = bool(
                data.get("cancel_at_period_end", data.get("cancel_at_next_billing_date"))
            )
        if data.get("trial_start"):
            subscription.trial_start = parse_provider_datetime(data["trial_start"])
        if data.get("trial_end"):
            subscription.trial_end = parse_provider_datetime(data["trial_end"])
        if status == "cancelled" and subscription.cancelled_at is None:
            subscription.cancelled_at = parse_provider_datetime(data.get("cancelled_at")) or datetime.utcnow()

        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"Updated subscription {subscription.external_subscription_id}: status={status}")

    def apply_payment_event(self, event_type: str, data: Dict[str, Any]) -> PaymentTransaction:
        """
        Create or update the payment transaction described by a provider event.

        Raises:
            UserResolutionError: If the customer cannot be matched to a user
            ValueError: If the payload is missing payment_id
        """
        payment_id = data.get("payment_id")
        if not payment_id:
            raise ValueError("Payment event is missing payment_id")

        user = self.users.resolve(_customer_field(data, "email"), _customer_field(data, "customer_id"))

        subscription = None
        if data.get("subscription_id"):
            subscription = self._get_by_external_id(data["subscription_id"])

        provider_status = (data.get("status") or "").lower()
        status = provider_status if provider_status in PAYMENT_STATUSES else PAYMENT_EVENT_STATUS.get(event_type)
        if status is None:
            raise ValueError(f"Cannot derive payment status from event {event_type}")

        currency = (data.get("currency") or "USD").upper()
        amount = to_major_units(data.get("total_amount", data.get("amount")), currency)
        failure_reason = data.get("error_message") or data.get("failure_reason")
        now = datetime.utcnow()

        inserted = insert_or_ignore(
            self.db,
            PaymentTransaction,
            {
                "id": uuid.uuid4(),
                "user_id": user.id,
                "subscription_id": subscription.id if subscription else None,
                "external_payment_id": payment_id,
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_method": data.get("payment_method"),
                "billing_period": subscription.plan.billing_cycle if subscription else "monthly",
                "failure_reason": failure_reason if status == "failed" else None,
                "refunded_at": now if status == "refunded" else None,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["external_payment_id"],
        )
        self.db.commit()

        transaction = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.external_payment_id == payment_id)
            .first()
        )

        if inserted:
            logger.info(f"Recorded payment {payment_id} for user {user.id}: {amount} {currency} ({status})")
            return transaction

        transaction.status = status
        if status == "failed" and failure_reason:
            transaction.failure_reason = failure_reason
        if status == "refunded" and transaction.refunded_at is None:
            transaction.refunded_at = now
        if subscription is not None and transaction.subscription_id is None:
            transaction.subscription_id = subscription.id
        self.db.commit()
        self.db.refresh(transaction)
        logger.info(f"Updated payment {payment_id}: status={status}")
        return transaction

    # ------------------------------------------------------------------
    # User-facing operations
    # ------------------------------------------------------------------

    def get_entitlement(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> Entitlement:
        """Get the governing subscription and plan, provisioning the free trial if needed."""
        subscription = self.usage.ensure_trial_subscription(user_id, now=now)
        return Entitlement(subscription=subscription, plan=subscription.plan)

    async def create_checkout(self, user: User, plan_name: str, return_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a provider checkout for a plan.

        The local Subscription row is written later by the subscription webhook.

        Raises:
            PlanNotFoundError: If the plan does not exist or is inactive
            ValueError: If the plan cannot be bought (e.g. the free plan)
                or the user already pays for a live subscription
        """
        plan = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.name == plan_name, SubscriptionPlan.is_active.is_(True))
            .first()
        )
        if plan is None:
            raise PlanNotFoundError(f"Plan not found: {plan_name}")
        if not plan.external_plan_id:
            raise ValueError(f"Plan {plan_name} cannot be purchased")

        current = self.usage.current_subscription(user.id)
        if current is not None and current.external_subscription_id and current.status in ACTIVE_STATUSES:
            raise ValueError("User already has an active subscription")

        return await self.payment_client.create_checkout(
            product_id=plan.external_plan_id,
            email=user.email,
            name=user.full_name,
            return_url=return_url,
        )

    async def cancel(self, user_id: uuid.UUID, at_period_end: bool = True) -> Subscription:
        """
        Ask the payment provider to cancel the user's subscription.

        The resulting state change arrives through the subscription webhook.

        Raises:
            SubscriptionNotFoundError: If the user has no live subscription
            ValueError: If the live subscription is the free trial
        """
        subscription = self.usage.current_subscription(user_id)
        if subscription is None or subscription.status not in LIVE_STATUSES:
            raise SubscriptionNotFoundError(f"No active subscription for user {user_id}")
        if subscription.external_subscription_id is None:
            raise ValueError("The free trial cannot be cancelled")

        await self.payment_client.cancel_subscription(
            subscription.external_subscription_id, at_period_end=at_period_end
        )
        logger.info(
            f"Cancellation requested for subscription {subscription.external_subscription_id} "
            f"(at_period_end={at_period_end})"
        )
        return subscription

    def billing_history(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Get payment transactions, subscription history and total spent."""
        transactions: List[PaymentTransaction] = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.user_id == user_id)
            .order_by(PaymentTransaction.created_at.desc())
            .all()
        )
        subscriptions: List[Subscription] = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .all()
        )
        total_spent = sum(
            (Decimal(str(t.amount)) for t in transactions if t.status == "succeeded"),
            Decimal("0"),
        )
        return {
            "transactions": transactions,
            "subscriptions": subscriptions,
            "total_spent": total_spent,
        }


def _transition_allowed(current: str, new: str) -> bool:
    """Terminated subscriptions stay terminated; cancelled may still become expired."""
    if current == "expired":
        return new == "expired"
    if current == "cancelled":
        return new in TERMINAL_STATUSES
    return True

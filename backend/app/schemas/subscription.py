"""
Pydantic schemas for subscription operations.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field


SubscriptionStatus = Literal["trialing", "active", "past_due", "cancelled", "expired"]
PaymentStatus = Literal["pending", "succeeded", "failed", "refunded"]


class PlanDetail(BaseModel):
    """Subscription plan as shown on the pricing page."""
    id: uuid.UUID
    name: str
    display_name: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    billing_cycle: str
    image_generation_limit: Optional[int] = None
    model_training_limit: Optional[int] = None
    features: Dict[str, Any] = Field(default_factory=dict)
    features_list: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PlanList(BaseModel):
    plans: List[PlanDetail]


class SubscriptionDetail(BaseModel):
    """Detailed subscription information."""
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool
    cancelled_at: Optional[datetime] = None
    external_subscription_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class UsageCounters(BaseModel):
    """Counters and remaining quota for the current usage period (None = unlimited)."""
    period_start: datetime
    period_end: datetime
    images_generated: int
    models_trained: int
    image_generation_limit: Optional[int] = None
    model_training_limit: Optional[int] = None
    remaining_images: Optional[int] = None
    remaining_models: Optional[int] = None


class EntitlementResponse(BaseModel):
    """Current subscription, plan and usage for the signed-in user."""
    subscription: SubscriptionDetail
    plan: PlanDetail
    usage: UsageCounters
    can_generate_image: bool
    can_train_model: bool
    is_active: bool
    is_expired: bool
    is_free_tier: bool
    trial_days_remaining: Optional[int] = None
    billing_period_days_remaining: int


class CheckoutRequest(BaseModel):
    """Request to start a provider checkout."""
    plan_name: str = Field(..., description="Plan to purchase")
    return_url: Optional[str] = Field(None, description="URL to return to after payment")


class CheckoutResponse(BaseModel):
    subscription_id: str = Field(..., description="Provider subscription id")
    payment_link: Optional[str] = Field(None, description="Hosted payment page")


class CancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class CancelResponse(BaseModel):
    message: str
    subscription_id: uuid.UUID
    cancel_at_period_end: bool


class PaymentTransactionDetail(BaseModel):
    id: uuid.UUID
    external_payment_id: str
    subscription_id: Optional[uuid.UUID] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: Optional[str] = None
    billing_period: Optional[str] = None
    failure_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BillingHistory(BaseModel):
    transactions: List[PaymentTransactionDetail]
    subscriptions: List[SubscriptionDetail]
    total_spent: Decimal

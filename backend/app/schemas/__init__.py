"""
Pydantic schemas for API request/response validation.
"""
from app.schemas.subscription import (
    PlanDetail,
    PlanList,
    SubscriptionDetail,
    UsageCounters,
    EntitlementResponse,
    CheckoutRequest,
    CheckoutResponse,
    CancelRequest,
    CancelResponse,
    PaymentTransactionDetail,
    BillingHistory,
)
from app.schemas.usage import (
    UsageSummary,
    UsageIncrementRequest,
    UsageIncrementResponse,
)
from app.schemas.training import (
    TrainingJobDetail,
    TrainingJobList,
)
from app.schemas.image import (
    ImageGenerationRequest,
    GeneratedImageDetail,
    GeneratedImageList,
)

__all__ = [
    # Subscription
    "PlanDetail",
    "PlanList",
    "SubscriptionDetail",
    "UsageCounters",
    "EntitlementResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "CancelRequest",
    "CancelResponse",
    "PaymentTransactionDetail",
    "BillingHistory",
    # Usage
    "UsageSummary",
    "UsageIncrementRequest",
    "UsageIncrementResponse",
    # Training
    "TrainingJobDetail",
    "TrainingJobList",
    # Image
    "ImageGenerationRequest",
    "GeneratedImageDetail",
    "GeneratedImageList",
]

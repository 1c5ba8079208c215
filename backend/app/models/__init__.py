"""
Database models package.

All SQLAlchemy models are exported from this module for easy imports.
"""
from app.models.user import User
from app.models.subscription import Subscription, SubscriptionPlan
from app.models.usage import UsagePeriod
from app.models.payment import PaymentTransaction
from app.models.webhook_event import WebhookEvent
from app.models.training_job import TrainingJob
from app.models.generated_image import GeneratedImage

__all__ = [
    "User",
    "Subscription",
    "SubscriptionPlan",
    "UsagePeriod",
    "PaymentTransaction",
    "WebhookEvent",
    "TrainingJob",
    "GeneratedImage",
]

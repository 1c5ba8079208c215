"""
Quota enforcement utilities.

Provides the helper routes call before a metered action, and the exception
it raises when the user's plan does not allow the action.
"""
import logging
from typing import Optional

from fastapi import HTTPException, status

from app.core.config import settings
from app.models import User
from app.services.usage_meter import QuotaCheck, UsageMeter

logger = logging.getLogger(__name__)


class QuotaExceededException(HTTPException):
    """Exception raised when user quota is exceeded or the subscription does not allow the action."""

    def __init__(self, action: str, reason: Optional[str], remaining: Optional[int]):
        """
        Initialize quota exceeded exception.

        Args:
            action: Metered action (generate_image, train_model)
            reason: Denial reason from the usage meter
            remaining: Remaining quota at the time of the check
        """
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "quota_exceeded",
                "action": action,
                "reason": reason,
                "message": f"{reason}. Please upgrade your plan to continue.",
                "remaining": remaining,
                "upgrade_url": settings.upgrade_url,
            },
        )


def enforce_quota(meter: UsageMeter, user: User, action: str) -> QuotaCheck:
    """
    Check if user may perform a metered action.

    Args:
        meter: Usage meter bound to the request's session
        user: User object
        action: generate_image or train_model

    Returns:
        The passing QuotaCheck

    Raises:
        QuotaExceededException: If the action is not allowed
    """
    check = meter.check_quota(user.id, action)
    if not check.allowed:
        logger.warning(f"Quota check failed for user {user.id}: {action} ({check.reason})")
        raise QuotaExceededException(action=action, reason=check.reason, remaining=check.remaining)
    return check

"""
Domain exceptions shared by services and routes.
"""


class NotFoundError(Exception):
    """Base class for lookups that found nothing; mapped to 404 by the app."""


class UserResolutionError(NotFoundError):
    """No local user matches the email or provider customer id of an event."""


class PlanNotFoundError(NotFoundError):
    """No plan matches the requested name or provider product id."""


class SubscriptionNotFoundError(NotFoundError):
    """The user has no subscription matching the request."""


class TrainingJobNotFoundError(NotFoundError):
    """No training job matches the provider job id."""

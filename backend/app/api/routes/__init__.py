"""
API route modules.
"""
from app.api.routes import webhooks, subscriptions, usage, training, images

__all__ = ["webhooks", "subscriptions", "usage", "training", "images"]

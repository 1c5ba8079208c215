"""
Request dependencies for outbound clients and shared services.

Clients are created once in the application's startup hook and stored on
``app.state``; routes receive them through these dependencies so tests can
swap them with ``app.dependency_overrides``.
"""
from fastapi import Request

from app.services.notifications import Notifier
from app.services.providers import ImageProviderClient, PaymentProviderClient, TrainingProviderClient
from app.services.storage import BlobStorage


def get_payment_client(request: Request) -> PaymentProviderClient:
    return request.app.state.payment_client


def get_training_client(request: Request) -> TrainingProviderClient:
    return request.app.state.training_client


def get_image_client(request: Request) -> ImageProviderClient:
    return request.app.state.image_client


def get_blob_storage(request: Request) -> BlobStorage:
    return request.app.state.blob_storage


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier

"""
Integration tests for image generation endpoints.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.api.deps import get_blob_storage, get_image_client
from app.core.auth import get_current_user
from app.db.base import get_db
from app.main import app
from app.models import GeneratedImage, UsagePeriod
from app.services.providers import ProviderError
from app.services.storage import LocalBlobStorage


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStorage(base_path=str(tmp_path), public_base_url="http://files.test")


@pytest.fixture
def image_client():
    client = AsyncMock()
    client.generate.return_value = ["https://replicate.test/out-0.webp"]
    client.fetch_bytes.return_value = b"RIFF....WEBP"
    return client


@pytest.fixture
def client(user, db: Session, storage, image_client):
    def override_get_db():
        yield db

    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_storage] = lambda: storage
    app.dependency_overrides[get_image_client] = lambda: image_client

    yield TestClient(app)

    app.dependency_overrides.clear()


def test_generate_archives_and_counts(client, db, plans, image_client):
    response = client.post("/api/v1/images/generate", json={"prompt": "a red fox", "model": "flux-schnell"})

    assert response.status_code == 200
    data = response.json()
    assert len(data["image_urls"]) == 1
    assert data["image_urls"][0].startswith("http://files.test/images/")

    model, params = image_client.generate.await_args.args
    assert model == "black-forest-labs/flux-schnell"
    assert params["prompt"] == "a red fox"

    image = db.query(GeneratedImage).one()
    assert image.source_urls == ["https://replicate.test/out-0.webp"]
    assert db.query(UsagePeriod).one().images_generated_count == 1


def test_quota_exhausted_is_403(client, db, plans, image_client):
    plans["free"].image_generation_limit = 1
    db.commit()

    client.post("/api/v1/images/generate", json={"prompt": "one"})
    response = client.post("/api/v1/images/generate", json={"prompt": "two"})

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "quota_exceeded"
    assert image_client.generate.await_count == 1


def test_provider_failure_is_502_and_not_counted(client, db, plans, image_client):
    image_client.generate.side_effect = ProviderError("image", "prediction failed")

    response = client.post("/api/v1/images/generate", json={"prompt": "a red fox"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Image generation failed"
    assert db.query(UsagePeriod).one().images_generated_count == 0


def test_invalid_request_is_422(client, plans):
    response = client.post("/api/v1/images/generate", json={"prompt": "x", "num_outputs": 9})

    assert response.status_code == 422


def test_gallery_lists_images(client, plans):
    client.post("/api/v1/images/generate", json={"prompt": "a red fox"})

    response = client.get("/api/v1/images")

    assert response.status_code == 200
    assert response.json()["total"] == 1

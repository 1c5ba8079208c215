"""
Integration tests for webhook endpoints.

Tests the full request/response cycle for:
- POST /webhook/payment
- GET /webhook/payment
- POST /webhook/training
"""
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.config import settings
from app.db.base import get_db
from app.main import app
from app.models import PaymentTransaction, Subscription, TrainingJob, UsagePeriod, User, WebhookEvent


@pytest.fixture
def client(db: Session, notifier):
    """Test client bound to the test database and a recording notifier."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield TestClient(app)

    app.dependency_overrides.clear()


def payment_event(event_type="payment.succeeded", **data):
    body = {
        "payment_id": "pay_1",
        "subscription_id": "sub_pro_1",
        "customer_id": "cus_1",
        "customer_email": "artist@test.com",
        "total_amount": 2000,
        "currency": "USD",
        "status": "succeeded",
    }
    body.update(data)
    return {"type": event_type, "timestamp": "2026-01-01T00:00:00Z", "data": body}


def subscription_event(event_type="subscription.active", **data):
    body = {
        "subscription_id": "sub_new_1",
        "customer": {"customer_id": "cus_new", "email": "artist@test.com"},
        "product_id": "prod_pro",
        "status": "active",
        "previous_billing_date": "2026-01-01T00:00:00Z",
        "next_billing_date": "2026-02-01T00:00:00Z",
    }
    body.update(data)
    return {"type": event_type, "data": body}


@pytest.fixture
def training_job(db, user):
    job = TrainingJob(
        user_id=user.id,
        model_name="Portrait",
        gender="man",
        status="pending",
        progress=0,
        external_job_id="job_1",
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


class TestPaymentWebhook:
    """Test POST /webhook/payment."""

    def test_subscription_event_creates_subscription(self, client, db, user, plans, sign_payment):
        body, headers = sign_payment(subscription_event())

        response = client.post("/webhook/payment", content=body, headers=headers)

        assert response.status_code == 200
        subscription = db.query(Subscription).filter(Subscription.external_subscription_id == "sub_new_1").one()
        assert subscription.status == "active"
        assert subscription.plan_id == plans["pro"].id
        assert db.query(UsagePeriod).filter(UsagePeriod.subscription_id == subscription.id).count() == 1
        event = db.query(WebhookEvent).filter(WebhookEvent.external_event_id == "msg_1").one()
        assert event.processed
        assert event.source == "payment"

    def test_duplicate_delivery_applied_once(self, client, db, pro_subscription, sign_payment):
        body, headers = sign_payment(payment_event())

        first = client.post("/webhook/payment", content=body, headers=headers)
        second = client.post("/webhook/payment", content=body, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["message"] == "Webhook already processed"
        assert db.query(PaymentTransaction).filter(PaymentTransaction.external_payment_id == "pay_1").count() == 1
        event = db.query(WebhookEvent).one()
        assert event.attempts == 2

    def test_stale_timestamp_rejected(self, client, db, user, plans, sign_payment):
        body, headers = sign_payment(subscription_event(), timestamp=int(time.time()) - 600)

        response = client.post("/webhook/payment", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["reason"] == "stale_timestamp"
        assert db.query(WebhookEvent).count() == 0
        assert db.query(Subscription).count() == 0

    def test_tampered_body_rejected(self, client, db, user, plans, sign_payment):
        body, headers = sign_payment(subscription_event())

        response = client.post("/webhook/payment", content=body.replace(b"prod_pro", b"prod_enterprise"), headers=headers)

        assert response.status_code == 401
        assert response.json()["reason"] == "invalid_signature"

    def test_missing_headers_rejected(self, client, db):
        response = client.post("/webhook/payment", content=b"{}")

        assert response.status_code == 401
        assert response.json()["reason"] == "missing_headers"

    def test_unconfigured_secret_is_503(self, client, db, monkeypatch, sign_payment):
        monkeypatch.setattr(settings, "payment_webhook_secret", "")
        body, headers = sign_payment(payment_event())

        response = client.post("/webhook/payment", content=body, headers=headers)

        assert response.status_code == 503

    def test_non_object_body_is_400(self, client, db, sign_payment):
        body, headers = sign_payment("not an event", webhook_id="msg_bad")

        response = client.post("/webhook/payment", content=body, headers=headers)

        assert response.status_code == 400
        assert db.query(WebhookEvent).count() == 0

    def test_handler_failure_recorded_then_retried(self, client, db, plans, sign_payment):
        body, headers = sign_payment(subscription_event(), webhook_id="msg_retry")

        failed = client.post("/webhook/payment", content=body, headers=headers)

        assert failed.status_code == 400
        assert failed.json()["error"] == "Webhook processing failed"
        event = db.query(WebhookEvent).filter(WebhookEvent.external_event_id == "msg_retry").one()
        assert not event.processed
        assert event.processing_error

        db.add(User(external_auth_id="auth_late", email="artist@test.com", is_active=True))
        db.commit()

        retried = client.post("/webhook/payment", content=body, headers=headers)

        assert retried.status_code == 200
        db.refresh(event)
        assert event.processed
        assert event.processing_error is None
        assert db.query(Subscription).count() == 1

    def test_unknown_event_type_acknowledged(self, client, db, sign_payment):
        body, headers = sign_payment({"type": "dispute.opened", "data": {}})

        response = client.post("/webhook/payment", content=body, headers=headers)

        assert response.status_code == 200
        assert db.query(WebhookEvent).one().processed

    def test_liveness(self, client):
        response = client.get("/webhook/payment")

        assert response.status_code == 200
        assert response.json()["message"] == "Payment webhook endpoint is active"


class TestTrainingWebhook:
    """Test POST /webhook/training."""

    def test_completion_updates_job(self, client, db, training_job, notifier, sign_training):
        body, headers = sign_training(
            {"id": "job_1", "status": "succeeded", "output": {"version": "acct/model_7:abcdef"}}
        )

        response = client.post(
            f"/webhook/training?userId={training_job.user_id}&modelId={training_job.id}&fileName=set.zip",
            content=body,
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Webhook processed successfully",
            "trainingJobId": "job_1",
            "updatedStatus": "completed",
            "progress": 100,
        }
        db.refresh(training_job)
        assert training_job.model_id == "model_7"
        assert training_job.model_version == "abcdef"
        assert len(notifier.sent) == 1

    def test_duplicate_callback_returns_current_state(self, client, db, training_job, notifier, sign_training):
        body, headers = sign_training({"id": "job_1", "status": "succeeded"})

        client.post("/webhook/training", content=body, headers=headers)
        second = client.post("/webhook/training", content=body, headers=headers)

        assert second.status_code == 200
        assert second.json()["updatedStatus"] == "completed"
        assert len(notifier.sent) == 1

    def test_unknown_job_is_404(self, client, db, user, sign_training):
        body, headers = sign_training({"id": "job_unknown", "status": "succeeded"})

        response = client.post("/webhook/training", content=body, headers=headers)

        assert response.status_code == 404
        assert response.json() == {"message": "Training record not found"}
        assert db.query(TrainingJob).count() == 0
        assert db.query(WebhookEvent).count() == 0

    def test_payment_secret_does_not_sign_training(self, client, db, training_job, sign_payment):
        body, headers = sign_payment({"id": "job_1", "status": "succeeded"})

        response = client.post("/webhook/training", content=body, headers=headers)

        assert response.status_code == 401
        db.refresh(training_job)
        assert training_job.status == "pending"

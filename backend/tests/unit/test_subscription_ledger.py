"""
Unit tests for the subscription ledger.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import PlanNotFoundError, SubscriptionNotFoundError, UserResolutionError
from app.models import PaymentTransaction, Subscription, UsagePeriod
from app.services.subscription_ledger import (
    SubscriptionLedger,
    UserResolver,
    map_subscription_status,
    parse_provider_datetime,
    plan_features_list,
    to_major_units,
)

PERIOD_START = 1_767_225_600  # 2026-01-01T00:00:00Z
PERIOD_END = 1_769_904_000  # 2026-02-01T00:00:00Z


def subscription_data(**overrides):
    data = {
        "subscription_id": "sub_123",
        "customer_id": "cus_123",
        "customer_email": "artist@test.com",
        "status": "active",
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "product_id": "prod_pro",
        "cancel_at_period_end": False,
    }
    data.update(overrides)
    return data


def payment_data(**overrides):
    data = {
        "payment_id": "pay_1",
        "subscription_id": "sub_123",
        "customer_id": "cus_123",
        "customer_email": "artist@test.com",
        "amount": 2000,
        "currency": "USD",
        "status": "succeeded",
        "payment_method": "card",
    }
    data.update(overrides)
    return data


class TestHelpers:
    """Test parsing and mapping helpers."""

    def test_parse_unix_timestamp(self):
        assert parse_provider_datetime(PERIOD_START) == datetime(2026, 1, 1)

    def test_parse_iso_string_to_naive_utc(self):
        assert parse_provider_datetime("2026-01-01T02:00:00+02:00") == datetime(2026, 1, 1)
        assert parse_provider_datetime("2026-01-01T00:00:00Z") == datetime(2026, 1, 1)

    def test_parse_empty(self):
        assert parse_provider_datetime(None) is None

    def test_minor_units_converted(self):
        assert to_major_units(2000, "USD") == Decimal("20.00")
        assert to_major_units(1999, "eur") == Decimal("19.99")

    def test_zero_decimal_currency_kept(self):
        assert to_major_units(3000, "JPY") == Decimal("3000")

    @pytest.mark.parametrize(
        "provider_status,expected",
        [("canceled", "cancelled"), ("on_hold", "past_due"), ("active", "active"), ("expired", "expired")],
    )
    def test_status_mapping(self, provider_status, expected):
        assert map_subscription_status("subscription.updated", provider_status) == expected

    def test_status_derived_from_event_type(self):
        assert map_subscription_status("subscription.cancelled", None) == "cancelled"
        assert map_subscription_status("subscription.renewed", None) == "active"

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            map_subscription_status("subscription.updated", "paused_forever")

    def test_features_list(self, plans):
        assert plan_features_list(plans["free"]) == ["100 images per month", "1 models per month"]
        enterprise = plan_features_list(plans["enterprise"])
        assert "Unlimited image generation" in enterprise
        assert "API access" in enterprise


class TestUserResolver:
    """Test the two-step user resolution."""

    def test_resolves_by_email(self, db, user):
        assert UserResolver(db).resolve("artist@test.com", None).id == user.id

    def test_falls_back_to_customer_id(self, db, user, pro_subscription):
        assert UserResolver(db).resolve("changed@test.com", "cus_1").id == user.id

    def test_both_miss_raises(self, db, user):
        with pytest.raises(UserResolutionError):
            UserResolver(db).resolve("nobody@test.com", "cus_unknown")


class TestApplySubscriptionEvent:
    """Test applying subscription events."""

    def test_creates_subscription_and_usage_period(self, db, user, plans):
        subscription = SubscriptionLedger(db).apply_subscription_event("subscription.created", subscription_data())

        assert subscription.user_id == user.id
        assert subscription.plan_id == plans["pro"].id
        assert subscription.status == "active"
        assert subscription.current_period_start == datetime(2026, 1, 1)
        assert subscription.current_period_end == datetime(2026, 2, 1)
        assert subscription.external_customer_id == "cus_123"

        period = db.query(UsagePeriod).filter(UsagePeriod.subscription_id == subscription.id).one()
        assert period.period_start == datetime(2026, 1, 1)
        assert period.image_generation_limit == 300

    def test_update_does_not_duplicate(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_subscription_event("subscription.created", subscription_data())

        updated = ledger.apply_subscription_event(
            "subscription.updated", subscription_data(product_id="prod_enterprise", status="on_hold")
        )

        assert db.query(Subscription).count() == 1
        assert updated.status == "past_due"
        assert updated.plan_id == plans["enterprise"].id

    def test_renewal_opens_new_usage_period(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_subscription_event("subscription.created", subscription_data())

        ledger.apply_subscription_event(
            "subscription.renewed",
            subscription_data(status=None, current_period_start=PERIOD_END, current_period_end=PERIOD_END + 28 * 86400),
        )

        assert db.query(UsagePeriod).count() == 2

    def test_cancelled_records_timestamp(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_subscription_event("subscription.created", subscription_data())

        cancelled = ledger.apply_subscription_event("subscription.cancelled", subscription_data(status="cancelled"))

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None

    def test_cancelled_never_reactivated(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_subscription_event("subscription.created", subscription_data(status="cancelled"))

        result = ledger.apply_subscription_event("subscription.activated", subscription_data(status="active"))

        assert result.status == "cancelled"

    def test_cancelled_may_expire(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_subscription_event("subscription.created", subscription_data(status="cancelled"))

        result = ledger.apply_subscription_event("subscription.updated", subscription_data(status="expired"))

        assert result.status == "expired"

    def test_concurrently_created_row_is_updated(self, db, user, plans):
        """Insert conflict on the external id falls back to updating the existing row."""
        ledger = SubscriptionLedger(db)
        existing = Subscription(
            user_id=user.id,
            plan_id=plans["pro"].id,
            status="active",
            current_period_start=datetime(2026, 1, 1),
            current_period_end=datetime(2026, 2, 1),
            external_subscription_id="sub_123",
        )
        lookups = []

        def stale_lookup(external_id):
            if not lookups:
                lookups.append(external_id)
                db.add(existing)
                db.commit()
                return None
            return db.query(Subscription).filter(Subscription.external_subscription_id == external_id).first()

        ledger._get_by_external_id = stale_lookup
        result = ledger.apply_subscription_event("subscription.updated", subscription_data(status="on_hold"))

        assert result.id == existing.id
        assert result.status == "past_due"
        assert db.query(Subscription).count() == 1

    def test_unknown_user_raises(self, db, plans):
        with pytest.raises(UserResolutionError):
            SubscriptionLedger(db).apply_subscription_event("subscription.created", subscription_data())

    def test_unknown_plan_raises(self, db, user, plans):
        with pytest.raises(PlanNotFoundError):
            SubscriptionLedger(db).apply_subscription_event(
                "subscription.created", subscription_data(product_id="prod_missing")
            )

    def test_nested_customer_object_supported(self, db, user, plans):
        data = subscription_data(customer={"customer_id": "cus_9", "email": "artist@test.com"})
        del data["customer_email"]
        del data["customer_id"]

        subscription = SubscriptionLedger(db).apply_subscription_event("subscription.active", data)

        assert subscription.external_customer_id == "cus_9"


class TestApplyPaymentEvent:
    """Test applying payment events."""

    def test_records_payment_in_major_units(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        subscription = ledger.apply_subscription_event("subscription.created", subscription_data())

        transaction = ledger.apply_payment_event("payment.succeeded", payment_data())

        assert transaction.amount == Decimal("20.00")
        assert transaction.status == "succeeded"
        assert transaction.subscription_id == subscription.id
        assert transaction.user_id == user.id

    def test_same_payment_updates_single_row(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_payment_event("payment.succeeded", payment_data())

        refunded = ledger.apply_payment_event("payment.refunded", payment_data(status="refunded"))

        assert db.query(PaymentTransaction).count() == 1
        assert refunded.status == "refunded"
        assert refunded.refunded_at is not None

    def test_status_from_event_type_when_missing(self, db, user, plans):
        transaction = SubscriptionLedger(db).apply_payment_event(
            "payment.failed", payment_data(status=None, error_message="card_declined")
        )

        assert transaction.status == "failed"
        assert transaction.failure_reason == "card_declined"

    def test_missing_payment_id_raises(self, db, user, plans):
        with pytest.raises(ValueError):
            SubscriptionLedger(db).apply_payment_event("payment.succeeded", payment_data(payment_id=None))


class TestUserOperations:
    """Test entitlement, cancellation and billing history."""

    def test_entitlement_provisions_trial(self, db, user, plans):
        entitlement = SubscriptionLedger(db).get_entitlement(user.id)

        assert entitlement.plan.name == "free"
        assert entitlement.subscription.status == "trialing"

    def test_entitlement_trial_anchored_at_given_time(self, db, user, plans):
        now = datetime(2024, 3, 1, 12, 0, 0)

        subscription = SubscriptionLedger(db).get_entitlement(user.id, now=now).subscription

        assert subscription.trial_start == now
        assert subscription.trial_end == now + timedelta(days=30)

    def test_entitlement_prefers_paid_subscription(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.get_entitlement(user.id)  # trial first
        now = datetime.utcnow()
        ledger.apply_subscription_event(
            "subscription.active",
            subscription_data(
                current_period_start=now.isoformat(),
                current_period_end=(now + timedelta(days=30)).isoformat(),
            ),
        )

        assert ledger.get_entitlement(user.id).plan.name == "pro"

    @pytest.mark.asyncio
    async def test_cancel_calls_provider(self, db, user, pro_subscription):
        client = AsyncMock()
        subscription = await SubscriptionLedger(db, payment_client=client).cancel(user.id, at_period_end=True)

        client.cancel_subscription.assert_awaited_once_with("sub_pro_1", at_period_end=True)
        assert subscription.id == pro_subscription.id

    @pytest.mark.asyncio
    async def test_cancel_without_subscription_raises(self, db, user, plans):
        with pytest.raises(SubscriptionNotFoundError):
            await SubscriptionLedger(db, payment_client=AsyncMock()).cancel(user.id)

    @pytest.mark.asyncio
    async def test_cancel_free_trial_rejected(self, db, user, plans):
        ledger = SubscriptionLedger(db, payment_client=AsyncMock())
        ledger.get_entitlement(user.id)
        with pytest.raises(ValueError):
            await ledger.cancel(user.id)

    @pytest.mark.asyncio
    async def test_checkout_for_free_plan_rejected(self, db, user, plans):
        with pytest.raises(ValueError):
            await SubscriptionLedger(db, payment_client=AsyncMock()).create_checkout(user, "free")

    @pytest.mark.asyncio
    async def test_checkout_rejected_while_paid_subscription_active(self, db, user, pro_subscription):
        client = AsyncMock()

        with pytest.raises(ValueError, match="already has an active subscription"):
            await SubscriptionLedger(db, payment_client=client).create_checkout(user, "enterprise")

        client.create_checkout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checkout_allowed_after_paid_subscription_cancelled(self, db, user, pro_subscription):
        pro_subscription.status = "cancelled"
        db.commit()
        client = AsyncMock()
        client.create_checkout.return_value = {"subscription_id": "sub_new", "payment_link": "https://pay/x"}

        await SubscriptionLedger(db, payment_client=client).create_checkout(user, "enterprise")

        client.create_checkout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_checkout_uses_plan_product(self, db, user, plans):
        client = AsyncMock()
        client.create_checkout.return_value = {"subscription_id": "sub_new", "payment_link": "https://pay/x"}

        result = await SubscriptionLedger(db, payment_client=client).create_checkout(user, "pro", "https://app/billing")

        assert result["subscription_id"] == "sub_new"
        client.create_checkout.assert_awaited_once_with(
            product_id="prod_pro", email="artist@test.com", name="Test Artist", return_url="https://app/billing"
        )

    def test_billing_history_total_counts_succeeded_only(self, db, user, plans):
        ledger = SubscriptionLedger(db)
        ledger.apply_payment_event("payment.succeeded", payment_data(payment_id="pay_1"))
        ledger.apply_payment_event("payment.succeeded", payment_data(payment_id="pay_2", amount=5000))
        ledger.apply_payment_event("payment.failed", payment_data(payment_id="pay_3", status="failed"))

        history = ledger.billing_history(user.id)

        assert len(history["transactions"]) == 3
        assert history["total_spent"] == Decimal("70.00")

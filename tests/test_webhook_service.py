"""
Tests for webhook reconciliation of subscription events.
"""

import json
import time

import pytest

from imagegen_app.models.subscription import SubscriptionStatus
from imagegen_app.utils.errors import (
    DataIntegrityError,
    InvalidEvent,
    InvalidSignature,
    MissingTierContext,
    UnknownCustomer,
)
from tests.conftest import sign_payload

PERIOD_END = 1798761600  # 2027-01-01T00:00:00Z


def make_event(
    event_type="customer.subscription.created",
    status="active",
    created=None,
    subscription_id="sub_123",
    event_id="evt_1",
    **overrides,
):
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_1",
        "status": status,
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": False,
    }
    subscription.update(overrides)
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": subscription},
    }


def signed(event):
    payload = json.dumps(event)
    return payload, sign_payload(payload)


class TestSignature:
    async def test_missing_signature(self, webhooks, db):
        payload, _ = signed(make_event())

        with pytest.raises(InvalidSignature) as exc_info:
            await webhooks.handle_webhook(payload, None)

        assert exc_info.value.message == "No signature"
        assert db.upsert_calls == 0

    async def test_wrong_secret(self, webhooks, db, payments):
        payload = json.dumps(make_event())

        with pytest.raises(InvalidSignature):
            await webhooks.handle_webhook(payload, sign_payload(payload, secret="whsec_other"))

        payments.retrieve_customer.assert_not_awaited()
        assert db.upsert_calls == 0

    async def test_tampered_payload(self, webhooks, db):
        payload, signature = signed(make_event())
        tampered = payload.replace("active", "canceled")

        with pytest.raises(InvalidSignature):
            await webhooks.handle_webhook(tampered, signature)

        assert db.upsert_calls == 0

    async def test_expired_timestamp(self, webhooks, db):
        payload = json.dumps(make_event())
        old = int(time.time()) - 3600

        with pytest.raises(InvalidSignature):
            await webhooks.handle_webhook(payload, sign_payload(payload, timestamp=old))

    async def test_bytes_payload_accepted(self, webhooks, db):
        payload, signature = signed(make_event())

        result = await webhooks.handle_webhook(payload.encode("utf-8"), signature)

        assert result.applied


class TestReconcile:
    async def test_created_event_writes_subscription(self, webhooks, db, payments):
        payload, signature = signed(make_event())

        result = await webhooks.handle_webhook(payload, signature)

        assert result.handled and result.applied
        row = db.subscriptions["user-1"]
        assert row["tier_id"] == "2"
        assert row["subscription_id"] == "sub_123"
        assert row["status"] == "active"
        assert row["current_period_end"].startswith("2027-01-01T00:00:00")
        payments.retrieve_customer.assert_awaited_once_with("cus_1")
        payments.find_checkout_session_for_subscription.assert_awaited_once_with("sub_123")

    async def test_replay_is_idempotent(self, webhooks, db):
        payload, signature = signed(make_event())

        await webhooks.handle_webhook(payload, signature)
        first = dict(db.subscriptions["user-1"])
        await webhooks.handle_webhook(payload, signature)

        assert db.subscriptions["user-1"] == first
        assert len(db.subscriptions) == 1

    async def test_deleted_event_marks_canceled(self, webhooks, db):
        now = int(time.time())
        await webhooks.handle_webhook(*signed(make_event(created=now - 10)))

        await webhooks.handle_webhook(
            *signed(make_event("customer.subscription.deleted", status="active", created=now, event_id="evt_2"))
        )

        assert db.subscriptions["user-1"]["status"] == SubscriptionStatus.canceled.value

    @pytest.mark.parametrize(
        "stripe_status, expected",
        [("trialing", "active"), ("past_due", "past_due"), ("unpaid", "past_due"), ("incomplete_expired", "canceled")],
    )
    async def test_status_normalization(self, webhooks, db, stripe_status, expected):
        await webhooks.handle_webhook(*signed(make_event("customer.subscription.updated", status=stripe_status)))

        assert db.subscriptions["user-1"]["status"] == expected

    async def test_unknown_status_is_invalid_event(self, webhooks, db):
        with pytest.raises(InvalidEvent):
            await webhooks.handle_webhook(*signed(make_event(status="mystery")))

        assert db.upsert_calls == 0

    async def test_stale_event_is_skipped(self, webhooks, db):
        now = int(time.time())
        await webhooks.handle_webhook(*signed(make_event("customer.subscription.updated", status="past_due", created=now)))

        result = await webhooks.handle_webhook(
            *signed(make_event("customer.subscription.created", status="active", created=now - 60, event_id="evt_0"))
        )

        assert result.handled and not result.applied
        assert result.reason == "stale event"
        assert db.subscriptions["user-1"]["status"] == "past_due"

    async def test_superseded_subscription_cannot_cancel_active(self, webhooks, db, payments):
        now = int(time.time())
        payments.find_checkout_session_for_subscription.return_value = {
            "id": "cs_test_2",
            "metadata": {"user_id": "user-1", "tier_id": "3"},
        }
        await webhooks.handle_webhook(*signed(make_event(subscription_id="sub_new", created=now - 5)))

        result = await webhooks.handle_webhook(
            *signed(
                make_event(
                    "customer.subscription.deleted",
                    status="canceled",
                    subscription_id="sub_old",
                    created=now,
                    event_id="evt_old",
                )
            )
        )

        assert result.reason == "superseded subscription"
        assert db.subscriptions["user-1"]["subscription_id"] == "sub_new"
        assert db.subscriptions["user-1"]["status"] == "active"

    async def test_period_end_from_subscription_items(self, webhooks, db):
        event = make_event(current_period_end=None, items={"data": [{"id": "si_1", "current_period_end": PERIOD_END}]})

        await webhooks.handle_webhook(*signed(event))

        assert db.subscriptions["user-1"]["current_period_end"].startswith("2027-01-01")

    async def test_expanded_customer_object(self, webhooks, payments):
        await webhooks.handle_webhook(*signed(make_event(customer={"id": "cus_1", "object": "customer"})))

        payments.retrieve_customer.assert_awaited_once_with("cus_1")

    async def test_legacy_metadata_keys(self, webhooks, db, payments):
        payments.retrieve_customer.return_value = {"id": "cus_1", "metadata": {"supabaseUid": "user-1"}}
        payments.find_checkout_session_for_subscription.return_value = {
            "id": "cs_test_1",
            "metadata": {"supabaseUid": "user-1", "tierId": "3"},
        }

        await webhooks.handle_webhook(*signed(make_event()))

        assert db.subscriptions["user-1"]["tier_id"] == "3"


class TestReconcileFailures:
    async def test_unhandled_event_type(self, webhooks, db, payments):
        result = await webhooks.handle_webhook(*signed(make_event("invoice.paid")))

        assert not result.handled
        assert result.reason == "unhandled event type"
        payments.retrieve_customer.assert_not_awaited()
        assert db.upsert_calls == 0

    async def test_unknown_customer(self, webhooks, db, payments):
        payments.retrieve_customer.return_value = {"id": "cus_1", "metadata": {}}

        with pytest.raises(UnknownCustomer):
            await webhooks.handle_webhook(*signed(make_event()))

        assert db.upsert_calls == 0

    async def test_no_checkout_session(self, webhooks, db, payments):
        payments.find_checkout_session_for_subscription.return_value = None

        with pytest.raises(MissingTierContext):
            await webhooks.handle_webhook(*signed(make_event()))

        assert db.subscriptions == {}

    async def test_checkout_session_without_tier(self, webhooks, db, payments):
        payments.find_checkout_session_for_subscription.return_value = {
            "id": "cs_test_1",
            "metadata": {"user_id": "user-1"},
        }

        with pytest.raises(MissingTierContext):
            await webhooks.handle_webhook(*signed(make_event()))

        assert db.subscriptions == {}

    async def test_session_for_other_user(self, webhooks, db, payments):
        payments.find_checkout_session_for_subscription.return_value = {
            "id": "cs_test_1",
            "metadata": {"user_id": "user-9", "tier_id": "2"},
        }

        with pytest.raises(DataIntegrityError):
            await webhooks.handle_webhook(*signed(make_event()))

        assert db.upsert_calls == 0

    async def test_session_with_unknown_tier(self, webhooks, db, payments):
        payments.find_checkout_session_for_subscription.return_value = {
            "id": "cs_test_1",
            "metadata": {"user_id": "user-1", "tier_id": "404"},
        }

        with pytest.raises(DataIntegrityError):
            await webhooks.handle_webhook(*signed(make_event()))

        assert db.upsert_calls == 0

    async def test_malformed_json(self, webhooks, db):
        payload = "{not json"

        with pytest.raises(InvalidEvent):
            await webhooks.handle_webhook(payload, sign_payload(payload))

    async def test_subscription_object_missing_fields(self, webhooks, db):
        event = make_event()
        del event["data"]["object"]["customer"]

        with pytest.raises(InvalidEvent):
            await webhooks.handle_webhook(*signed(event))

        assert db.upsert_calls == 0

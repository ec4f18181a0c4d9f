import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from imagegen_app.models.auth import UserInfo
from imagegen_app.services.admission_service import AdmissionService
from imagegen_app.services.checkout_service import CheckoutService
from imagegen_app.services.entitlement_service import EntitlementService
from imagegen_app.services.replicate_service import ReplicateService
from imagegen_app.services.stripe_service import StripeService
from imagegen_app.services.tier_catalog import TierCatalog
from imagegen_app.services.usage_service import UsageService
from imagegen_app.services.webhook_service import WebhookService

WEBHOOK_SECRET = "whsec_test_secret"

TIER_ROWS = [
    {
        "id": 1,
        "name": "Free",
        "price_id": "free_tier",
        "price_cents": 0,
        "sort_order": 0,
        "features": json.dumps(
            {"images_per_month": 3, "resolution": "standard", "priority_support": False, "custom_models": False}
        ),
    },
    {
        "id": 2,
        "name": "Pro",
        "price_id": "price_pro_monthly",
        "price_cents": 999,
        "sort_order": 1,
        "features": {"images_per_month": 100, "resolution": "hd", "priority_support": True, "custom_models": False},
    },
    {
        "id": 3,
        "name": "Unlimited",
        "price_id": "price_unlimited_monthly",
        "price_cents": 2999,
        "sort_order": 2,
        "features": {"images_per_month": None, "resolution": "1024x1024", "priority_support": True, "custom_models": True},
    },
]


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class InMemorySupabaseService:
    """Store double implementing the SupabaseService methods the services use."""

    def __init__(self, tier_rows=None):
        self.tier_rows = [dict(row) for row in (tier_rows if tier_rows is not None else TIER_ROWS)]
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.generations: list[dict[str, Any]] = []
        self.upsert_calls = 0
        self.fail_inserts = False

    async def list_tier_rows(self):
        return [dict(row) for row in self.tier_rows]

    async def get_subscription_row(self, user_id):
        row = self.subscriptions.get(user_id)
        return dict(row) if row else None

    async def upsert_subscription_row(self, data):
        self.upsert_calls += 1
        self.subscriptions[data["user_id"]] = dict(data)
        return dict(data)

    async def count_generations_since(self, user_id, since):
        return sum(
            1 for row in self.generations if row["user_id"] == user_id and _parse_ts(row["created_at"]) >= since
        )

    async def insert_generation_row(self, data):
        from imagegen_app.utils.errors import UpstreamUnavailable

        if self.fail_inserts:
            raise UpstreamUnavailable("Database temporarily unavailable")
        self.generations.append(dict(data))
        return dict(data)

    async def health_check(self):
        return True


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def db():
    return InMemorySupabaseService()


@pytest.fixture
def catalog(db):
    return TierCatalog(db, free_price_ref="free_tier")


@pytest.fixture
def usage(db):
    return UsageService(db, tz_name="UTC")


@pytest.fixture
def entitlements(db, catalog, usage):
    return EntitlementService(db, catalog, usage)


@pytest.fixture
def generator():
    mock = MagicMock(spec=ReplicateService)
    mock.build_input.side_effect = lambda prompt, resolution=None: {"prompt": prompt, "resolution": resolution}
    mock.run = AsyncMock(return_value=["https://replicate.delivery/output-0.png"])
    return mock


@pytest.fixture
def admission(entitlements, usage, generator):
    return AdmissionService(entitlements, usage, generator, model_ref="stability-ai/sdxl:abc123")


@pytest.fixture
def payments():
    service = StripeService(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, tolerance=300)
    service.find_customer_by_email = AsyncMock(return_value=None)
    service.create_customer = AsyncMock(
        return_value={"id": "cus_new", "email": "user@example.com", "metadata": {"user_id": "user-1"}}
    )
    service.tag_customer = AsyncMock(
        return_value={"id": "cus_existing", "email": "user@example.com", "metadata": {"user_id": "user-1"}}
    )
    service.create_checkout_session = AsyncMock(
        return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}
    )
    service.retrieve_customer = AsyncMock(return_value={"id": "cus_1", "metadata": {"user_id": "user-1"}})
    service.find_checkout_session_for_subscription = AsyncMock(
        return_value={"id": "cs_test_1", "metadata": {"user_id": "user-1", "tier_id": "2"}}
    )
    return service


@pytest.fixture
def checkout(catalog, payments):
    return CheckoutService(catalog, payments)


@pytest.fixture
def webhooks(db, catalog, payments):
    return WebhookService(db, catalog, payments)


@pytest.fixture
def user():
    return UserInfo(id="user-1", email="user@example.com")

"""
Pytest configuration and fixtures for testing
"""
import hashlib
import hmac
import json
import os
import time
from typing import Any, Dict, List, Optional

import pytest

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRO_PRICE_IDS", "price_pro_month,price_pro_year")
os.environ.setdefault("STRIPE_ENTERPRISE_PRICE_IDS", "price_ent_month")
os.environ.setdefault("STRIPE_PRICE_PRO_MONTH", "price_pro_month")
os.environ.setdefault("STRIPE_PRICE_PRO_YEAR", "price_pro_year")
os.environ.setdefault("STRIPE_PRICE_ENTERPRISE_MONTH", "price_ent_month")
os.environ.setdefault("STRIPE_PRICE_ENTERPRISE_YEAR", "price_ent_year")
os.environ.setdefault("REDIS_URL", "")

from services.billing_errors import ProviderError  # noqa: E402
from services.billing_sync import BillingSyncService  # noqa: E402
from services.identity_resolver import IdentityResolver  # noqa: E402
from services.plan_mapper import PlanMapper  # noqa: E402
from services.stripe_provider import USER_ID_METADATA_KEY  # noqa: E402
from services.subscription_cache import CustomerLinkStore, SubscriptionCache  # noqa: E402
from services.subscription_fetcher import SubscriptionFetcher  # noqa: E402
from utils.kv_store import InMemoryKeyValueStore  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"
PRO_PRICES = frozenset({"price_pro_month", "price_pro_year"})
ENTERPRISE_PRICES = frozenset({"price_ent_month", "price_ent_year"})


class FakeStripeProvider:
    """
    In-memory stand-in for StripeProvider.

    Customer creation honours idempotency keys the way Stripe does: a
    repeated key returns the customer created by the first call.
    """

    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, List[Dict[str, Any]]] = {}
        self.product_names: Dict[str, str] = {}
        self.idempotent_results: Dict[str, Dict[str, Any]] = {}
        self.checkout_sessions: List[Dict[str, Any]] = []
        self.portal_sessions: List[Dict[str, Any]] = []
        self.calls: Dict[str, int] = {}

        # Stripe search is eventually consistent; simulate an index that lags
        self.stale_search = False
        self.stale_email_lookup = False
        self.fail_search = False
        self.fail_create = False
        self.fail_attach = False
        self.fail_retrieve = False
        self.fail_list_subscriptions = False

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def add_customer(self, customer_id: str, email: Optional[str] = None, user_id: Optional[str] = None):
        metadata = {USER_ID_METADATA_KEY: user_id} if user_id else {}
        self.customers[customer_id] = {"id": customer_id, "email": email, "metadata": metadata}
        return self.customers[customer_id]

    def retrieve_customer(self, customer_id: str):
        self._count("retrieve_customer")
        if self.fail_retrieve:
            raise ProviderError("retrieve failed")
        return self.customers.get(customer_id)

    def search_customers_by_user_id(self, user_id: str):
        self._count("search_customers_by_user_id")
        if self.fail_search:
            raise ProviderError("search unavailable")
        if self.stale_search:
            return []
        return [
            c for c in self.customers.values()
            if c["metadata"].get(USER_ID_METADATA_KEY) == user_id
        ][:1]

    def list_customers_by_email(self, email: str):
        self._count("list_customers_by_email")
        if self.stale_email_lookup:
            return []
        return [c for c in self.customers.values() if c.get("email") == email][:1]

    def create_customer(self, user_id: str, email: Optional[str], idempotency_key: str):
        self._count("create_customer")
        if self.fail_create:
            raise ProviderError("create failed")
        if idempotency_key in self.idempotent_results:
            return self.idempotent_results[idempotency_key]
        customer = self.add_customer(f"cus_{len(self.customers) + 1}", email, user_id)
        self.idempotent_results[idempotency_key] = customer
        return customer

    def attach_user_id(self, customer_id: str, user_id: str):
        self._count("attach_user_id")
        if self.fail_attach:
            raise ProviderError("modify failed")
        self.customers[customer_id]["metadata"][USER_ID_METADATA_KEY] = user_id

    def list_subscriptions(self, customer_id: str):
        self._count("list_subscriptions")
        if self.fail_list_subscriptions:
            raise ProviderError("subscriptions unavailable")
        return list(self.subscriptions.get(customer_id, []))

    def retrieve_product_name(self, price_id: str):
        self._count("retrieve_product_name")
        if price_id not in self.product_names:
            raise ProviderError(f"No such price: {price_id}")
        return self.product_names[price_id]

    def create_checkout_session(self, **kwargs):
        self._count("create_checkout_session")
        session = {"id": f"cs_test_{len(self.checkout_sessions) + 1}", "url": "https://checkout.stripe.test/pay", **kwargs}
        self.checkout_sessions.append(session)
        return session

    def create_portal_session(self, customer_id: str, return_url: str):
        self._count("create_portal_session")
        session = {"id": "bps_test", "url": "https://billing.stripe.test/portal", "customer": customer_id, "return_url": return_url}
        self.portal_sessions.append(session)
        return session


def make_subscription(
    sub_id: str,
    status: str = "active",
    price_id: str = "price_pro_month",
    period_start: int = 1_700_000_000,
    period_end: int = 1_702_592_000,
    created: Optional[int] = None,
    cancel_at_period_end: bool = False,
    card: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Subscription shaped like Stripe's list response (seconds since epoch)."""
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "created": created if created is not None else period_start,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "default_payment_method": {"id": "pm_1", "card": card} if card else None,
        "items": {"data": [{"id": f"si_{sub_id}", "price": {"id": price_id}}]},
    }


def make_event(event_type: str, customer: Optional[str] = "cus_1", event_id: str = "evt_1") -> bytes:
    obj: Dict[str, Any] = {"id": "obj_1", "object": event_type.split(".")[0]}
    if customer is not None:
        obj["customer"] = customer
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }).encode("utf-8")


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header: t=<ts>,v1=<hex hmac of "<ts>.<payload>">."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def fake_provider():
    return FakeStripeProvider()


@pytest.fixture
def plan_mapper():
    return PlanMapper(PRO_PRICES, ENTERPRISE_PRICES)


@pytest.fixture
def subscription_cache(kv_store):
    return SubscriptionCache(kv_store)


@pytest.fixture
def customer_links(kv_store):
    return CustomerLinkStore(kv_store)


@pytest.fixture
def resolver(fake_provider, customer_links):
    return IdentityResolver(fake_provider, customer_links)


@pytest.fixture
def fetcher(fake_provider, plan_mapper):
    return SubscriptionFetcher(fake_provider, plan_mapper)


@pytest.fixture
def sync_service(resolver, fetcher, subscription_cache):
    return BillingSyncService(resolver, fetcher, subscription_cache)

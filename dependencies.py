"""
FastAPI dependencies wiring settings, storage, provider and services.

Tests replace get_kv_store / get_billing_provider via app.dependency_overrides.
"""
from functools import lru_cache

from fastapi import Depends

from config.settings import Settings, settings
from services.billing_service import BillingService
from services.billing_sync import BillingSyncService
from services.identity_resolver import IdentityResolver
from services.plan_mapper import PlanMapper
from services.stripe_provider import StripeProvider
from services.subscription_cache import CustomerLinkStore, SubscriptionCache
from services.subscription_fetcher import SubscriptionFetcher
from services.webhook_processor import WebhookProcessor
from utils.kv_store import KeyValueStore, build_kv_store


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def _shared_kv_store() -> KeyValueStore:
    return build_kv_store(settings)


def get_kv_store() -> KeyValueStore:
    """Process-wide store; Redis when configured."""
    return _shared_kv_store()


def get_billing_provider(app_settings: Settings = Depends(get_settings)) -> StripeProvider:
    return StripeProvider(app_settings.stripe_secret_key)


def get_subscription_cache(
    store: KeyValueStore = Depends(get_kv_store),
    app_settings: Settings = Depends(get_settings),
) -> SubscriptionCache:
    return SubscriptionCache(store, namespace=app_settings.subscription_cache_namespace)


def get_identity_resolver(
    provider=Depends(get_billing_provider),
    store: KeyValueStore = Depends(get_kv_store),
    app_settings: Settings = Depends(get_settings),
) -> IdentityResolver:
    links = CustomerLinkStore(store, namespace=app_settings.customer_link_namespace)
    return IdentityResolver(provider, links)


def get_billing_sync_service(
    provider=Depends(get_billing_provider),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    cache: SubscriptionCache = Depends(get_subscription_cache),
    app_settings: Settings = Depends(get_settings),
) -> BillingSyncService:
    fetcher = SubscriptionFetcher(provider, PlanMapper.from_settings(app_settings))
    return BillingSyncService(resolver, fetcher, cache)


def get_webhook_processor(
    sync_service: BillingSyncService = Depends(get_billing_sync_service),
    app_settings: Settings = Depends(get_settings),
) -> WebhookProcessor:
    return WebhookProcessor(
        sync_service,
        webhook_secret=app_settings.stripe_webhook_secret,
        tolerance_seconds=app_settings.stripe_webhook_tolerance_seconds,
    )


def get_billing_service(
    provider=Depends(get_billing_provider),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    app_settings: Settings = Depends(get_settings),
) -> BillingService:
    return BillingService(app_settings, provider, resolver)

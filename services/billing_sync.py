"""
Billing Sync Service - resync (write path) and subscription status (read path)
"""
import logging
from typing import Optional

from models.subscription import SubscriptionSnapshot
from services.identity_resolver import IdentityResolver
from services.subscription_cache import SubscriptionCache
from services.subscription_fetcher import SubscriptionFetcher

logger = logging.getLogger(__name__)


class BillingSyncService:
    """
    Keeps the subscription cache consistent with the billing provider.

    Resync always re-fetches current provider state and overwrites the cache,
    so repeating it (duplicate webhooks, racing requests) converges on the
    same value.
    """

    def __init__(self, resolver: IdentityResolver, fetcher: SubscriptionFetcher, cache: SubscriptionCache):
        self.resolver = resolver
        self.fetcher = fetcher
        self.cache = cache

    async def sync_customer(self, customer_id: str) -> SubscriptionSnapshot:
        """
        Fetch the customer's subscription and overwrite its cache entry.

        Failures propagate; callers on the write path must surface them.
        """
        snapshot = await self.fetcher.fetch_active_subscription(customer_id)
        self.cache.put(customer_id, snapshot)
        logger.info(
            f"Synced customer {customer_id}: status={snapshot.status.value} plan={snapshot.plan_id.value}"
        )
        return snapshot

    async def sync_user(self, user_id: str, email: Optional[str] = None) -> Optional[SubscriptionSnapshot]:
        """Resync the customer behind a user; None when the user has no customer."""
        customer_id = await self.resolver.resolve_customer(user_id, email)
        if not customer_id:
            return None
        return await self.sync_customer(customer_id)

    async def get_subscription(self, user_id: str, email: Optional[str] = None) -> SubscriptionSnapshot:
        """
        Current snapshot for a user. Never raises.

        Cache first; on a miss, live fetch and populate. Any failure degrades
        to the free-plan snapshot.
        """
        try:
            customer_id = await self.resolver.resolve_customer(user_id, email)
        except Exception as e:
            logger.warning(f"Customer resolution failed for {user_id}, defaulting to free plan: {e}")
            return SubscriptionSnapshot.free_plan()

        if not customer_id:
            return SubscriptionSnapshot.none()

        try:
            cached = self.cache.get(customer_id)
        except Exception as e:
            logger.warning(f"Subscription cache read failed for {customer_id}: {e}")
            cached = None
        if cached is not None:
            return cached

        result = await self.fetcher.try_fetch(customer_id)
        if result.ok:
            try:
                self.cache.put(customer_id, result.snapshot)
            except Exception as e:
                logger.warning(f"Subscription cache write failed for {customer_id}: {e}")
        return result.or_free_plan()

"""
Subscription Cache - key-value projection of each customer's resolved subscription

The cache is a derived index: a missing or unreadable entry is a miss, never
an error, and the next read or webhook rebuilds it from the provider.
"""
import logging
from typing import Optional

from pydantic import ValidationError

from models.subscription import SubscriptionSnapshot
from utils.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class SubscriptionCache:
    """
    Snapshots keyed by "<namespace>:<customerId>".

    Writes always replace the whole snapshot (last write wins) and never read
    the previous value.
    """

    def __init__(self, store: KeyValueStore, namespace: str = "stripe:customer"):
        self.store = store
        self.namespace = namespace

    def key_for(self, customer_id: str) -> str:
        return f"{self.namespace}:{customer_id}"

    def put(self, customer_id: str, snapshot: SubscriptionSnapshot) -> None:
        self.store.put(self.key_for(customer_id), snapshot.to_json())

    def get(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        key = self.key_for(customer_id)
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return SubscriptionSnapshot.from_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None


class CustomerLinkStore:
    """userId -> customerId links, consulted before searching the provider."""

    def __init__(self, store: KeyValueStore, namespace: str = "stripe:user"):
        self.store = store
        self.namespace = namespace

    def key_for(self, user_id: str) -> str:
        return f"{self.namespace}:{user_id}"

    def get(self, user_id: str) -> Optional[str]:
        return self.store.get(self.key_for(user_id)) or None

    def link(self, user_id: str, customer_id: str) -> None:
        self.store.put(self.key_for(user_id), customer_id)

    def unlink(self, user_id: str) -> None:
        self.store.delete(self.key_for(user_id))

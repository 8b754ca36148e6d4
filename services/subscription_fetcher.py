"""
Subscription Fetcher - picks the subscription that represents a customer's current plan
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models.subscription import (
    LIVE_STATUSES,
    PaymentMethod,
    PlanId,
    SubscriptionSnapshot,
    SubscriptionStatus,
)
from services.billing_errors import ProviderError, SubscriptionFetchError
from services.plan_mapper import PlanMapper

logger = logging.getLogger(__name__)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, dict) else None
    if data and isinstance(data[0], dict):
        return data[0]
    return {}


def _period_bound(subscription: Dict[str, Any], field: str) -> Optional[int]:
    # Newer API versions report billing periods per item instead of per subscription
    value = subscription.get(field)
    if value is None:
        value = _first_item(subscription).get(field)
    return int(value) if value is not None else None


def _period_start(subscription: Dict[str, Any]) -> int:
    return _period_bound(subscription, "current_period_start") or 0


def _price_id(subscription: Dict[str, Any]) -> Optional[str]:
    price = _first_item(subscription).get("price")
    if isinstance(price, dict):
        return price.get("id")
    if isinstance(price, str):
        return price
    return None


def _payment_method(subscription: Dict[str, Any]) -> Optional[PaymentMethod]:
    method = subscription.get("default_payment_method")
    if not isinstance(method, dict):
        return None
    card = method.get("card")
    if not isinstance(card, dict) or not card.get("brand") or not card.get("last4"):
        return None
    return PaymentMethod(brand=card["brand"], last4=card["last4"])


def _status(raw: Any) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(raw)
    except ValueError:
        logger.warning(f"Unknown subscription status {raw!r}, treating as none")
        return SubscriptionStatus.NONE


def select_subscription(subscriptions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Choose the subscription that represents the customer's current state.

    Among active/trialing subscriptions the latest current_period_start wins.
    With no live candidate, the most recently created subscription is used
    whatever its status. Ties keep the provider's ordering (newest first).
    """
    if not subscriptions:
        return None

    candidates = [s for s in subscriptions if s.get("status") in {st.value for st in LIVE_STATUSES}]
    if candidates:
        return max(candidates, key=_period_start)

    return max(subscriptions, key=lambda s: s.get("created") or 0)


def build_snapshot(
    subscription: Dict[str, Any],
    plan_mapper: PlanMapper,
    plan_name: Optional[str] = None,
) -> SubscriptionSnapshot:
    """Project a provider subscription into a snapshot (timestamps in epoch ms)."""
    status = _status(subscription.get("status"))
    price_id = _price_id(subscription)
    plan_id = PlanId.FREE if status == SubscriptionStatus.NONE else plan_mapper.map(price_id)

    start = _period_bound(subscription, "current_period_start")
    end = _period_bound(subscription, "current_period_end")
    fallback = SubscriptionSnapshot.none()

    return SubscriptionSnapshot(
        subscription_id=subscription.get("id"),
        status=status,
        plan_id=plan_id,
        price_id=price_id,
        plan_name=plan_name,
        current_period_start=start * 1000 if start is not None else fallback.current_period_start,
        current_period_end=end * 1000 if end is not None else fallback.current_period_end,
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        payment_method=_payment_method(subscription),
    )


@dataclass
class FetchResult:
    """Outcome of a fetch: exactly one of snapshot / error is set."""
    snapshot: Optional[SubscriptionSnapshot] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.snapshot is not None

    def or_free_plan(self) -> SubscriptionSnapshot:
        """Read-path policy: any fetch error degrades to the free-plan snapshot."""
        if self.ok:
            return self.snapshot
        return SubscriptionSnapshot.free_plan()


class SubscriptionFetcher:
    """
    Reads a customer's subscriptions from the provider and resolves them
    into a single SubscriptionSnapshot.
    """

    def __init__(self, provider, plan_mapper: PlanMapper, resolve_plan_names: bool = True):
        self.provider = provider
        self.plan_mapper = plan_mapper
        self.resolve_plan_names = resolve_plan_names

    async def fetch_active_subscription(self, customer_id: str) -> SubscriptionSnapshot:
        """
        Fetch and resolve the customer's current subscription.

        Raises:
            SubscriptionFetchError: the provider could not list subscriptions
            BillingConfigError: the provider is not configured
        """
        try:
            subscriptions = self.provider.list_subscriptions(customer_id)
        except ProviderError as e:
            raise SubscriptionFetchError(str(e)) from e

        selected = select_subscription(subscriptions)
        if selected is None:
            return SubscriptionSnapshot.none()

        return build_snapshot(selected, self.plan_mapper, self._plan_name(_price_id(selected)))

    async def try_fetch(self, customer_id: str) -> FetchResult:
        try:
            return FetchResult(snapshot=await self.fetch_active_subscription(customer_id))
        except Exception as e:
            logger.warning(f"Subscription fetch for {customer_id} failed: {e}")
            return FetchResult(error=e)

    def _plan_name(self, price_id: Optional[str]) -> Optional[str]:
        if not price_id or not self.resolve_plan_names:
            return None
        try:
            return self.provider.retrieve_product_name(price_id)
        except ProviderError as e:
            logger.warning(f"Could not fetch plan name for {price_id}: {e}")
            return None

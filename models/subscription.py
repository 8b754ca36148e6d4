"""
Subscription snapshot models
"""
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config.settings import PLAN_ENTERPRISE, PLAN_FREE, PLAN_PRO


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"
    NONE = "none"


class PlanId(str, Enum):
    FREE = PLAN_FREE
    PRO = PLAN_PRO
    ENTERPRISE = PLAN_ENTERPRISE


# Statuses that count as a live subscription when several exist
LIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


def now_ms() -> int:
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentMethod(_CamelModel):
    """Display-only card summary."""
    brand: str
    last4: str


class CustomerRecord(_CamelModel):
    """A provider customer as seen by this service."""
    customer_id: str
    user_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_provider(cls, customer: Dict[str, Any], user_id_key: str = "userId") -> "CustomerRecord":
        metadata = customer.get("metadata") or {}
        return cls(
            customer_id=customer["id"],
            user_id=metadata.get(user_id_key) or None,
            email=customer.get("email"),
        )


class SubscriptionSnapshot(_CamelModel):
    """
    Resolved billing state for one customer.

    Stored in the subscription cache as JSON (camelCase keys) and always
    replaced wholesale; never merged with a previous value.
    """
    subscription_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.NONE
    plan_id: PlanId = PlanId.FREE
    price_id: Optional[str] = None
    plan_name: Optional[str] = None
    current_period_start: int = Field(default_factory=now_ms)
    current_period_end: int = Field(default_factory=now_ms)
    cancel_at_period_end: bool = False
    payment_method: Optional[PaymentMethod] = None

    @classmethod
    def none(cls) -> "SubscriptionSnapshot":
        """Explicit 'no subscription' snapshot: free plan, period bounds both now."""
        stamp = now_ms()
        return cls(
            status=SubscriptionStatus.NONE,
            plan_id=PlanId.FREE,
            current_period_start=stamp,
            current_period_end=stamp,
        )

    @classmethod
    def free_plan(cls) -> "SubscriptionSnapshot":
        """Safe default used when the read path cannot reach the provider."""
        return cls.none()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "SubscriptionSnapshot":
        return cls.model_validate_json(raw)

    def status_view(self) -> Dict[str, Any]:
        """Response body for the subscription status endpoint."""
        return self.model_dump(mode="json", by_alias=True)

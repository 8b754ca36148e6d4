"""
Plan Mapper - provider price id -> internal plan tier
"""
import logging
from typing import AbstractSet, Optional

from config.settings import Settings
from models.subscription import PlanId

logger = logging.getLogger(__name__)

# Legacy plan names accepted from older clients
PLAN_ALIASES = {
    "pro": PlanId.PRO,
    "professional": PlanId.PRO,
    "team": PlanId.PRO,
    "starter": PlanId.FREE,
    "free": PlanId.FREE,
    "enterprise": PlanId.ENTERPRISE,
}


def map_price_to_plan(
    price_id: Optional[str],
    pro_price_ids: AbstractSet[str],
    enterprise_price_ids: AbstractSet[str],
) -> PlanId:
    """
    Resolve the plan tier for a price id.

    Exact-match lookup. Enterprise is checked before pro so a price listed in
    both sets always resolves to enterprise; absent or unknown prices are free.
    """
    if not price_id:
        return PlanId.FREE
    if price_id in enterprise_price_ids:
        return PlanId.ENTERPRISE
    if price_id in pro_price_ids:
        return PlanId.PRO
    return PlanId.FREE


def normalize_plan_id(raw: Optional[str]) -> PlanId:
    """Normalize a plan name from a client; unknown names map to pro."""
    return PLAN_ALIASES.get((raw or "").strip().lower(), PlanId.PRO)


class PlanMapper:
    """Price -> plan mapping bound to the configured price allow-lists."""

    def __init__(self, pro_price_ids: AbstractSet[str], enterprise_price_ids: AbstractSet[str]):
        self.pro_price_ids = frozenset(pro_price_ids)
        self.enterprise_price_ids = frozenset(enterprise_price_ids)
        overlap = self.pro_price_ids & self.enterprise_price_ids
        if overlap:
            logger.warning(
                f"Price ids configured for both pro and enterprise, enterprise wins: {sorted(overlap)}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanMapper":
        return cls(settings.pro_price_ids, settings.enterprise_price_ids)

    def map(self, price_id: Optional[str]) -> PlanId:
        return map_price_to_plan(price_id, self.pro_price_ids, self.enterprise_price_ids)

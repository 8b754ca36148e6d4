"""
Configuration settings for the billing service
"""
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Normalized Plan IDs
PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_ENTERPRISE = "enterprise"


def _split_ids(raw: Optional[str]) -> List[str]:
    """Split a comma separated env value into clean identifiers."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")

    # Price -> plan allow-lists (comma separated, exact match)
    stripe_pro_price_ids: str = Field(default="", alias="STRIPE_PRO_PRICE_IDS")
    stripe_enterprise_price_ids: str = Field(default="", alias="STRIPE_ENTERPRISE_PRICE_IDS")

    # Checkout prices per plan and billing period
    stripe_price_pro_month: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PRO_MONTH")
    stripe_price_pro_year: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PRO_YEAR")
    stripe_price_enterprise_month: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ENTERPRISE_MONTH")
    stripe_price_enterprise_year: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ENTERPRISE_YEAR")

    # Key-value store
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    subscription_cache_namespace: str = Field(default="stripe:customer", alias="SUBSCRIPTION_CACHE_NAMESPACE")
    customer_link_namespace: str = Field(default="stripe:user", alias="CUSTOMER_LINK_NAMESPACE")

    # Identity tokens
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Rate limiting for user-facing endpoints
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    def checkout_price_id(self, plan_id: str, period: str) -> Optional[str]:
        """Look up the checkout price configured for a plan and billing period."""
        prices = {
            (PLAN_PRO, "month"): self.stripe_price_pro_month,
            (PLAN_PRO, "year"): self.stripe_price_pro_year,
            (PLAN_ENTERPRISE, "month"): self.stripe_price_enterprise_month,
            (PLAN_ENTERPRISE, "year"): self.stripe_price_enterprise_year,
        }
        return prices.get((plan_id, period))

    @property
    def pro_price_ids(self) -> frozenset:
        ids = _split_ids(self.stripe_pro_price_ids)
        ids += [p for p in (self.stripe_price_pro_month, self.stripe_price_pro_year) if p]
        return frozenset(ids)

    @property
    def enterprise_price_ids(self) -> frozenset:
        ids = _split_ids(self.stripe_enterprise_price_ids)
        ids += [p for p in (self.stripe_price_enterprise_month, self.stripe_price_enterprise_year) if p]
        return frozenset(ids)

    @property
    def is_production(self) -> bool:
        return bool(self.env and self.env.lower() == "production")


# Instantiate settings object
settings = Settings()

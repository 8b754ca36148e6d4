"""
Billing Service - Stripe Checkout and Billing Portal sessions
"""
import logging
from typing import Optional

from config.settings import PLAN_ENTERPRISE, PLAN_PRO, Settings
from services.billing_errors import BillingConfigError, CustomerResolutionError, ProviderError
from services.identity_resolver import IdentityResolver, clean_email

logger = logging.getLogger(__name__)

CHECKOUT_PLANS = (PLAN_PRO, PLAN_ENTERPRISE)
CHECKOUT_PERIODS = ("month", "year")


class BillingService:
    """
    Service class for the provider-hosted checkout and portal pages.
    Always attaches the resolved customer and user to the session.
    """

    def __init__(self, settings: Settings, provider, resolver: IdentityResolver):
        """
        Initialize the billing service.

        Args:
            settings: application settings (prices, frontend URL)
            provider: billing provider gateway
            resolver: identity resolver for user -> customer lookups
        """
        self.settings = settings
        self.provider = provider
        self.resolver = resolver

    @property
    def frontend_url(self) -> str:
        return (self.settings.frontend_url or "http://localhost:5173").rstrip("/")

    async def create_checkout_session(self, user_id: str, email: Optional[str], plan_id: str, period: str = "month"):
        """
        Create a subscription Checkout session for the user.

        Returns:
            Normalized response: {"data": {...}, "is_error": False} or
            {"error": str, "status": int, "is_error": True}
        """
        if plan_id not in CHECKOUT_PLANS or period not in CHECKOUT_PERIODS:
            return {"error": "Invalid plan or billing period", "status": 400, "is_error": True}

        if not self.settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot create checkout session.")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}

        price_id = self.settings.checkout_price_id(plan_id, period)
        if not price_id:
            logger.error(f"No checkout price configured for {plan_id}/{period}")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}

        if not clean_email(email):
            return {"error": "A valid email is required to start a subscription", "status": 400, "is_error": True}

        try:
            customer_id = await self.resolver.resolve_customer(user_id, email)
            if not customer_id:
                return {"error": "Unable to create a billing account", "status": 400, "is_error": True}

            metadata = {"userId": user_id, "planId": plan_id, "period": period}
            session = self.provider.create_checkout_session(
                customer_id=customer_id,
                price_id=price_id,
                success_url=f"{self.frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.frontend_url}/pricing?canceled=true",
                metadata=metadata,
                client_reference_id=user_id,
            )
        except BillingConfigError as e:
            logger.error(f"Checkout unavailable: {e}")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}
        except (CustomerResolutionError, ProviderError) as e:
            logger.error(f"Failed to create checkout session: {e}", exc_info=True)
            return {"error": "Failed to create checkout session. Please try again.", "status": 502, "is_error": True}

        logger.info(f"Checkout session {session.get('id')} created for user {user_id} ({plan_id}/{period})")
        return {
            "data": {"url": session.get("url"), "sessionId": session.get("id"), "customerId": customer_id},
            "is_error": False,
        }

    async def create_billing_portal_session(self, user_id: str, email: Optional[str] = None):
        """
        Create a Billing Portal session for the user's existing customer.

        Returns:
            Normalized response: {"data": {"url": str}, "is_error": False} or
            {"error": str, "status": int, "is_error": True}
        """
        if not self.settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot create billing portal session.")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}

        try:
            customer_id = await self.resolver.resolve_customer(user_id, email, create=False)
            if not customer_id:
                return {"error": "No billing account found", "status": 404, "is_error": True}

            session = self.provider.create_portal_session(
                customer_id=customer_id,
                return_url=f"{self.frontend_url}/settings",
            )
        except BillingConfigError as e:
            logger.error(f"Billing portal unavailable: {e}")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}
        except (CustomerResolutionError, ProviderError) as e:
            logger.error(f"Failed to create billing portal session: {e}", exc_info=True)
            return {"error": "Failed to create billing portal session", "status": 502, "is_error": True}

        return {"data": {"url": session.get("url")}, "is_error": False}

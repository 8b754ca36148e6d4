"""
Stripe Provider - thin gateway over the Stripe SDK

Every call passes the API key explicitly and returns plain dicts, so the rest
of the service never touches SDK objects or module-level Stripe state.
Stripe errors are re-raised as ProviderError.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from services.billing_errors import BillingConfigError, ProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)

# Metadata key tying a Stripe customer to the identity provider's user id
USER_ID_METADATA_KEY = "userId"

# Stripe caps list pages at 100
SUBSCRIPTION_PAGE_SIZE = 100


def _to_plain(obj: Any) -> Any:
    """Convert Stripe SDK objects (and anything nested in them) into dicts/lists."""
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    if isinstance(obj, dict):
        return {key: _to_plain(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_to_plain(value) for value in obj]
    return obj


def _records(result: Any) -> List[Dict[str, Any]]:
    data = getattr(result, "data", None)
    if data is None and isinstance(result, dict):
        data = result.get("data")
    return [_to_plain(item) for item in (data or [])]


class StripeProvider:
    """
    Billing provider gateway.

    Args:
        api_key: Stripe secret key; calls raise BillingConfigError when unset
    """

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def _key(self) -> str:
        if not self.api_key:
            raise BillingConfigError("STRIPE_SECRET_KEY is not set")
        return self.api_key

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def retrieve_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """The customer, or None when Stripe no longer has it (missing or deleted)."""
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self._key())
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return None
            raise ProviderError(f"Customer lookup for {customer_id} failed: {e}") from e
        except stripe.StripeError as e:
            raise ProviderError(f"Customer lookup for {customer_id} failed: {e}") from e
        customer = _to_plain(customer)
        if customer.get("deleted"):
            return None
        return customer

    def search_customers_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        # user_id is validated by the caller; it is interpolated into search syntax
        query = f"metadata['{USER_ID_METADATA_KEY}']:'{user_id}'"
        try:
            result = stripe.Customer.search(query=query, limit=1, api_key=self._key())
        except stripe.StripeError as e:
            raise ProviderError(f"Customer search failed: {e}") from e
        return _records(result)

    def list_customers_by_email(self, email: str) -> List[Dict[str, Any]]:
        try:
            result = stripe.Customer.list(email=email, limit=1, api_key=self._key())
        except stripe.StripeError as e:
            raise ProviderError(f"Customer list by email failed: {e}") from e
        return _records(result)

    def create_customer(self, user_id: str, email: Optional[str], idempotency_key: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"metadata": {USER_ID_METADATA_KEY: user_id}}
        if email:
            params["email"] = email
        try:
            customer = stripe.Customer.create(
                api_key=self._key(),
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Customer creation failed: {e}") from e
        return _to_plain(customer)

    def attach_user_id(self, customer_id: str, user_id: str) -> None:
        try:
            stripe.Customer.modify(
                customer_id,
                metadata={USER_ID_METADATA_KEY: user_id},
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Attaching user metadata to {customer_id} failed: {e}") from e

    # ------------------------------------------------------------------
    # Subscriptions and prices
    # ------------------------------------------------------------------

    def list_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        """All subscriptions for a customer, any status, newest first."""
        try:
            result = stripe.Subscription.list(
                customer=customer_id,
                status="all",
                limit=SUBSCRIPTION_PAGE_SIZE,
                expand=["data.default_payment_method"],
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Subscription list for {customer_id} failed: {e}") from e
        return _records(result)

    def retrieve_product_name(self, price_id: str) -> Optional[str]:
        try:
            price = stripe.Price.retrieve(price_id, expand=["product"], api_key=self._key())
        except stripe.StripeError as e:
            raise ProviderError(f"Price lookup for {price_id} failed: {e}") from e
        product = _to_plain(price).get("product")
        if isinstance(product, dict):
            return product.get("name")
        return None

    # ------------------------------------------------------------------
    # Hosted pages
    # ------------------------------------------------------------------

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        client_reference_id: str,
    ) -> Dict[str, Any]:
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=client_reference_id,
                subscription_data={"metadata": metadata},
                metadata=metadata,
                customer_update={"name": "auto"},
                allow_promotion_codes=True,
                billing_address_collection="required",
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Checkout session creation failed: {e}") from e
        return _to_plain(session)

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Billing portal session creation failed: {e}") from e
        return _to_plain(session)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @staticmethod
    def verify_webhook_signature(raw_body: bytes, signature_header: str, secret: str, tolerance: int) -> None:
        """
        Check the Stripe-Signature header against the raw body.

        Raises:
            WebhookSignatureError: signature missing, malformed, stale or wrong
        """
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookSignatureError("Webhook body is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid webhook signature: {e}") from e

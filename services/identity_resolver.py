"""
Identity Resolver - maps an authenticated user to a billing provider customer
"""
import hashlib
import logging
import re
from typing import Optional

from models.subscription import CustomerRecord
from services.billing_errors import CustomerResolutionError, ProviderError
from services.stripe_provider import USER_ID_METADATA_KEY
from services.subscription_cache import CustomerLinkStore

logger = logging.getLogger(__name__)

# Characters allowed in a user id; it is interpolated into provider search queries
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_|.:@-]{1,128}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MAX_EMAIL_LENGTH = 254


def is_valid_user_id(user_id: Optional[str]) -> bool:
    return isinstance(user_id, str) and USER_ID_PATTERN.match(user_id) is not None


def clean_email(email: Optional[str]) -> Optional[str]:
    """Return the email if it looks like an address, otherwise None."""
    if not isinstance(email, str):
        return None
    email = email.strip()
    if not email or len(email) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(email):
        return None
    return email


def customer_idempotency_key(user_id: str, email: Optional[str]) -> str:
    """Deterministic creation key so racing requests converge on one customer."""
    digest = hashlib.sha256(f"{user_id}\x1f{(email or '').lower()}".encode("utf-8")).hexdigest()
    return f"customer-create-{digest[:48]}"


class IdentityResolver:
    """
    Resolves userId (+ optional email) to a provider customer id.

    Order: link store (verified at the provider), metadata search, email
    lookup, create. Search and lookup failures fall through to the next
    strategy.
    """

    def __init__(self, provider, links: Optional[CustomerLinkStore] = None):
        self.provider = provider
        self.links = links

    async def resolve_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
        create: bool = True,
    ) -> Optional[str]:
        """
        Find or create the customer for a user.

        Returns None when no customer exists and none can be created (no
        valid email, or create=False).

        Raises:
            CustomerResolutionError: invalid user id, or creation failed and
                the follow-up search found nothing
            BillingConfigError: the provider is not configured
        """
        if not is_valid_user_id(user_id):
            raise CustomerResolutionError("User id is empty, too long or contains disallowed characters")
        email = clean_email(email)

        customer_id = self._linked_customer(user_id)
        if customer_id:
            return customer_id

        customer_id = self._search_by_user_id(user_id)
        if not customer_id and email:
            customer_id = self._find_by_email(user_id, email)
        if not customer_id and create and email:
            customer_id = self._create(user_id, email)

        if customer_id:
            self._remember(user_id, customer_id)
        return customer_id

    def _linked_customer(self, user_id: str) -> Optional[str]:
        if self.links is None:
            return None
        try:
            customer_id = self.links.get(user_id)
        except Exception as e:
            logger.warning(f"Customer link lookup failed for {user_id}: {e}")
            return None
        if not customer_id:
            return None

        try:
            customer = self.provider.retrieve_customer(customer_id)
        except ProviderError as e:
            # Cannot confirm either way; keep the link
            logger.warning(f"Could not verify linked customer {customer_id} for {user_id}: {e}")
            return customer_id
        if customer is not None:
            return customer_id

        logger.warning(f"Linked customer {customer_id} for {user_id} no longer exists at Stripe, dropping link")
        try:
            self.links.unlink(user_id)
        except Exception as e:
            logger.warning(f"Could not drop stale customer link for {user_id}: {e}")
        return None

    def _remember(self, user_id: str, customer_id: str) -> None:
        if self.links is None:
            return
        try:
            self.links.link(user_id, customer_id)
        except Exception as e:
            logger.warning(f"Could not store customer link for {user_id}: {e}")

    def _search_by_user_id(self, user_id: str) -> Optional[str]:
        try:
            customers = self.provider.search_customers_by_user_id(user_id)
        except ProviderError as e:
            logger.warning(f"Customer search by user id failed for {user_id}: {e}")
            return None
        return customers[0].get("id") if customers else None

    def _find_by_email(self, user_id: str, email: str) -> Optional[str]:
        try:
            customers = self.provider.list_customers_by_email(email)
        except ProviderError as e:
            logger.warning(f"Customer lookup by email failed for {user_id}: {e}")
            return None
        if not customers:
            return None

        record = CustomerRecord.from_provider(customers[0], USER_ID_METADATA_KEY)
        if record.user_id and record.user_id != user_id:
            # Same email, different account: never hand one user's billing to another
            logger.warning(f"Customer {record.customer_id} with matching email belongs to another user")
            return None
        if not record.user_id:
            try:
                self.provider.attach_user_id(record.customer_id, user_id)
            except ProviderError as e:
                logger.warning(f"Could not tag customer {record.customer_id} with user {user_id}: {e}")
        return record.customer_id

    def _create(self, user_id: str, email: str) -> str:
        key = customer_idempotency_key(user_id, email)
        try:
            customer = self.provider.create_customer(user_id, email, idempotency_key=key)
            logger.info(f"Created billing customer {customer.get('id')} for user {user_id}")
            return customer["id"]
        except ProviderError as e:
            logger.warning(f"Customer creation failed for {user_id}, retrying search: {e}")
            customer_id = self._search_by_user_id(user_id)
            if customer_id:
                return customer_id
            raise CustomerResolutionError(f"Could not create a billing customer for {user_id}") from e

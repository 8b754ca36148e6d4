"""
Webhook Event Processor

RECEIVED -> VERIFIED -> (ALLOWED | IGNORED) -> SYNCED -> ACKNOWLEDGED
RECEIVED -> REJECTED when the body or signature cannot be trusted.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from models.events import EventDecodeError, UnhandledEvent, decode_event
from models.subscription import SubscriptionSnapshot
from services.billing_errors import (
    BillingConfigError,
    WebhookProcessingError,
    WebhookSignatureError,
)
from services.billing_sync import BillingSyncService
from services.stripe_provider import StripeProvider

logger = logging.getLogger(__name__)


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    ALLOWED = "allowed"
    IGNORED = "ignored"
    SYNCED = "synced"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class WebhookResult:
    """Outcome of one delivery; `trail` lists every state it passed through."""
    trail: List[WebhookState] = field(default_factory=lambda: [WebhookState.RECEIVED])
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    customer_id: Optional[str] = None
    snapshot: Optional[SubscriptionSnapshot] = None
    error: Optional[str] = None

    @property
    def state(self) -> WebhookState:
        return self.trail[-1]

    @property
    def acknowledged(self) -> bool:
        return self.state == WebhookState.ACKNOWLEDGED

    def advance(self, state: WebhookState) -> "WebhookResult":
        self.trail.append(state)
        return self


class WebhookProcessor:
    """
    Verifies, filters and applies billing provider webhooks.

    Args:
        sync_service: performs the resync for affected customers
        webhook_secret: shared signing secret
        tolerance_seconds: maximum accepted signature age
        verify_signature: signature check, raising WebhookSignatureError
    """

    def __init__(
        self,
        sync_service: BillingSyncService,
        webhook_secret: Optional[str],
        tolerance_seconds: int = 300,
        verify_signature=StripeProvider.verify_webhook_signature,
    ):
        self.sync_service = sync_service
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.verify_signature = verify_signature

    async def handle_event(self, raw_body: Optional[bytes], signature_header: Optional[str]) -> WebhookResult:
        """
        Process one webhook delivery.

        Returns a REJECTED result for trust failures (nothing is written) and
        an ACKNOWLEDGED result otherwise.

        Raises:
            BillingConfigError: no webhook secret configured
            WebhookProcessingError: the resync failed; the sender should retry
        """
        if not self.webhook_secret:
            raise BillingConfigError("STRIPE_WEBHOOK_SECRET is not set")

        result = WebhookResult()
        try:
            event = self._verify_and_decode(raw_body, signature_header)
        except WebhookSignatureError as e:
            logger.error(f"Rejected webhook: {e}")
            result.error = str(e)
            return result.advance(WebhookState.REJECTED)

        result.advance(WebhookState.VERIFIED)
        result.event_id = event.id
        result.event_type = event.type

        if isinstance(event, UnhandledEvent):
            logger.info(f"Skipping untracked event type: {event.type}")
            return result.advance(WebhookState.IGNORED).advance(WebhookState.ACKNOWLEDGED)

        result.advance(WebhookState.ALLOWED)
        customer_id = event.customer_id
        if not customer_id:
            logger.warning(f"No customer id found for event {event.id} ({event.type})")
            return result.advance(WebhookState.ACKNOWLEDGED)

        result.customer_id = customer_id
        logger.info(f"Processing webhook event {event.id} ({event.type}) for customer {customer_id}")
        try:
            result.snapshot = await self.sync_service.sync_customer(customer_id)
        except Exception as e:
            logger.error(f"Resync failed for event {event.id} ({event.type}): {e}", exc_info=True)
            raise WebhookProcessingError(f"Resync failed for customer {customer_id}") from e

        return result.advance(WebhookState.SYNCED).advance(WebhookState.ACKNOWLEDGED)

    def _verify_and_decode(self, raw_body: Optional[bytes], signature_header: Optional[str]):
        if not raw_body:
            raise WebhookSignatureError("Missing raw request body")
        if not signature_header or not signature_header.strip():
            raise WebhookSignatureError("Missing Stripe-Signature header")

        self.verify_signature(raw_body, signature_header, self.webhook_secret, self.tolerance_seconds)

        try:
            return decode_event(raw_body)
        except EventDecodeError as e:
            raise WebhookSignatureError(str(e)) from e

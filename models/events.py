"""
Webhook event models

Verified webhook payloads are decoded into one of a small set of event
families. Anything outside the allowlist becomes an UnhandledEvent, which
is acknowledged but never triggers a resync.
"""
import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

SUBSCRIPTION_EVENT_TYPES = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
    "customer.subscription.pending_update_applied",
    "customer.subscription.pending_update_expired",
    "customer.subscription.trial_will_end",
})

INVOICE_EVENT_TYPES = frozenset({
    "invoice.paid",
    "invoice.payment_failed",
    "invoice.payment_action_required",
    "invoice.payment_succeeded",
    "invoice.upcoming",
    "invoice.marked_uncollectible",
})

PAYMENT_INTENT_EVENT_TYPES = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
})

CHECKOUT_EVENT_TYPES = frozenset({
    "checkout.session.completed",
})

ALLOWED_EVENT_TYPES = (
    SUBSCRIPTION_EVENT_TYPES
    | INVOICE_EVENT_TYPES
    | PAYMENT_INTENT_EVENT_TYPES
    | CHECKOUT_EVENT_TYPES
)


class EventDecodeError(ValueError):
    """Raised when a verified payload is not a well-formed event."""


class EventObject(BaseModel):
    """The `data.object` of an event; only the fields this service reads are typed."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    object: Optional[str] = None
    customer: Optional[Union[str, Dict[str, Any]]] = None

    @property
    def customer_id(self) -> Optional[str]:
        # customer is either an id or an expanded customer object
        if isinstance(self.customer, str):
            return self.customer.strip() or None
        if isinstance(self.customer, dict):
            customer_id = self.customer.get("id")
            if isinstance(customer_id, str) and customer_id.strip():
                return customer_id.strip()
        return None


class EventData(BaseModel):
    object: EventObject


class _AllowedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    data: EventData

    @property
    def customer_id(self) -> Optional[str]:
        return self.data.object.customer_id


class SubscriptionEvent(_AllowedEvent):
    kind: Literal["subscription"] = "subscription"


class InvoiceEvent(_AllowedEvent):
    kind: Literal["invoice"] = "invoice"


class PaymentIntentEvent(_AllowedEvent):
    kind: Literal["payment_intent"] = "payment_intent"


class CheckoutSessionEvent(_AllowedEvent):
    kind: Literal["checkout_session"] = "checkout_session"


class UnhandledEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["unhandled"] = "unhandled"
    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def customer_id(self) -> Optional[str]:
        return None


BillingEvent = Annotated[
    Union[SubscriptionEvent, InvoiceEvent, PaymentIntentEvent, CheckoutSessionEvent, UnhandledEvent],
    Field(discriminator="kind"),
]

_event_adapter = TypeAdapter(BillingEvent)


def event_kind(event_type: str) -> str:
    """Map a provider event type to its family tag."""
    if event_type in SUBSCRIPTION_EVENT_TYPES:
        return "subscription"
    if event_type in INVOICE_EVENT_TYPES:
        return "invoice"
    if event_type in PAYMENT_INTENT_EVENT_TYPES:
        return "payment_intent"
    if event_type in CHECKOUT_EVENT_TYPES:
        return "checkout_session"
    return "unhandled"


def decode_event(raw_body: bytes) -> BillingEvent:
    """
    Decode a verified raw webhook body into a typed event.

    Raises:
        EventDecodeError: body is not JSON or lacks the required fields
    """
    try:
        envelope = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EventDecodeError(f"Invalid event payload: {e}") from e

    if not isinstance(envelope, dict):
        raise EventDecodeError("Event payload must be a JSON object")

    event_type = envelope.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventDecodeError("Event payload is missing its type")

    try:
        return _event_adapter.validate_python({**envelope, "kind": event_kind(event_type)})
    except ValidationError as e:
        raise EventDecodeError(f"Malformed {event_type} event: {e}") from e

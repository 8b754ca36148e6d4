"""
Billing error taxonomy
"""


class BillingError(Exception):
    """Base class for billing failures."""


class BillingConfigError(BillingError):
    """A required secret or price is not configured. Not retryable."""


class ProviderError(BillingError):
    """The billing provider call failed (network, rate limit, API error)."""


class SubscriptionFetchError(ProviderError):
    """Listing a customer's subscriptions failed."""


class CustomerResolutionError(BillingError):
    """No customer could be found or created for a user."""


class WebhookSignatureError(BillingError):
    """The webhook body or signature could not be trusted."""


class WebhookProcessingError(BillingError):
    """A verified webhook could not be synced; the sender should redeliver."""

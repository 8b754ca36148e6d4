"""
Unit tests for webhook verification, filtering and resync
"""
import time
from unittest.mock import AsyncMock

import pytest

from models.subscription import PlanId, SubscriptionStatus
from services.billing_errors import BillingConfigError, WebhookProcessingError
from services.webhook_processor import WebhookProcessor, WebhookState
from tests.conftest import WEBHOOK_SECRET, make_event, make_subscription, sign_payload


@pytest.fixture
def processor(sync_service):
    return WebhookProcessor(sync_service, webhook_secret=WEBHOOK_SECRET)


@pytest.mark.asyncio
async def test_allowed_event_resyncs_customer(processor, fake_provider, subscription_cache):
    fake_provider.subscriptions["cus_1"] = [make_subscription("sub_1", price_id="price_ent_month")]
    body = make_event("customer.subscription.updated", customer="cus_1")

    result = await processor.handle_event(body, sign_payload(body))

    assert result.acknowledged
    assert result.trail == [
        WebhookState.RECEIVED,
        WebhookState.VERIFIED,
        WebhookState.ALLOWED,
        WebhookState.SYNCED,
        WebhookState.ACKNOWLEDGED,
    ]
    assert subscription_cache.get("cus_1").plan_id == PlanId.ENTERPRISE


@pytest.mark.asyncio
async def test_tampered_signature_is_rejected_without_writes(processor, fake_provider, kv_store):
    fake_provider.subscriptions["cus_1"] = [make_subscription("sub_1")]
    body = make_event("customer.subscription.updated", customer="cus_1")
    header = sign_payload(body, secret="whsec_wrong")

    result = await processor.handle_event(body, header)

    assert result.state == WebhookState.REJECTED
    assert not result.acknowledged
    assert fake_provider.calls == {}
    assert kv_store.get("stripe:customer:cus_1") is None


@pytest.mark.asyncio
async def test_modified_body_is_rejected(processor, fake_provider):
    body = make_event("invoice.paid", customer="cus_1")
    header = sign_payload(body)
    tampered = body.replace(b"cus_1", b"cus_2")

    result = await processor.handle_event(tampered, header)

    assert result.state == WebhookState.REJECTED
    assert fake_provider.calls == {}


@pytest.mark.asyncio
async def test_stale_signature_is_rejected(processor):
    body = make_event("invoice.paid", customer="cus_1")
    header = sign_payload(body, timestamp=int(time.time()) - 3600)

    result = await processor.handle_event(body, header)

    assert result.state == WebhookState.REJECTED


@pytest.mark.asyncio
@pytest.mark.parametrize("body, header", [
    (b"", "t=1,v1=abc"),
    (make_event("invoice.paid"), None),
    (make_event("invoice.paid"), "   "),
])
async def test_missing_body_or_signature_is_rejected(processor, body, header):
    result = await processor.handle_event(body, header)

    assert result.state == WebhookState.REJECTED
    assert result.error


@pytest.mark.asyncio
async def test_signed_but_malformed_payload_is_rejected(processor, fake_provider):
    body = b'{"id": "evt_1", "type": "invoice.paid"}'

    result = await processor.handle_event(body, sign_payload(body))

    assert result.state == WebhookState.REJECTED
    assert fake_provider.calls == {}


@pytest.mark.asyncio
async def test_unlisted_event_is_acknowledged_without_sync(processor, fake_provider, kv_store):
    body = make_event("customer.updated", customer="cus_1")

    result = await processor.handle_event(body, sign_payload(body))

    assert result.acknowledged
    assert WebhookState.IGNORED in result.trail
    assert WebhookState.SYNCED not in result.trail
    assert fake_provider.calls == {}
    assert kv_store.get("stripe:customer:cus_1") is None


@pytest.mark.asyncio
async def test_allowed_event_without_customer_is_acknowledged(processor, fake_provider):
    body = make_event("payment_intent.succeeded", customer=None)

    result = await processor.handle_event(body, sign_payload(body))

    assert result.acknowledged
    assert WebhookState.SYNCED not in result.trail
    assert fake_provider.calls == {}


@pytest.mark.asyncio
async def test_duplicate_delivery_converges(processor, fake_provider, subscription_cache):
    fake_provider.subscriptions["cus_1"] = [make_subscription("sub_1")]
    body = make_event("invoice.paid", customer="cus_1")
    header = sign_payload(body)

    first = await processor.handle_event(body, header)
    cached_once = subscription_cache.get("cus_1")
    second = await processor.handle_event(body, header)

    assert first.acknowledged and second.acknowledged
    assert subscription_cache.get("cus_1") == cached_once


@pytest.mark.asyncio
async def test_duplicate_delivery_without_subscriptions_converges(processor, subscription_cache):
    body = make_event("customer.subscription.deleted", customer="cus_x")
    header = sign_payload(body)
    period_fields = {"current_period_start", "current_period_end"}

    await processor.handle_event(body, header)
    first = subscription_cache.get("cus_x")
    await processor.handle_event(body, header)
    second = subscription_cache.get("cus_x")

    # "No subscription" stamps both period bounds with the time of the sync
    assert first.status == SubscriptionStatus.NONE
    assert first.current_period_start == first.current_period_end
    assert second.current_period_start == second.current_period_end
    assert second.current_period_start >= first.current_period_start
    assert first.model_dump(exclude=period_fields) == second.model_dump(exclude=period_fields)


@pytest.mark.asyncio
async def test_out_of_order_events_reflect_provider_truth(processor, fake_provider, subscription_cache):
    # Provider already reflects the cancellation when the older "created" event arrives
    fake_provider.subscriptions["cus_1"] = [make_subscription("sub_1", status="canceled")]
    deleted = make_event("customer.subscription.deleted", customer="cus_1", event_id="evt_2")
    created = make_event("customer.subscription.created", customer="cus_1", event_id="evt_1")

    await processor.handle_event(deleted, sign_payload(deleted))
    await processor.handle_event(created, sign_payload(created))

    assert subscription_cache.get("cus_1").status == SubscriptionStatus.CANCELED


@pytest.mark.asyncio
async def test_sync_failure_raises_processing_error(processor, fake_provider):
    fake_provider.fail_list_subscriptions = True
    body = make_event("invoice.payment_failed", customer="cus_1")

    with pytest.raises(WebhookProcessingError):
        await processor.handle_event(body, sign_payload(body))


@pytest.mark.asyncio
async def test_missing_secret_is_a_config_error():
    processor = WebhookProcessor(AsyncMock(), webhook_secret=None)
    body = make_event("invoice.paid")

    with pytest.raises(BillingConfigError):
        await processor.handle_event(body, sign_payload(body))


@pytest.mark.asyncio
async def test_custom_verifier_is_used(sync_service):
    seen = []

    def verify(raw_body, header, secret, tolerance):
        seen.append((header, secret, tolerance))

    processor = WebhookProcessor(sync_service, webhook_secret="s", tolerance_seconds=60, verify_signature=verify)
    result = await processor.handle_event(make_event("customer.created"), "t=1,v1=x")

    assert result.acknowledged
    assert seen == [("t=1,v1=x", "s", 60)]

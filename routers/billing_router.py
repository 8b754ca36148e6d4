"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from auth import get_current_user
from dependencies import get_billing_service, get_billing_sync_service, get_webhook_processor
from models.subscription import SubscriptionSnapshot
from services.billing_errors import BillingConfigError, WebhookProcessingError
from services.billing_service import BillingService
from services.billing_sync import BillingSyncService
from services.plan_mapper import normalize_plan_id
from services.webhook_processor import WebhookProcessor
from utils.responses import error_response, service_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    plan_id: Optional[str] = Field(default=None, alias="planId")
    period: str = "month"


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle Stripe webhook events with signature verification.

    Untrusted deliveries get 400 so nothing is written. Failed resyncs get
    500 so Stripe retries; allowed and ignored events both get 200.
    """
    # Raw bytes are required for signature verification
    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")

    try:
        result = await processor.handle_event(payload, stripe_signature)
    except BillingConfigError as e:
        logger.error(f"Webhook cannot be processed: {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})
    except WebhookProcessingError as e:
        logger.error(f"Webhook processing failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    if not result.acknowledged:
        return JSONResponse(status_code=400, content={"error": result.error or "Invalid webhook"})

    return JSONResponse(status_code=200, content={"received": True})


@billing_router.get("/subscription")
async def get_subscription(
    current_user: dict = Depends(get_current_user),
    sync_service: BillingSyncService = Depends(get_billing_sync_service),
):
    """
    Current subscription state for the authenticated user.

    Always 200: any lookup failure is reported as the free plan.
    """
    snapshot = await sync_service.get_subscription(current_user["user_id"], current_user.get("email"))
    return snapshot.status_view()


@billing_router.post("/checkout")
async def create_checkout_session(
    body: CheckoutRequest,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Create a Stripe Checkout session for a paid plan.

    Returns:
        JSON response with checkout session URL
    """
    if not body.plan_id:
        return error_response("planId is required", status=400, message="planId is required")

    plan_id = normalize_plan_id(body.plan_id).value
    result = await billing_service.create_checkout_session(
        current_user["user_id"],
        current_user.get("email"),
        plan_id,
        (body.period or "").strip().lower(),
    )
    return service_response(result)


@billing_router.post("/portal")
async def create_billing_portal_session(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Create a Stripe Billing Portal session for the user's customer record.

    Returns:
        JSON response with portal session URL
    """
    result = await billing_service.create_billing_portal_session(
        current_user["user_id"], current_user.get("email")
    )
    return service_response(result)


@billing_router.post("/sync")
async def sync_subscription(
    current_user: dict = Depends(get_current_user),
    sync_service: BillingSyncService = Depends(get_billing_sync_service),
):
    """Resync the current user's subscription from Stripe and return it."""
    user_id = current_user["user_id"]
    try:
        snapshot = await sync_service.sync_user(user_id, current_user.get("email"))
    except BillingConfigError as e:
        logger.error(f"Sync unavailable: {e}")
        return error_response("Billing is not configured", status=500, message="Billing is not configured")
    except Exception as e:
        logger.error(f"Subscription sync failed for user {user_id}: {e}", exc_info=True)
        return error_response("Failed to sync subscription", status=502, message="Failed to sync subscription")

    if snapshot is None:
        snapshot = SubscriptionSnapshot.none()
    return snapshot.status_view()

"""
Billing reconciliation backend
Mirrors Stripe subscription state into a fast cache and serves it to the frontend
"""

from pathlib import Path
import logging
import traceback

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from routers.billing_router import billing_router
from utils.rate_limit import RateLimiterMiddleware
from dependencies import get_kv_store
from config.settings import settings

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI(title="Billing Sync")


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "Internal Server Error"}
            )


# Required keys for startup validation (non-fatal)
REQUIRED_KEY_MAP = {
    "STRIPE_SECRET_KEY": settings.stripe_secret_key,
    "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
    "JWT_SECRET_KEY": settings.jwt_secret_key,
}


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Only set in production where HTTPS is guaranteed
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


def _rate_limit_store():
    # Honour test overrides of the shared store
    return app.dependency_overrides.get(get_kv_store, get_kv_store)()


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(
    RateLimiterMiddleware,
    store_factory=_rate_limit_store,
    requests_per_minute=settings.rate_limit_per_minute,
)
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# STARTUP CHECKS - ENV KEYS
# ============================================================================
@app.on_event("startup")
async def validate_keys():
    """Validate required keys are present (non-fatal)"""
    missing = [key for key, value in REQUIRED_KEY_MAP.items() if not value]
    if not settings.pro_price_ids and not settings.enterprise_price_ids:
        missing.append("STRIPE_PRO_PRICE_IDS/STRIPE_ENTERPRISE_PRICE_IDS")

    if missing:
        logger.warning(f"⚠️ Missing billing configuration: {missing}")
    else:
        logger.info("🔐 All billing keys loaded successfully")


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(billing_router)


@app.get("/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

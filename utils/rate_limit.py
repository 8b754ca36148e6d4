import json
from time import time
from typing import Callable, Iterable, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import logging

from utils.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

# Provider callbacks are retried by the sender and must never be throttled
DEFAULT_EXEMPT_PATHS = ("/api/billing/webhook",)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiter stored in the shared key-value store.
    Uses Token Bucket Algorithm.
    Default: 60 requests per 60 seconds per IP.
    """

    def __init__(
        self,
        app,
        store_factory: Callable[[], KeyValueStore],
        requests_per_minute: int = 60,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.capacity = requests_per_minute
        self.refill_time_window = 60.0
        self.exempt_paths = frozenset(exempt_paths)
        self._store_factory = store_factory

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _get_key(self, ip: str) -> str:
        return f"rate_limit:{ip}"

    def check_rate_limit(self, ip: str, now: Optional[float] = None) -> bool:
        """
        Returns True if request is allowed, False if rate limited.
        Bucket state: {"tokens": float, "last_refill": float}
        """
        store = self._store_factory()
        key = self._get_key(ip)
        now = time() if now is None else now

        raw = store.get(key)
        if raw:
            data = json.loads(raw)
            tokens = float(data.get("tokens", 0))
            last_refill = float(data.get("last_refill", now))
        else:
            # New bucket, start with full capacity
            tokens = float(self.capacity)
            last_refill = now

        # Refill based on elapsed time
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.refill_time_window) * self.capacity
        tokens = min(self.capacity, tokens + refill)

        if tokens < 1.0:
            return False

        # Expire after refill window; an absent bucket is a full one
        store.put(
            key,
            json.dumps({"tokens": tokens - 1.0, "last_refill": now}),
            ttl_seconds=int(self.refill_time_window) + 10,
        )
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        ip = self._get_client_ip(request)
        try:
            allowed = self.check_rate_limit(ip)
        except Exception as e:
            # Fail open on store errors
            logger.warning(f"Rate limit check failed for {ip}: {e}. Allowing request.")
            allowed = True

        if not allowed:
            logger.warning(f"Rate limit exceeded for {ip} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "data": {},
                    "error": "rate_limited",
                    "message": "Rate limit exceeded. Try again shortly."
                },
            )

        return await call_next(request)

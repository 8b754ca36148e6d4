"""
Authentication dependency

Tokens are issued by the external identity provider; this module only
verifies them and extracts the user identity.
"""

import logging
from typing import Optional

from fastapi import Cookie, Header, HTTPException

from auth_utils import decode_jwt

logger = logging.getLogger(__name__)


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Cookie first, then `Authorization: Bearer <token>`."""
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> dict:
    """
    Dependency function to get the current authenticated user.

    Returns:
        {"user_id": str, "email": Optional[str]}
    """
    token = extract_token(auth_token, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Cannot verify tokens: {e}")
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    email = payload.get("email")
    return {
        "user_id": user_id,
        "email": email if isinstance(email, str) else None,
    }

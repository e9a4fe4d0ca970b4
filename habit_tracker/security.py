import hmac
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.exceptions import GoogleAuthError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from . import config
from .database import get_db
from .errors import ApiError
from .helpers import now_utc
from .subscription_state import check_access, reconcile_user

logger = logging.getLogger(__name__)

# auto_error=False so a missing header renders as ACCESS_DENIED, not FastAPI's 403
bearer = HTTPBearer(auto_error=False)

GOOGLE_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}


# -----------------------------
# Tokens
# -----------------------------

def create_user_token(user_id: str, now: Optional[datetime] = None) -> str:
    now = now or now_utc()
    payload = {"user_id": user_id, "iat": now, "exp": now + config.USER_TOKEN_TTL}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_admin_token(username: str, now: Optional[datetime] = None) -> str:
    now = now or now_utc()
    payload = {"is_admin": True, "username": username, "iat": now, "exp": now + config.ADMIN_TOKEN_TTL}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise ApiError(401, "TOKEN_EXPIRED", "Your session has expired. Please login again.") from e
    except jwt.InvalidTokenError as e:
        raise ApiError(401, "INVALID_TOKEN", "Invalid authentication token.") from e


def check_admin_credentials(username: str, password: str) -> bool:
    if not config.ADMIN_USERNAME or not config.ADMIN_PASSWORD:
        return False
    user_ok = hmac.compare_digest(username.encode(), config.ADMIN_USERNAME.encode())
    pass_ok = hmac.compare_digest(password.encode(), config.ADMIN_PASSWORD.encode())
    return user_ok and pass_ok


def verify_google_credential(credential: str) -> Dict[str, Any]:
    """Validate a Google Sign-In ID token and return its claims.

    Blocking (fetches Google's certificates), so call it from a threadpool.
    """
    if not config.GOOGLE_CLIENT_ID:
        raise ApiError(401, "GOOGLE_AUTH_FAILED", "Google sign-in is not configured")
    request = google_requests.Request()
    try:
        claims = google_id_token.verify_oauth2_token(credential, request, audience=config.GOOGLE_CLIENT_ID)
    except (ValueError, GoogleAuthError) as exc:
        logger.warning("Google token verification failed: %s", exc)
        raise ApiError(401, "GOOGLE_AUTH_FAILED", "Authentication failed") from exc

    if claims.get("iss") not in GOOGLE_ISSUERS:
        raise ApiError(401, "GOOGLE_AUTH_FAILED", "Invalid token issuer")
    if not str(claims.get("sub") or "").strip() or not claims.get("email"):
        raise ApiError(401, "GOOGLE_AUTH_FAILED", "Token is missing subject or email")
    return claims


# -----------------------------
# Dependencies
# -----------------------------

async def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db=Depends(get_db),
) -> Dict[str, Any]:
    """Authenticated, active user. Does not look at the subscription."""
    if credentials is None or not credentials.credentials:
        raise ApiError(401, "ACCESS_DENIED", "Access denied. No token provided.")

    payload = decode_token(credentials.credentials)
    user_id = payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise ApiError(401, "INVALID_TOKEN", "Invalid token format")

    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise ApiError(401, "USER_NOT_FOUND", "Your account no longer exists. Please contact support.")
    if not user.get("is_active", True):
        raise ApiError(403, "ACCOUNT_DEACTIVATED", "Your account has been deactivated. Please contact support.")

    return await reconcile_user(db, user, now_utc())


async def subscribed_user(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    """Authenticated user whose subscription grants access to the tracker."""
    check_access(user)
    return user


async def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise ApiError(401, "ACCESS_DENIED", "Access denied")
    payload = decode_token(credentials.credentials)
    if payload.get("is_admin") is not True:
        raise ApiError(403, "ADMIN_REQUIRED", "Admin access required")
    return payload

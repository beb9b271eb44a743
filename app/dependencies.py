# app/dependencies.py
import logging
from typing import Optional

from fastapi import Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from app import config
from app.errors import AuthError, PermissionDeniedError
from app.services.notifications import Principal

logger = logging.getLogger(__name__)

# Security scheme
bearer = HTTPBearer(description="Google ID Token (JWT)", auto_error=False)


def verify_token(token: str) -> str:
    """Verify a Google ID token and return the account email."""
    if not token:
        raise AuthError("Access token required")

    # 1. Check if Client ID is actually loaded
    if not config.GOOGLE_CLIENT_ID:
        logger.critical("GOOGLE_CLIENT_ID is not set in environment variables!")
        raise AuthError("Server authentication is not configured")

    try:
        # 2. Verify the token
        idinfo = id_token.verify_oauth2_token(
            token, google_requests.Request(), config.GOOGLE_CLIENT_ID
        )
        return idinfo["email"].lower()

    except ValueError as e:
        # 3. Log the specific error (e.g. "Token expired", "Audience mismatch")
        logger.warning("Token validation failed: %s", e)
        raise AuthError(f"Invalid token: {e}")


def principal_for(email: str) -> Principal:
    return Principal(user_id=email, role=config.STAFF_ROLES.get(email, config.DEFAULT_ROLE))


def get_verified_email(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    if credentials is None:
        raise AuthError("Access token required")
    return verify_token(credentials.credentials)


def get_principal(email: str = Depends(get_verified_email)) -> Principal:
    return principal_for(email)


def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[Principal]:
    """None for guests; a bad token is still refused, not downgraded to guest."""
    if credentials is None:
        return None
    return principal_for(verify_token(credentials.credentials))


def require_moderator(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role not in config.MODERATOR_ROLES:
        raise PermissionDeniedError()
    return principal


def get_stream_principal(token: Optional[str] = Query(None)) -> Principal:
    """The push channel cannot send headers, so the token rides in the query string."""
    return principal_for(verify_token(token))

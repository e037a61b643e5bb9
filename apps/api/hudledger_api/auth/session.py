"""Signed session tokens.

The session is a JWT carrying the user id (``sub``) and optionally the email.
It is read from an ``Authorization: Bearer`` header first, then from the
session cookie.
"""

import logging
from datetime import timedelta
from typing import Mapping, Optional

from jose import JWTError, jwt

from hudledger_api.access.types import Principal
from hudledger_api.ledger.types import utcnow
from hudledger_api.settings import get_settings

logger = logging.getLogger(__name__)


def create_session_token(user_id: str, email: Optional[str] = None, expires_in: Optional[timedelta] = None) -> str:
    """Issue a signed session token for a user."""
    settings = get_settings()
    issued_at = utcnow()
    expires_at = issued_at + (expires_in or timedelta(hours=settings.jwt_expiration_hours))
    claims = {
        "sub": user_id,
        "iat": issued_at,
        "exp": expires_at,
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> Optional[Principal]:
    """Verify a token and return its principal, or None if it is invalid or expired."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.info("Rejected session token", extra={"error": str(e)})
        return None

    user_id = claims.get("sub")
    if not user_id:
        return None
    return Principal(user_id=user_id, email=claims.get("email"))


def extract_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> Optional[str]:
    """Pull the raw token from a bearer header or the session cookie."""
    authorization = headers.get("authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()

    return cookies.get(get_settings().session_cookie_name) or None


def principal_from_request(request) -> Optional[Principal]:
    """Resolve the authenticated principal of a request, or None."""
    token = extract_token(request.headers, request.cookies)
    if not token:
        return None
    return decode_session_token(token)

"""
JWT helpers. The web app signs session tokens; this service only needs to mint
(tests, scripts) and verify them.

Checkout tokens are the one kind we issue ourselves: they ride in the hosted
page's return URL so the browser redirect back from Converge, which carries no
Authorization header, can still be tied to an organization.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt

from app.core.config import settings

CHECKOUT_TOKEN_TYPE = "checkout"
CHECKOUT_TOKEN_PARAM = "checkout_token"


def _encode(claims: Dict[str, Any], expires_delta: timedelta) -> str:
    payload = {**claims, "exp": datetime.utcnow() + expires_delta}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id: str,
    org_id: str,
    email: str,
    role: str = "member",
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    return _encode(
        {"sub": email, "user_id": user_id, "org_id": org_id, "role": role, "name": name},
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_checkout_token(
    user_id: str,
    org_id: str,
    email: str,
    role: str,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Token accepted only by the payment callback, never as a bearer token."""
    return _encode(
        {
            "sub": email,
            "user_id": user_id,
            "org_id": org_id,
            "role": role,
            "name": name,
            "typ": CHECKOUT_TOKEN_TYPE,
        },
        expires_delta or timedelta(minutes=settings.CHECKOUT_TOKEN_EXPIRE_MINUTES),
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the token payload, or None if the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None

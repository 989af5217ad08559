from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging
import uuid

from app.core.config import settings
from app.core.errors import AuthorizationError, ServiceUnavailableError
from app.core.security import CHECKOUT_TOKEN_PARAM, CHECKOUT_TOKEN_TYPE, decode_access_token
from app.services.billing.gateway import PaymentGateway
from app.services.billing.providers import get_payment_gateway

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

# Lowest to highest
ROLE_RANKS = {
    "viewer": 0,
    "member": 1,
    "admin": 2,
    "owner": 3,
}


class CurrentMember:
    """
    The signed-in user as described by their session token.

    Users and memberships live in the main web app; billing only trusts the
    claims it was handed, so there is no users table lookup here.
    """

    def __init__(self, user_id: str, org_id: uuid.UUID, email: str, role: str, name: Optional[str] = None):
        self.user_id = user_id
        self.org_id = org_id
        self.email = email
        self.role = role
        self.name = name

    def has_role(self, min_role: str) -> bool:
        return ROLE_RANKS.get(self.role, -1) >= ROLE_RANKS[min_role]


def _member_from_claims(payload: dict) -> Optional[CurrentMember]:
    email = payload.get("sub")
    org_id_from_token = payload.get("org_id")
    if not email or not org_id_from_token:
        return None

    try:
        org_id = uuid.UUID(str(org_id_from_token))
    except (ValueError, TypeError):
        logger.warning("[AUTH] Invalid org_id format in token: %r", org_id_from_token)
        return None

    role = (payload.get("role") or "member").lower()
    return CurrentMember(
        user_id=payload.get("user_id") or email,
        org_id=org_id,
        email=email,
        role=role,
        name=payload.get("name"),
    )


def get_current_member(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentMember:
    """Decode the bearer token and check it names an organization."""
    payload = decode_access_token(credentials.credentials)
    # Checkout tokens only open the payment callback
    if payload is None or payload.get("typ") == CHECKOUT_TOKEN_TYPE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    member = _member_from_claims(payload)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return member


def get_callback_member(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[CurrentMember]:
    """
    Who is returning from the hosted payment page, or None.

    A bearer token is used when present. Converge's redirect is a plain browser
    navigation, so normally the only credential is the ``checkout_token`` that
    create_checkout_session signed into the return URL.
    """
    if credentials is not None:
        try:
            return get_current_member(credentials)
        except HTTPException:
            logger.info("[AUTH] Ignoring invalid bearer token on payment callback")

    token = request.query_params.get(CHECKOUT_TOKEN_PARAM)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None or payload.get("typ") != CHECKOUT_TOKEN_TYPE:
        logger.warning("[AUTH] Rejected invalid or expired checkout token on payment callback")
        return None
    return _member_from_claims(payload)


def require_billing_enabled():
    if not settings.FEATURE_BILLING_ENABLED:
        raise ServiceUnavailableError("Billing is not enabled")


def require_role(min_role: str):
    """Dependency factory: the member's role must rank at least ``min_role``."""
    if min_role not in ROLE_RANKS:
        raise ValueError(f"Unknown role: {min_role}")

    def dependency(member: CurrentMember = Depends(get_current_member)) -> CurrentMember:
        if not member.has_role(min_role):
            raise AuthorizationError(f"{min_role.capitalize()} access required")
        return member

    return dependency


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()

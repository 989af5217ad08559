"""
Audit logging for user-initiated billing actions
"""
from sqlalchemy.orm import Session
from fastapi import Request
from app.models.audit_log import AuditLog, AuditAction
from typing import Optional
import logging
import uuid

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client IP: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


def log_audit_event(
    db: Session,
    action: AuditAction,
    org_id: uuid.UUID,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    request: Optional[Request] = None,
    details: Optional[dict] = None
):
    """
    Log a billing action to the audit log.

    Args:
        db: Database session
        action: What the user did
        org_id: Organization ID
        user_id: User ID from the session token (if applicable)
        resource_type: Type of resource (e.g., "payment", "subscription")
        resource_id: ID of the resource
        request: Incoming request, used for IP address and user agent
        details: Additional details (stored as JSON)
    """
    try:
        audit_log = AuditLog(
            org_id=org_id,
            user_id=str(user_id) if user_id else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            ip_address=get_client_ip(request) if request is not None else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
            details=details,
        )
        db.add(audit_log)
        db.commit()
    except Exception:
        # Don't fail the request if audit logging fails
        logger.exception("[AUDIT] Failed to log %s for org %s", action.value, org_id)
        db.rollback()

"""Audit log of ledger and administrative actions."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from hudledger_api.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Audit action names."""

    LEDGER_ENTRY_APPENDED = "LEDGER_ENTRY_APPENDED"
    LEDGER_CHAIN_VERIFIED = "LEDGER_CHAIN_VERIFIED"
    LEDGER_INTEGRITY_VIOLATION = "LEDGER_INTEGRITY_VIOLATION"
    LEDGER_EXPORTED = "LEDGER_EXPORTED"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    ORGANIZATION_CREATED = "ORGANIZATION_CREATED"
    MEMBER_ADDED = "MEMBER_ADDED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    TENANT_PROFILE_UPDATED = "TENANT_PROFILE_UPDATED"


def log_event(
    db: Session,
    action: str,
    actor_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> AuditLog:
    """Record an audit event and commit it."""
    audit_log = AuditLog(
        action=action,
        actor_id=actor_id,
        organization_id=organization_id,
        resource_type=resource_type,
        resource_id=resource_id,
        meta_data=metadata or {},
        correlation_id=correlation_id,
    )
    db.add(audit_log)
    db.commit()
    logger.info(
        "Audit event recorded",
        extra={"action": action, "actor_id": actor_id, "organization_id": organization_id},
    )
    return audit_log


def get_events(
    db: Session,
    organization_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> list[AuditLog]:
    """Most recent audit events, newest first."""
    query = db.query(AuditLog)
    if organization_id:
        query = query.filter(AuditLog.organization_id == organization_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()

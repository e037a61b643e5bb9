"""Audit log model."""

from sqlalchemy import Column, DateTime, Integer, JSON, String

from hudledger_api.db.base import Base
from hudledger_api.ledger.types import utcnow


class AuditLog(Base):
    """Who did what to which organization's ledger, and when."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    actor_id = Column(String(255), nullable=True, index=True)  # None for system actions
    organization_id = Column(String(36), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)
    meta_data = Column(JSON, nullable=True)
    correlation_id = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id})>"

"""Database models - import all models here for Alembic discovery."""

from hudledger_api.models.audit import AuditLog
from hudledger_api.models.ledger import AccountingPeriodClose, LedgerChainHead, LedgerEntry
from hudledger_api.models.organization import (
    Organization,
    OrganizationMember,
    Subscription,
    TenantProfile,
)

__all__ = [
    "Organization",
    "OrganizationMember",
    "Subscription",
    "TenantProfile",
    "LedgerEntry",
    "LedgerChainHead",
    "AccountingPeriodClose",
    "AuditLog",
]

# Register write-once listeners whenever the models are loaded
from hudledger_api.ledger import immutability  # noqa: F401, E402

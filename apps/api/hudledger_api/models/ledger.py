"""Append-only ledger models."""

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hudledger_api.db.base import Base
from hudledger_api.ledger.types import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class LedgerEntry(Base):
    """Hash-chained, write-once accounting entry.

    Rows are only ever inserted through the ledger service. The single
    permitted mutation is the period-close flip of ``is_period_closed``.
    """

    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    chain_sequence = Column(BigInteger, nullable=False)  # 1-based, per organization
    property_id = Column(String(36), nullable=False, index=True)
    unit_id = Column(String(36), nullable=False)
    tenant_id = Column(String(36), nullable=True, index=True)
    transaction_type = Column(String(50), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(500), nullable=False)
    accounting_period = Column(String(7), nullable=False)  # YYYY-MM
    is_period_closed = Column(Boolean, default=False, nullable=False)
    adjusts_entry_id = Column(String(36), ForeignKey("ledger_entries.id"), nullable=True)
    cryptographic_hash = Column(String(64), nullable=False, unique=True)
    previous_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False)
    created_by = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "chain_sequence", name="uq_ledger_org_sequence"),
        UniqueConstraint("organization_id", "previous_hash", name="uq_ledger_org_previous_hash"),
        Index("ix_ledger_org_period", "organization_id", "accounting_period"),
    )

    organization = relationship("Organization")
    adjusts_entry = relationship("LedgerEntry", remote_side=[id])

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, org={self.organization_id}, "
            f"seq={self.chain_sequence}, type='{self.transaction_type}', amount={self.amount})>"
        )


class LedgerChainHead(Base):
    """Current tail of an organization's chain.

    Appends advance the head with a compare-and-swap on ``last_sequence``,
    so two writers that read the same tail cannot both extend it.
    """

    __tablename__ = "ledger_chain_heads"

    organization_id = Column(String(36), ForeignKey("organizations.id"), primary_key=True)
    last_sequence = Column(BigInteger, nullable=False)
    tail_hash = Column(String(64), nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class AccountingPeriodClose(Base):
    """Record of a closed accounting period."""

    __tablename__ = "accounting_period_closes"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    accounting_period = Column(String(7), nullable=False)
    closed_by = Column(String(255), nullable=False)
    closed_at = Column(DateTime, default=utcnow, nullable=False)
    entries_closed = Column(BigInteger, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "accounting_period", name="uq_period_close_org_period"),
    )

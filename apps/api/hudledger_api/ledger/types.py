"""Ledger value types."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

ACCOUNTING_PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Hashed in place of a previous digest for the first entry of a chain
GENESIS_MARKER = "GENESIS"
# Stored as previous_hash on the first entry of a chain
GENESIS_HASH = "0" * 64


class TransactionType(str, Enum):
    """Kinds of business events recorded in the ledger."""

    CHARGE = "CHARGE"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    FEE = "FEE"
    RECERTIFICATION_LOG = "RECERTIFICATION_LOG"
    MAINTENANCE_REQUEST = "MAINTENANCE_REQUEST"
    MAINTENANCE_APPROVAL = "MAINTENANCE_APPROVAL"
    MAINTENANCE_RESOLVED = "MAINTENANCE_RESOLVED"


@dataclass(frozen=True)
class EntryDraft:
    """Caller-supplied fields of a ledger entry.

    Everything the engine stamps itself (id, hashes, created_at, chain
    sequence) is absent.
    """

    organization_id: str
    property_id: str
    unit_id: str
    transaction_type: str
    amount: Decimal
    description: str
    accounting_period: str
    created_by: str
    tenant_id: Optional[str] = None
    adjusts_entry_id: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of re-walking an organization's chain."""

    organization_id: str
    is_valid: bool
    total_entries: int
    first_broken_entry_id: Optional[str] = None
    first_broken_sequence: Optional[int] = None
    failure: Optional[str] = None  # "hash_mismatch", "chain_link_mismatch" or "tail_mismatch"
    checked_at: datetime = field(default_factory=lambda: utcnow())

    @property
    def message(self) -> str:
        if self.is_valid:
            return f"Ledger integrity verified. {self.total_entries} entries validated."
        return (
            f"Ledger integrity compromised at entry {self.first_broken_entry_id} "
            f"({self.failure})."
        )


@dataclass(frozen=True)
class ChainExport:
    """Entries handed to an auditor, with the verification made over them."""

    organization_id: str
    entries: list
    verification: VerificationResult


@dataclass(frozen=True)
class ComplianceHealth:
    """Period-close hygiene summary for an organization."""

    organization_id: str
    health_score: int
    total_entries: int
    closed_periods: int
    open_periods: int
    last_entry_at: Optional[datetime] = None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in ledger columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def current_accounting_period(now: Optional[datetime] = None) -> str:
    """Return the YYYY-MM token for the current UTC month."""
    now = now or utcnow()
    return f"{now.year:04d}-{now.month:02d}"


def is_valid_accounting_period(period: str) -> bool:
    """Check an accounting period token."""
    return bool(period) and bool(ACCOUNTING_PERIOD_PATTERN.match(period))

"""Canonical digest of a ledger entry.

The digest covers exactly: organization, property, unit, tenant, transaction
type, amount, description, accounting period, creation timestamp and the
previous entry's digest. A missing tenant serialises as JSON null, distinct
from an empty string. ``created_by``, ``chain_sequence`` and
``is_period_closed`` are not part of it.
"""

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional

from hudledger_api.ledger.types import GENESIS_HASH, GENESIS_MARKER

AMOUNT_QUANTUM = Decimal("0.01")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def canonical_amount(amount) -> str:
    """Fixed two-place decimal string; never goes through float."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return format(amount.quantize(AMOUNT_QUANTUM), "f")


def canonical_timestamp(value: datetime) -> str:
    """Fixed-width timestamp with microseconds, naive UTC."""
    if value.tzinfo is not None:
        raise ValueError("ledger timestamps are stored as naive UTC")
    return value.strftime(TIMESTAMP_FORMAT)


def canonical_payload(
    organization_id: str,
    property_id: str,
    unit_id: str,
    tenant_id: Optional[str],
    transaction_type: str,
    amount,
    description: str,
    accounting_period: str,
    created_at: datetime,
    previous_hash: str,
) -> dict:
    """Build the dictionary that is serialised and hashed."""
    return {
        "organization_id": organization_id,
        "property_id": property_id,
        "unit_id": unit_id,
        "tenant_id": tenant_id,
        "transaction_type": transaction_type,
        "amount": canonical_amount(amount),
        "description": description,
        "accounting_period": accounting_period,
        "created_at": canonical_timestamp(created_at),
        "previous_hash": GENESIS_MARKER if previous_hash == GENESIS_HASH else previous_hash,
    }


def compute_hash(payload: dict) -> str:
    """SHA-256 over the sorted-key JSON form of the payload."""
    serialized = json.dumps(payload, sort_keys=True)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def hash_entry(entry) -> str:
    """Recompute the digest of a persisted (or fully stamped) entry."""
    return compute_hash(
        canonical_payload(
            organization_id=entry.organization_id,
            property_id=entry.property_id,
            unit_id=entry.unit_id,
            tenant_id=entry.tenant_id,
            transaction_type=entry.transaction_type,
            amount=entry.amount,
            description=entry.description,
            accounting_period=entry.accounting_period,
            created_at=entry.created_at,
            previous_hash=entry.previous_hash,
        )
    )

"""Ledger engine: append-only, hash-chained transaction log per organization."""

import logging
import random
import time
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hudledger_api.errors import (
    ConcurrencyError,
    IntegrityViolation,
    LedgerValidationError,
    NotFoundError,
    PeriodClosedError,
)
from hudledger_api.ledger.hashing import AMOUNT_QUANTUM, hash_entry
from hudledger_api.ledger.store import SqlAlchemyLedgerStore
from hudledger_api.ledger.types import (
    GENESIS_HASH,
    ChainExport,
    ComplianceHealth,
    EntryDraft,
    TransactionType,
    VerificationResult,
    is_valid_accounting_period,
    utcnow,
)
from hudledger_api.models import LedgerEntry, Organization
from hudledger_api.settings import get_settings
from hudledger_api.utils.metrics import (
    chain_verifications,
    integrity_violations,
    ledger_append_conflicts,
    ledger_append_duration,
    ledger_appends,
    period_closes,
)

logger = logging.getLogger(__name__)

# Numeric(14, 2)
MAX_ABS_AMOUNT = Decimal("999999999999.99")
MAX_DESCRIPTION_LENGTH = 500

HASH_MISMATCH = "hash_mismatch"
CHAIN_LINK_MISMATCH = "chain_link_mismatch"
TAIL_MISMATCH = "tail_mismatch"


class LedgerService:
    """Tamper-evident ledger with per-organization hash chaining."""

    def __init__(self, db: Session, store: Optional[SqlAlchemyLedgerStore] = None):
        """Initialize ledger service."""
        self.db = db
        self.store = store or SqlAlchemyLedgerStore(db)

    # Append

    def _validate(self, draft: EntryDraft) -> tuple[str, Decimal]:
        """Check a draft and return its normalised transaction type and amount."""
        try:
            transaction_type = TransactionType(draft.transaction_type).value
        except ValueError:
            raise LedgerValidationError(
                f"Unknown transaction type: {draft.transaction_type}",
                details={"transaction_type": str(draft.transaction_type)},
            ) from None

        amount = draft.amount
        if isinstance(amount, bool) or not isinstance(amount, (Decimal, int)):
            raise LedgerValidationError(
                "Amount must be an exact decimal",
                details={"amount_type": type(amount).__name__},
            )
        amount = Decimal(amount)
        if not amount.is_finite():
            raise LedgerValidationError("Amount must be finite", details={"amount": str(amount)})
        if amount != amount.quantize(AMOUNT_QUANTUM):
            raise LedgerValidationError(
                "Amount has more than two decimal places",
                details={"amount": str(amount)},
            )
        if abs(amount) > MAX_ABS_AMOUNT:
            raise LedgerValidationError("Amount out of range", details={"amount": str(amount)})

        if not is_valid_accounting_period(draft.accounting_period):
            raise LedgerValidationError(
                "Accounting period must be YYYY-MM",
                details={"accounting_period": draft.accounting_period},
            )

        for name in ("organization_id", "property_id", "unit_id", "created_by"):
            if not getattr(draft, name):
                raise LedgerValidationError(f"{name} is required", details={"field": name})

        if not draft.description or not draft.description.strip():
            raise LedgerValidationError("description is required", details={"field": "description"})
        if len(draft.description) > MAX_DESCRIPTION_LENGTH:
            raise LedgerValidationError(
                f"description exceeds {MAX_DESCRIPTION_LENGTH} characters",
                details={"field": "description"},
            )

        if self.db.get(Organization, draft.organization_id) is None:
            raise LedgerValidationError(
                "Organization does not exist",
                details={"organization_id": draft.organization_id},
            )

        if draft.adjusts_entry_id is not None:
            if transaction_type != TransactionType.ADJUSTMENT.value:
                raise LedgerValidationError(
                    "Only ADJUSTMENT entries may reference another entry",
                    details={"adjusts_entry_id": draft.adjusts_entry_id},
                )
            if self.store.read_entry(draft.organization_id, draft.adjusts_entry_id) is None:
                raise LedgerValidationError(
                    "Adjusted entry does not exist in this organization",
                    details={"adjusts_entry_id": draft.adjusts_entry_id},
                )

        return transaction_type, amount.quantize(AMOUNT_QUANTUM)

    def append(self, draft: EntryDraft) -> LedgerEntry:
        """Append one entry to the organization's chain.

        Raises LedgerValidationError (or PeriodClosedError) for bad input and
        ConcurrencyError when another writer extended the chain first. The
        session is committed on success and rolled back on failure.
        """
        transaction_type, amount = self._validate(draft)
        organization_id = draft.organization_id

        tail = self.store.read_tail(organization_id)
        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            chain_sequence=tail.chain_sequence + 1 if tail else 1,
            property_id=draft.property_id,
            unit_id=draft.unit_id,
            tenant_id=draft.tenant_id,
            transaction_type=transaction_type,
            amount=amount,
            description=draft.description,
            accounting_period=draft.accounting_period,
            is_period_closed=False,
            adjusts_entry_id=draft.adjusts_entry_id,
            previous_hash=tail.cryptographic_hash if tail else GENESIS_HASH,
            created_at=utcnow(),
            created_by=draft.created_by,
        )
        entry.cryptographic_hash = hash_entry(entry)

        def check_period(locked_entry: LedgerEntry) -> None:
            if not self.store.is_period_closed(organization_id, locked_entry.accounting_period):
                return
            if locked_entry.transaction_type != TransactionType.ADJUSTMENT.value:
                raise PeriodClosedError(
                    organization_id,
                    locked_entry.accounting_period,
                    locked_entry.transaction_type,
                )
            locked_entry.is_period_closed = True

        try:
            self.store.insert_if_chain_intact(entry, on_locked=check_period)
        except ConcurrencyError:
            ledger_append_conflicts.inc()
            logger.info(
                "Ledger append lost chain race",
                extra={"organization_id": organization_id, "sequence": entry.chain_sequence},
            )
            raise

        ledger_appends.labels(transaction_type=transaction_type).inc()
        logger.info(
            "Ledger entry appended",
            extra={
                "organization_id": organization_id,
                "entry_id": entry.id,
                "sequence": entry.chain_sequence,
                "transaction_type": transaction_type,
                "accounting_period": entry.accounting_period,
            },
        )
        return entry

    def append_with_retry(self, draft: EntryDraft, max_attempts: Optional[int] = None) -> LedgerEntry:
        """Append, retrying ConcurrencyError with exponential backoff and jitter.

        Any other error propagates on the first occurrence.
        """
        settings = get_settings()
        max_attempts = max(1, max_attempts or settings.ledger_append_max_attempts)
        base = settings.ledger_append_base_delay_seconds
        max_delay = max(base, settings.ledger_append_max_delay_seconds)

        with ledger_append_duration.time():
            attempt = 0
            while True:
                attempt += 1
                try:
                    return self.append(draft)
                except ConcurrencyError:
                    if attempt >= max_attempts:
                        logger.warning(
                            "Ledger append gave up after concurrent conflicts",
                            extra={"organization_id": draft.organization_id, "attempts": attempt},
                        )
                        raise
                    delay = min(max_delay, base * (2 ** (attempt - 1)))
                    jitter = 0.5 + (random.random() * 0.5)
                    time.sleep(delay * jitter)

    # Reads

    def _resolve_bounds(
        self,
        organization_id: str,
        from_entry_id: Optional[str],
        to_entry_id: Optional[str],
    ) -> tuple[Optional[int], Optional[int]]:
        from_sequence = to_sequence = None
        if from_entry_id is not None:
            entry = self.store.read_entry(organization_id, from_entry_id)
            if entry is None:
                raise NotFoundError("Ledger entry", from_entry_id)
            from_sequence = entry.chain_sequence
        if to_entry_id is not None:
            entry = self.store.read_entry(organization_id, to_entry_id)
            if entry is None:
                raise NotFoundError("Ledger entry", to_entry_id)
            to_sequence = entry.chain_sequence
        if from_sequence is not None and to_sequence is not None and from_sequence > to_sequence:
            raise LedgerValidationError(
                "Range start comes after range end",
                details={"from_entry_id": from_entry_id, "to_entry_id": to_entry_id},
            )
        return from_sequence, to_sequence

    def read_range(
        self,
        organization_id: str,
        from_entry_id: Optional[str] = None,
        to_entry_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """Entries between two entries of a chain, inclusive, in chain order."""
        from_sequence, to_sequence = self._resolve_bounds(organization_id, from_entry_id, to_entry_id)
        return self.store.read_range(organization_id, from_sequence, to_sequence)

    def entries_for_period(self, organization_id: str, accounting_period: str) -> list[LedgerEntry]:
        """Entries posted into one accounting period."""
        if not is_valid_accounting_period(accounting_period):
            raise LedgerValidationError(
                "Accounting period must be YYYY-MM",
                details={"accounting_period": accounting_period},
            )
        return self.store.read_period(organization_id, accounting_period)

    # Verification

    def _read_for_verification(
        self,
        organization_id: str,
        from_entry_id: Optional[str],
        to_entry_id: Optional[str],
    ) -> tuple[list[LedgerEntry], Optional[str], Optional[tuple[int, str]]]:
        """Read a range, the hash its first entry must link to, and the tail it must end on.

        The predecessor of a partial range is fetched in the same statement as
        the range itself, so both come from one snapshot. Open-ended ranges are
        capped at the committed chain head, read first: the head and its entry
        commit together, so every row up to it is visible and later appends
        are left out. The expected tail is None for ranges with an end entry.
        """
        from_sequence, to_sequence = self._resolve_bounds(organization_id, from_entry_id, to_entry_id)
        expected_tail = None
        if to_sequence is None:
            head = self.store.read_head(organization_id)
            if head is not None:
                expected_tail = (head.last_sequence, head.tail_hash)
                to_sequence = head.last_sequence
            else:
                expected_tail = (0, GENESIS_HASH)

        if from_sequence is None or from_sequence <= 1:
            rows = self.store.read_range(organization_id, None, to_sequence)
            return rows, GENESIS_HASH, expected_tail

        rows = self.store.read_range(organization_id, from_sequence - 1, to_sequence)
        if rows and rows[0].chain_sequence == from_sequence - 1:
            return rows[1:], rows[0].cryptographic_hash, expected_tail
        # Predecessor row is gone; nothing can link to it
        return rows, None, expected_tail

    def _report_violation(
        self,
        organization_id: str,
        total_entries: int,
        entry_id: Optional[str],
        sequence: Optional[int],
        failure: str,
    ) -> VerificationResult:
        chain_verifications.labels(result="invalid").inc()
        integrity_violations.labels(failure=failure).inc()
        logger.critical(
            "Ledger chain integrity violation",
            extra={
                "organization_id": organization_id,
                "entry_id": entry_id,
                "sequence": sequence,
                "failure": failure,
            },
        )
        return VerificationResult(
            organization_id=organization_id,
            is_valid=False,
            total_entries=total_entries,
            first_broken_entry_id=entry_id,
            first_broken_sequence=sequence,
            failure=failure,
        )

    def _verify_entries(
        self,
        organization_id: str,
        entries: list[LedgerEntry],
        expected_previous: Optional[str],
        expected_tail: Optional[tuple[int, str]] = None,
    ) -> VerificationResult:
        for entry in entries:
            failure = None
            if hash_entry(entry) != entry.cryptographic_hash:
                failure = HASH_MISMATCH
            elif entry.previous_hash != expected_previous:
                failure = CHAIN_LINK_MISMATCH

            if failure is not None:
                return self._report_violation(
                    organization_id, len(entries), entry.id, entry.chain_sequence, failure
                )

            expected_previous = entry.cryptographic_hash

        if expected_tail is not None:
            if entries:
                last = entries[-1]
                actual_tail = (last.chain_sequence, last.cryptographic_hash)
            elif expected_previous == GENESIS_HASH:
                actual_tail = (0, GENESIS_HASH)
            else:
                actual_tail = None
            if actual_tail != expected_tail:
                # Rows at the end of the chain are missing or were never recorded by the head
                return self._report_violation(
                    organization_id,
                    len(entries),
                    entries[-1].id if entries else None,
                    expected_tail[0],
                    TAIL_MISMATCH,
                )

        chain_verifications.labels(result="valid").inc()
        return VerificationResult(
            organization_id=organization_id,
            is_valid=True,
            total_entries=len(entries),
        )

    def verify_chain(
        self,
        organization_id: str,
        from_entry_id: Optional[str] = None,
        to_entry_id: Optional[str] = None,
    ) -> VerificationResult:
        """Recompute every digest in range and check every chain link.

        Read-only. The first entry whose own digest or whose link to its
        predecessor does not hold is reported. Without an end entry the last
        row must also match the chain head, so truncated tails are caught.
        """
        entries, expected_previous, expected_tail = self._read_for_verification(
            organization_id, from_entry_id, to_entry_id
        )
        result = self._verify_entries(organization_id, entries, expected_previous, expected_tail)
        if result.is_valid:
            logger.info(
                "Ledger chain verified",
                extra={"organization_id": organization_id, "total_entries": result.total_entries},
            )
        return result

    def require_valid_chain(
        self,
        organization_id: str,
        from_entry_id: Optional[str] = None,
        to_entry_id: Optional[str] = None,
    ) -> VerificationResult:
        """Verify and raise IntegrityViolation on the first broken entry."""
        result = self.verify_chain(organization_id, from_entry_id, to_entry_id)
        if not result.is_valid:
            raise IntegrityViolation(
                result.message,
                organization_id=organization_id,
                entry_id=result.first_broken_entry_id,
            )
        return result

    def export_range(
        self,
        organization_id: str,
        from_entry_id: Optional[str] = None,
        to_entry_id: Optional[str] = None,
    ) -> ChainExport:
        """Entries for an auditor, verified from the same read that returns them."""
        entries, expected_previous, expected_tail = self._read_for_verification(
            organization_id, from_entry_id, to_entry_id
        )
        result = self._verify_entries(organization_id, entries, expected_previous, expected_tail)
        if not result.is_valid:
            raise IntegrityViolation(
                f"Refusing to export unverifiable ledger range. {result.message}",
                organization_id=organization_id,
                entry_id=result.first_broken_entry_id,
            )
        logger.info(
            "Ledger range exported",
            extra={"organization_id": organization_id, "total_entries": len(entries)},
        )
        return ChainExport(organization_id=organization_id, entries=entries, verification=result)

    # Period close

    def close_period(self, organization_id: str, accounting_period: str, closed_by: str) -> int:
        """Close an accounting period. Returns the number of entries sealed.

        Idempotent: closing a closed period seals nothing and returns 0.
        """
        if not is_valid_accounting_period(accounting_period):
            raise LedgerValidationError(
                "Accounting period must be YYYY-MM",
                details={"accounting_period": accounting_period},
            )
        if self.db.get(Organization, organization_id) is None:
            raise NotFoundError("Organization", organization_id)

        closed = self.store.set_period_closed(organization_id, accounting_period, closed_by)
        period_closes.inc()
        logger.info(
            "Accounting period closed",
            extra={
                "organization_id": organization_id,
                "accounting_period": accounting_period,
                "entries_closed": closed,
                "closed_by": closed_by,
            },
        )
        return closed

    # Reporting

    def compliance_health(self, organization_id: str) -> ComplianceHealth:
        """Score period-close hygiene.

        Up to 70 points for closing every period but the latest, plus 30 for
        having any activity at all.
        """
        rows = (
            self.db.query(
                LedgerEntry.accounting_period,
                func.count(LedgerEntry.id),
                func.max(LedgerEntry.created_at),
            )
            .filter(LedgerEntry.organization_id == organization_id)
            .group_by(LedgerEntry.accounting_period)
            .all()
        )
        closed_set = set(self.store.closed_periods(organization_id))

        periods = {row[0] for row in rows}
        total_entries = sum(row[1] for row in rows)
        last_entry_at = max((row[2] for row in rows), default=None)
        closed = len(periods & closed_set)

        score = 0.0
        if periods:
            score += min(1.0, closed / max(len(periods) - 1, 1)) * 70
        if total_entries > 0:
            score += 30

        return ComplianceHealth(
            organization_id=organization_id,
            health_score=int(round(score)),
            total_entries=total_entries,
            closed_periods=closed,
            open_periods=len(periods) - closed,
            last_entry_at=last_entry_at,
        )

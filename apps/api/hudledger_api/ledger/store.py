"""SQLAlchemy persistence for the ledger.

Every chain extension goes through ``insert_if_chain_intact``: a
compare-and-swap on the organization's ``LedgerChainHead`` row followed by the
entry insert, committed as one transaction. The head row also serialises
period closes against appends for the same organization.
"""

import logging
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hudledger_api.errors import ConcurrencyError
from hudledger_api.ledger.immutability import PERIOD_CLOSE_OPTION
from hudledger_api.ledger.types import GENESIS_HASH, utcnow
from hudledger_api.models import AccountingPeriodClose, LedgerChainHead, LedgerEntry

logger = logging.getLogger(__name__)


class SqlAlchemyLedgerStore:
    """Chain-aware storage for ledger entries."""

    def __init__(self, db: Session):
        """Initialize store with a session."""
        self.db = db

    def read_tail(self, organization_id: str) -> Optional[LedgerEntry]:
        """Most recent entry of an organization's chain, by chain sequence."""
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.organization_id == organization_id)
            .order_by(LedgerEntry.chain_sequence.desc())
            .first()
        )

    def read_head(self, organization_id: str):
        """Committed ``(last_sequence, tail_hash)`` of a chain, or None before its first write."""
        return self.db.execute(
            select(LedgerChainHead.last_sequence, LedgerChainHead.tail_hash).where(
                LedgerChainHead.organization_id == organization_id
            )
        ).first()

    def read_entry(self, organization_id: str, entry_id: str) -> Optional[LedgerEntry]:
        """Get one entry, scoped to its organization."""
        return (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.organization_id == organization_id,
                LedgerEntry.id == entry_id,
            )
            .first()
        )

    def read_range(
        self,
        organization_id: str,
        from_sequence: Optional[int] = None,
        to_sequence: Optional[int] = None,
    ) -> list[LedgerEntry]:
        """Entries in chain order, bounds inclusive, in a single statement."""
        query = select(LedgerEntry).where(LedgerEntry.organization_id == organization_id)
        if from_sequence is not None:
            query = query.where(LedgerEntry.chain_sequence >= from_sequence)
        if to_sequence is not None:
            query = query.where(LedgerEntry.chain_sequence <= to_sequence)
        query = query.order_by(LedgerEntry.chain_sequence.asc())
        return list(self.db.execute(query).scalars().all())

    def read_period(self, organization_id: str, accounting_period: str) -> list[LedgerEntry]:
        """Entries posted into one accounting period, in chain order."""
        return (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.organization_id == organization_id,
                LedgerEntry.accounting_period == accounting_period,
            )
            .order_by(LedgerEntry.chain_sequence.asc())
            .all()
        )

    def is_period_closed(self, organization_id: str, accounting_period: str) -> bool:
        """Check the authoritative period-close record."""
        return (
            self.db.query(AccountingPeriodClose.id)
            .filter(
                AccountingPeriodClose.organization_id == organization_id,
                AccountingPeriodClose.accounting_period == accounting_period,
            )
            .first()
            is not None
        )

    def closed_periods(self, organization_id: str) -> list[str]:
        """All closed periods of an organization, oldest first."""
        rows = (
            self.db.query(AccountingPeriodClose.accounting_period)
            .filter(AccountingPeriodClose.organization_id == organization_id)
            .order_by(AccountingPeriodClose.accounting_period.asc())
            .all()
        )
        return [row[0] for row in rows]

    def _ensure_head(self, organization_id: str) -> None:
        """Create the sequence-0 head row for a fresh chain."""
        if self.db.get(LedgerChainHead, organization_id) is not None:
            return
        self.db.add(
            LedgerChainHead(
                organization_id=organization_id,
                last_sequence=0,
                tail_hash=GENESIS_HASH,
                updated_at=utcnow(),
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Another writer created it first
            self.db.rollback()

    def insert_if_chain_intact(
        self,
        entry: LedgerEntry,
        on_locked: Optional[Callable[[LedgerEntry], None]] = None,
    ) -> LedgerEntry:
        """Extend the chain with a fully stamped entry, or raise ConcurrencyError.

        ``entry.chain_sequence`` and ``entry.previous_hash`` must describe the
        tail the caller read. ``on_locked`` runs once the head row is held and
        before the insert; anything it raises aborts the transaction.
        """
        organization_id = entry.organization_id
        expected_sequence = entry.chain_sequence - 1
        self._ensure_head(organization_id)

        try:
            result = self.db.execute(
                update(LedgerChainHead)
                .where(
                    LedgerChainHead.organization_id == organization_id,
                    LedgerChainHead.last_sequence == expected_sequence,
                    LedgerChainHead.tail_hash == entry.previous_hash,
                )
                .values(
                    last_sequence=entry.chain_sequence,
                    tail_hash=entry.cryptographic_hash,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyError(organization_id, expected_sequence)

            if on_locked is not None:
                on_locked(entry)

            self.db.add(entry)
            self.db.flush()
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(
                "Ledger insert hit a chain constraint",
                extra={"organization_id": organization_id, "sequence": entry.chain_sequence},
            )
            raise ConcurrencyError(organization_id, expected_sequence) from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(entry)
        return entry

    def set_period_closed(self, organization_id: str, accounting_period: str, closed_by: str) -> int:
        """Close a period and flip its committed entries. Returns rows flipped.

        Closing an already closed period flips nothing and returns 0.
        """
        self._ensure_head(organization_id)
        try:
            # Hold the head row so in-flight appends for this chain finish first
            self.db.execute(
                update(LedgerChainHead)
                .where(LedgerChainHead.organization_id == organization_id)
                .values(updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

            if self.is_period_closed(organization_id, accounting_period):
                self.db.rollback()
                return 0

            period_close = AccountingPeriodClose(
                organization_id=organization_id,
                accounting_period=accounting_period,
                closed_by=closed_by,
                closed_at=utcnow(),
            )
            self.db.add(period_close)

            result = self.db.execute(
                update(LedgerEntry)
                .where(
                    LedgerEntry.organization_id == organization_id,
                    LedgerEntry.accounting_period == accounting_period,
                    LedgerEntry.is_period_closed == False,  # noqa: E712
                )
                .values(is_period_closed=True)
                .execution_options(synchronize_session=False, **{PERIOD_CLOSE_OPTION: True})
            )
            period_close.entries_closed = result.rowcount
            self.db.commit()
        except IntegrityError:
            # Closed concurrently by another caller
            self.db.rollback()
            return 0
        except Exception:
            self.db.rollback()
            raise

        return period_close.entries_closed

"""Two-writer append races against a real PostgreSQL chain head."""

import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from hudledger_api.db.session import SessionLocal
from hudledger_api.errors import ConcurrencyError
from hudledger_api.ledger.service import LedgerService
from hudledger_api.ledger.store import SqlAlchemyLedgerStore
from hudledger_api.models import LedgerEntry

# Row locks on the chain head only exist on a server database
pytestmark = pytest.mark.skipif(
    not os.getenv("TEST_DATABASE_URL", "").startswith("postgresql"),
    reason="Concurrent append tests require TEST_DATABASE_URL pointing at PostgreSQL",
)


class _RendezvousStore(SqlAlchemyLedgerStore):
    """Holds its first tail read until the other writer has read the same tail."""

    def __init__(self, db, barrier: threading.Barrier):
        super().__init__(db)
        self.barrier = barrier
        self.waited = False

    def read_tail(self, organization_id):
        tail = super().read_tail(organization_id)
        if not self.waited:
            self.waited = True
            self.barrier.wait(timeout=10)
        return tail


def _race(make_draft, organization_id: str, retry: bool) -> list:
    barrier = threading.Barrier(2)

    def append(description):
        session = SessionLocal()
        try:
            service = LedgerService(session, store=_RendezvousStore(session, barrier))
            draft = make_draft(organization_id=organization_id, description=description)
            entry = service.append_with_retry(draft, max_attempts=5) if retry else service.append(draft)
            return entry.previous_hash
        except ConcurrencyError:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [executor.submit(append, f"Writer {i}") for i in range(2)]
        return [future.result() for future in futures]


def test_concurrent_appends_one_wins(db, organization, make_draft):
    """Test that two writers on the same tail never both extend it."""
    service = LedgerService(db)
    tail = service.append(make_draft(description="Tail"))

    results = _race(make_draft, organization.id, retry=False)

    assert sorted(results) == sorted([tail.cryptographic_hash, "conflict"])
    db.expire_all()
    assert db.query(LedgerEntry).filter(LedgerEntry.previous_hash == tail.cryptographic_hash).count() == 1
    assert service.verify_chain(organization.id).is_valid


def test_concurrent_appends_retry_onto_winner(db, organization, make_draft):
    """Test that the losing writer retries and links to the winning entry."""
    service = LedgerService(db)
    tail = service.append(make_draft(description="Tail"))

    results = _race(make_draft, organization.id, retry=True)

    assert "conflict" not in results
    assert len(set(results)) == 2
    assert tail.cryptographic_hash in results
    db.expire_all()
    entries = service.read_range(organization.id)
    assert [entry.chain_sequence for entry in entries] == [1, 2, 3]
    assert entries[2].previous_hash == entries[1].cryptographic_hash
    assert service.verify_chain(organization.id).is_valid

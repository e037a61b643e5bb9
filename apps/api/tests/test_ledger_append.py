"""Tests for ledger append validation, concurrency and period close."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from hudledger_api.errors import ConcurrencyError, LedgerValidationError, PeriodClosedError
from hudledger_api.ledger.service import LedgerService
from hudledger_api.models import AccountingPeriodClose, LedgerChainHead, LedgerEntry


@pytest.mark.parametrize(
    "overrides",
    [
        {"transaction_type": "REFUND"},
        {"amount": 12.5},
        {"amount": "12.50"},
        {"amount": Decimal("NaN")},
        {"amount": Decimal("Infinity")},
        {"amount": Decimal("1.005")},
        {"amount": Decimal("1000000000000.00")},
        {"accounting_period": "2026-13"},
        {"accounting_period": "2026-1"},
        {"accounting_period": ""},
        {"description": ""},
        {"description": "x" * 501},
        {"property_id": ""},
        {"organization_id": "no-such-org"},
    ],
)
def test_invalid_drafts_are_rejected(db, organization, make_draft, overrides):
    """Test that malformed input is a validation error and writes nothing."""
    with pytest.raises(LedgerValidationError):
        LedgerService(db).append(make_draft(**overrides))

    assert db.query(LedgerEntry).count() == 0


def test_integer_and_zero_amounts_are_accepted(db, organization, make_draft):
    """Test that exact amounts other than two-place decimals are normalised."""
    service = LedgerService(db)
    whole = service.append(make_draft(amount=100))
    zero = service.append(make_draft(transaction_type="RECERTIFICATION_LOG", amount=Decimal("0")))

    assert whole.amount == Decimal("100.00")
    assert zero.amount == Decimal("0.00")


def test_adjustment_must_reference_entry_of_same_organization(
    db, organization, other_organization, make_draft
):
    """Test that adjusts_entry_id is checked against the organization's chain."""
    service = LedgerService(db)
    foreign = service.append(make_draft(organization_id=other_organization.id))

    with pytest.raises(LedgerValidationError):
        service.append(make_draft(transaction_type="ADJUSTMENT", adjusts_entry_id=foreign.id))

    original = service.append(make_draft())
    adjustment = service.append(
        make_draft(transaction_type="ADJUSTMENT", amount=Decimal("-50.00"), adjusts_entry_id=original.id)
    )
    assert adjustment.adjusts_entry_id == original.id


def test_only_adjustments_reference_entries(db, organization, make_draft):
    """Test that a charge cannot claim to adjust another entry."""
    service = LedgerService(db)
    original = service.append(make_draft())

    with pytest.raises(LedgerValidationError):
        service.append(make_draft(adjusts_entry_id=original.id))


def test_stale_tail_loses_race(db, organization, make_draft):
    """Test that two appends reading the same tail cannot both succeed."""
    service = LedgerService(db)
    tail = service.append(make_draft(description="Tail"))
    winner = service.append(make_draft(description="Winner"))

    with patch.object(service.store, "read_tail", return_value=tail):
        with pytest.raises(ConcurrencyError) as exc_info:
            service.append(make_draft(description="Loser"))

    assert exc_info.value.expected_sequence == tail.chain_sequence
    assert db.query(LedgerEntry).filter(LedgerEntry.previous_hash == tail.cryptographic_hash).count() == 1
    assert db.query(LedgerEntry).filter(LedgerEntry.previous_hash == winner.cryptographic_hash).count() == 0
    assert service.verify_chain(organization.id).is_valid


def test_loser_retries_onto_winner(db, organization, make_draft):
    """Test that the losing append retries and links to the winning entry."""
    service = LedgerService(db)
    tail = service.append(make_draft(description="Tail"))
    winner = service.append(make_draft(description="Winner"))
    real_read_tail = service.store.read_tail

    with patch.object(service.store, "read_tail", side_effect=[tail, real_read_tail(organization.id)]):
        entry = service.append_with_retry(make_draft(description="Loser"), max_attempts=3)

    assert entry.previous_hash == winner.cryptographic_hash
    assert entry.previous_hash != tail.cryptographic_hash
    assert entry.chain_sequence == winner.chain_sequence + 1
    assert service.verify_chain(organization.id).is_valid


def test_retry_budget_is_bounded(db, organization, make_draft):
    """Test that retries stop after max_attempts and surface the conflict."""
    service = LedgerService(db)
    stale = service.append(make_draft(description="Stale"))
    service.append(make_draft(description="Moved on"))

    with patch.object(service.store, "read_tail", return_value=stale) as read_tail:
        with pytest.raises(ConcurrencyError):
            service.append_with_retry(make_draft(), max_attempts=3)

    assert read_tail.call_count == 3


def test_retry_does_not_retry_validation_errors(db, organization, make_draft):
    """Test that only concurrency conflicts are retried."""
    service = LedgerService(db)

    with patch.object(service, "append", side_effect=LedgerValidationError("bad")) as append:
        with pytest.raises(LedgerValidationError):
            service.append_with_retry(make_draft(), max_attempts=5)

    assert append.call_count == 1


def test_chain_head_tracks_tail(db, organization, make_draft):
    """Test that the head row follows the last appended entry."""
    service = LedgerService(db)
    last = service.append(make_draft())
    last = service.append(make_draft())

    head = db.get(LedgerChainHead, organization.id)
    db.refresh(head)
    assert head.last_sequence == last.chain_sequence
    assert head.tail_hash == last.cryptographic_hash


def test_close_period_rejects_charges(db, organization, make_draft):
    """Test that a closed period only accepts adjustments."""
    service = LedgerService(db)
    service.append(make_draft(accounting_period="2026-01"))
    service.append(make_draft(accounting_period="2026-01", transaction_type="PAYMENT"))
    service.append(make_draft(accounting_period="2026-02"))

    closed = service.close_period(organization.id, "2026-01", "manager-1")
    assert closed == 2

    with pytest.raises(PeriodClosedError) as exc_info:
        service.append(make_draft(accounting_period="2026-01", transaction_type="CHARGE"))
    assert exc_info.value.status_code == 409

    adjustment = service.append(
        make_draft(accounting_period="2026-01", transaction_type="ADJUSTMENT", amount=Decimal("-25.00"))
    )
    assert adjustment.is_period_closed is True

    # Other periods stay open
    assert service.append(make_draft(accounting_period="2026-02")).is_period_closed is False
    assert service.verify_chain(organization.id).is_valid


def test_close_period_flags_existing_entries(db, organization, make_draft):
    """Test that closing flips exactly the committed entries of the period."""
    service = LedgerService(db)
    service.append(make_draft(accounting_period="2026-01"))
    service.append(make_draft(accounting_period="2026-02"))

    service.close_period(organization.id, "2026-01", "manager-1")
    db.expire_all()

    flags = {
        entry.accounting_period: entry.is_period_closed
        for entry in db.query(LedgerEntry).filter(LedgerEntry.organization_id == organization.id)
    }
    assert flags == {"2026-01": True, "2026-02": False}
    record = db.query(AccountingPeriodClose).one()
    assert record.closed_by == "manager-1"
    assert record.entries_closed == 1


def test_close_period_is_idempotent(db, organization, make_draft):
    """Test that closing twice seals nothing the second time."""
    service = LedgerService(db)
    service.append(make_draft(accounting_period="2026-01"))

    assert service.close_period(organization.id, "2026-01", "manager-1") == 1
    assert service.close_period(organization.id, "2026-01", "manager-1") == 0
    assert db.query(AccountingPeriodClose).count() == 1


def test_close_period_without_entries(db, organization, make_draft):
    """Test that an empty period can be closed ahead of time."""
    service = LedgerService(db)

    assert service.close_period(organization.id, "2026-03", "manager-1") == 0
    with pytest.raises(PeriodClosedError):
        service.append(make_draft(accounting_period="2026-03"))


def test_close_period_validates_period(db, organization):
    """Test that period tokens are validated on close."""
    with pytest.raises(LedgerValidationError):
        LedgerService(db).close_period(organization.id, "January", "manager-1")


def test_entries_for_period(db, organization, make_draft):
    """Test period reads return only that period in chain order."""
    service = LedgerService(db)
    first = service.append(make_draft(accounting_period="2026-01"))
    service.append(make_draft(accounting_period="2026-02"))
    second = service.append(make_draft(accounting_period="2026-01"))

    entries = service.entries_for_period(organization.id, "2026-01")

    assert [entry.id for entry in entries] == [first.id, second.id]


def test_compliance_health_scores_closed_periods(db, organization, make_draft):
    """Test the period-close hygiene score."""
    service = LedgerService(db)
    assert service.compliance_health(organization.id).health_score == 0

    for period in ("2026-01", "2026-02", "2026-03"):
        service.append(make_draft(accounting_period=period))

    health = service.compliance_health(organization.id)
    assert health.health_score == 30
    assert health.open_periods == 3

    service.close_period(organization.id, "2026-01", "manager-1")
    assert service.compliance_health(organization.id).health_score == 65

    service.close_period(organization.id, "2026-02", "manager-1")
    health = service.compliance_health(organization.id)
    assert health.health_score == 100
    assert health.closed_periods == 2
    assert health.open_periods == 1
    assert health.total_entries == 3
    assert health.last_entry_at is not None


def test_compliance_health_single_closed_period(db, organization, make_draft):
    """Test that an organization with one closed period scores full marks."""
    service = LedgerService(db)
    service.append(make_draft(accounting_period="2026-01"))
    assert service.compliance_health(organization.id).health_score == 30

    service.close_period(organization.id, "2026-01", "manager-1")

    health = service.compliance_health(organization.id)
    assert health.health_score == 100
    assert health.closed_periods == 1
    assert health.open_periods == 0

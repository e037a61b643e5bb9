"""Tests for the command line interface."""

from unittest.mock import patch

from click.testing import CliRunner

from hudledger_api.auth.session import decode_session_token
from hudledger_api.cli import cli
from hudledger_api.db.session import SessionLocal
from hudledger_api.ledger.service import LedgerService
from hudledger_api.models import Organization


def test_issue_token():
    """Test that issued tokens decode to the requested user."""
    result = CliRunner().invoke(cli, ["issue-token", "user-9", "--email", "u9@example.com"])

    assert result.exit_code == 0
    principal = decode_session_token(result.output.strip())
    assert principal.user_id == "user-9"
    assert principal.email == "u9@example.com"


def test_verify_chain_exit_codes(db, organization, make_draft):
    """Test that a broken chain exits non-zero."""
    LedgerService(db).append(make_draft())

    result = CliRunner().invoke(cli, ["verify-chain", organization.id])
    assert result.exit_code == 0
    assert "1 entries validated" in result.output

    with patch("hudledger_api.cli.LedgerService.verify_chain") as verify_chain:
        verify_chain.return_value.is_valid = False
        verify_chain.return_value.message = "Ledger integrity compromised."
        verify_chain.return_value.first_broken_sequence = 1
        result = CliRunner().invoke(cli, ["verify-chain", organization.id])
    assert result.exit_code == 1


def test_close_period(db, organization, make_draft):
    """Test closing a period from the command line."""
    LedgerService(db).append(make_draft(accounting_period="2026-01"))

    result = CliRunner().invoke(cli, ["close-period", organization.id, "2026-01", "--closed-by", "ops"])

    assert result.exit_code == 0
    assert "1 entries sealed" in result.output


def test_close_period_rejects_bad_period(db, organization):
    """Test that validation errors become CLI errors."""
    result = CliRunner().invoke(cli, ["close-period", organization.id, "2026-13"])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_seed(db):
    """Test that seeding creates a verifiable demo ledger."""
    result = CliRunner().invoke(cli, ["seed"])

    assert result.exit_code == 0
    session = SessionLocal()
    try:
        organization = session.query(Organization).filter(Organization.slug == "sunrise-housing").one()
        assert LedgerService(session).verify_chain(organization.id).total_entries == 2
    finally:
        session.close()

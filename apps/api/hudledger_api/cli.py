"""CLI commands for HUD Ledger API."""

import sys
from datetime import timedelta

import click

from hudledger_api.auth.session import create_session_token
from hudledger_api.db.seed import seed_all
from hudledger_api.db.session import SessionLocal
from hudledger_api.errors import AppException
from hudledger_api.ledger.service import LedgerService


@click.group()
def cli():
    """HUD Ledger API CLI."""
    pass


@cli.command()
def seed():
    """Seed demo data."""
    click.echo("Seeding demo data...")
    db = SessionLocal()
    try:
        organization = seed_all(db)
        click.echo(f"✓ Seed data created for organization {organization.id}.")
    except AppException as e:
        db.rollback()
        raise click.ClickException(f"Error seeding data: {e.message}")
    finally:
        db.close()


@cli.command("verify-chain")
@click.argument("organization_id")
def verify_chain(organization_id):
    """Verify an organization's ledger chain. Exits 1 if it is broken."""
    db = SessionLocal()
    try:
        result = LedgerService(db).verify_chain(organization_id)
    finally:
        db.close()

    if result.is_valid:
        click.echo(f"✓ {result.message}")
        return
    click.echo(
        f"✗ {result.message} Sequence {result.first_broken_sequence}.",
        err=True,
    )
    sys.exit(1)


@cli.command("close-period")
@click.argument("organization_id")
@click.argument("accounting_period")
@click.option("--closed-by", default="cli", show_default=True, help="Actor recorded on the close.")
def close_period(organization_id, accounting_period, closed_by):
    """Close an accounting period (YYYY-MM)."""
    db = SessionLocal()
    try:
        closed = LedgerService(db).close_period(organization_id, accounting_period, closed_by)
    except AppException as e:
        raise click.ClickException(e.message)
    finally:
        db.close()
    click.echo(f"✓ Period {accounting_period} closed; {closed} entries sealed.")


@cli.command("issue-token")
@click.argument("user_id")
@click.option("--email", default=None, help="Email claim.")
@click.option("--hours", default=None, type=int, help="Lifetime in hours.")
def issue_token(user_id, email, hours):
    """Print a signed session token for a user."""
    expires_in = timedelta(hours=hours) if hours else None
    click.echo(create_session_token(user_id, email=email, expires_in=expires_in))


if __name__ == "__main__":
    cli()

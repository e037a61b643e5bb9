"""Pytest configuration and fixtures."""

import os

# Settings and the engine are built at import time; point them at the test database first
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENVIRONMENT"] = "test"
os.environ["SNAPSHOT_CACHE_TTL_SECONDS"] = "0"
os.environ["LEDGER_APPEND_BASE_DELAY_SECONDS"] = "0"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from hudledger_api.access.types import Role, SubscriptionStatus  # noqa: E402
from hudledger_api.auth.session import create_session_token  # noqa: E402
from hudledger_api.db.base import Base  # noqa: E402
from hudledger_api.db.session import SessionLocal, engine  # noqa: E402
from hudledger_api.ledger.types import EntryDraft  # noqa: E402
from hudledger_api.models import Organization, OrganizationMember, Subscription  # noqa: E402


@pytest.fixture(scope="function")
def db():
    """
    Create a test database session.

    For integration tests, use TEST_DATABASE_URL environment variable
    to point to a real PostgreSQL instance.
    """
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def organization(db: Session) -> Organization:
    """Create a test organization with an active subscription."""
    organization = Organization(name="Test Housing", slug="test-housing")
    db.add(organization)
    db.flush()
    db.add(Subscription(organization_id=organization.id, status=SubscriptionStatus.ACTIVE.value))
    db.commit()
    return organization


@pytest.fixture
def other_organization(db: Session) -> Organization:
    """A second organization with its own chain."""
    organization = Organization(name="Other Housing", slug="other-housing")
    db.add(organization)
    db.flush()
    db.add(Subscription(organization_id=organization.id, status=SubscriptionStatus.ACTIVE.value))
    db.commit()
    return organization


@pytest.fixture
def manager(db: Session, organization: Organization) -> OrganizationMember:
    """Property manager of the test organization."""
    member = OrganizationMember(
        organization_id=organization.id,
        user_id="manager-1",
        email="manager@example.com",
        role=Role.PROPERTY_MANAGER.value,
        eula_accepted=True,
    )
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def manager_headers(manager: OrganizationMember) -> dict:
    """Bearer session for the property manager."""
    return {"Authorization": f"Bearer {create_session_token(manager.user_id)}"}


@pytest.fixture
def make_draft(organization: Organization):
    """Build entry drafts for the test organization."""

    def _make_draft(**overrides) -> EntryDraft:
        fields = {
            "organization_id": organization.id,
            "property_id": "prop-1",
            "unit_id": "unit-1",
            "tenant_id": "tenant-1",
            "transaction_type": "CHARGE",
            "amount": Decimal("1250.00"),
            "description": "Monthly rent",
            "accounting_period": "2026-01",
            "created_by": "manager-1",
        }
        fields.update(overrides)
        return EntryDraft(**fields)

    return _make_draft

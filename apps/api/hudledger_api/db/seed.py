"""Seed data for development and testing."""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from hudledger_api.access.types import RecertificationStatus, Role, SubscriptionStatus
from hudledger_api.ledger.service import LedgerService
from hudledger_api.ledger.types import EntryDraft, TransactionType, current_accounting_period, utcnow
from hudledger_api.models import (
    LedgerEntry,
    Organization,
    OrganizationMember,
    Subscription,
    TenantProfile,
)

DEMO_SLUG = "sunrise-housing"
DEMO_PROPERTY_ID = "prop-sunrise-001"
DEMO_UNIT_ID = "unit-101"
DEMO_TENANT_USER_ID = "demo-tenant"


def seed_organization(db: Session) -> Organization:
    """Seed the demo organization and its subscription."""
    organization = db.query(Organization).filter(Organization.slug == DEMO_SLUG).first()
    if not organization:
        organization = Organization(
            name="Sunrise Housing Partners",
            slug=DEMO_SLUG,
            hud_certification_number="HUD-DEMO-0001",
        )
        db.add(organization)
        db.flush()

        db.add(
            Subscription(
                organization_id=organization.id,
                tier="PROFESSIONAL",
                status=SubscriptionStatus.ACTIVE.value,
                current_period_end=utcnow() + timedelta(days=30),
            )
        )
        db.commit()
        db.refresh(organization)
    return organization


def seed_members(db: Session, organization: Organization):
    """Seed one member per main role."""
    members = [
        ("demo-super-admin", "admin@hudledger.local", Role.SUPER_ADMIN, None, True),
        ("demo-manager", "manager@hudledger.local", Role.PROPERTY_MANAGER, organization.id, True),
        (DEMO_TENANT_USER_ID, "tenant@hudledger.local", Role.TENANT, organization.id, True),
    ]
    for user_id, email, role, organization_id, eula_accepted in members:
        if db.query(OrganizationMember).filter(OrganizationMember.user_id == user_id).first():
            continue
        db.add(
            OrganizationMember(
                organization_id=organization_id,
                user_id=user_id,
                email=email,
                role=role.value,
                eula_accepted=eula_accepted,
                eula_accepted_at=utcnow() if eula_accepted else None,
            )
        )

    profile = (
        db.query(TenantProfile)
        .filter(
            TenantProfile.organization_id == organization.id,
            TenantProfile.user_id == DEMO_TENANT_USER_ID,
        )
        .first()
    )
    if not profile:
        db.add(
            TenantProfile(
                organization_id=organization.id,
                user_id=DEMO_TENANT_USER_ID,
                unit_id=DEMO_UNIT_ID,
                recertification_status=RecertificationStatus.CURRENT.value,
                next_recertification_due=(utcnow() + timedelta(days=200)).date(),
            )
        )
    db.commit()


def seed_ledger(db: Session, organization: Organization):
    """Seed a rent charge and its payment on an empty chain."""
    if db.query(LedgerEntry).filter(LedgerEntry.organization_id == organization.id).first():
        return

    service = LedgerService(db)
    period = current_accounting_period()
    for transaction_type, amount, description in [
        (TransactionType.CHARGE, Decimal("1250.00"), "Monthly rent"),
        (TransactionType.PAYMENT, Decimal("-1250.00"), "Rent payment received"),
    ]:
        service.append(
            EntryDraft(
                organization_id=organization.id,
                property_id=DEMO_PROPERTY_ID,
                unit_id=DEMO_UNIT_ID,
                tenant_id=DEMO_TENANT_USER_ID,
                transaction_type=transaction_type.value,
                amount=amount,
                description=description,
                accounting_period=period,
                created_by="seed",
            )
        )


def seed_all(db: Session) -> Organization:
    """Seed all demo data."""
    organization = seed_organization(db)
    seed_members(db, organization)
    seed_ledger(db, organization)
    return organization

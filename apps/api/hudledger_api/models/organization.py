"""Organization, membership and subscription models."""

import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from hudledger_api.db.base import Base
from hudledger_api.ledger.types import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    """Property-management company; the unit of multi-tenancy."""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    hud_certification_number = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    members = relationship("OrganizationMember", back_populates="organization", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="organization", cascade="all, delete-orphan")


class OrganizationMember(Base):
    """A user's role within an organization."""

    __tablename__ = "organization_members"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    user_id = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False)  # SUPER_ADMIN, PROPERTY_MANAGER, TENANT, ...
    eula_accepted = Column(Boolean, default=False, nullable=False)
    eula_accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    organization = relationship("Organization", back_populates="members")


class Subscription(Base):
    """Billing state of an organization, written by the billing provider sync."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    tier = Column(String(50), default="STARTER", nullable=False)
    status = Column(String(50), nullable=False)  # TRIALING, ACTIVE, PAST_DUE, CANCELLED, INCOMPLETE
    current_period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    organization = relationship("Organization", back_populates="subscriptions")


class TenantProfile(Base):
    """Compliance state of a resident (HUD annual income recertification)."""

    __tablename__ = "tenant_profiles"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    unit_id = Column(String(36), nullable=True)
    recertification_status = Column(String(20), default="CURRENT", nullable=False)
    next_recertification_due = Column(Date, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_tenant_profile_org_user"),
    )

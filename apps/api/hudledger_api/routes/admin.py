"""Admin routes for organizations, memberships and billing state."""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hudledger_api.access.types import Principal, RecertificationStatus, Role, SubscriptionStatus
from hudledger_api.auth.context import get_principal
from hudledger_api.db.session import get_db
from hudledger_api.errors import NotFoundError
from hudledger_api.identity.resolver import SnapshotResolver
from hudledger_api.ledger.types import utcnow
from hudledger_api.models import Organization, OrganizationMember, Subscription, TenantProfile
from hudledger_api.services.audit import AuditAction, log_event

router = APIRouter(prefix="/admin", tags=["admin"])


class OrganizationCreate(BaseModel):
    """Organization creation request."""

    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=255, pattern=r"^[a-z0-9][a-z0-9-]*$")
    hud_certification_number: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING
    tier: str = "STARTER"


class OrganizationResponse(BaseModel):
    """Organization response."""

    id: str
    name: str
    slug: str
    hud_certification_number: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class MemberCreate(BaseModel):
    """Membership creation request."""

    user_id: str = Field(min_length=1, max_length=255)
    email: Optional[str] = None
    role: Role
    eula_accepted: bool = False


class MemberResponse(BaseModel):
    id: int
    organization_id: Optional[str]
    user_id: str
    email: Optional[str]
    role: str
    eula_accepted: bool

    class Config:
        from_attributes = True


class SubscriptionUpdate(BaseModel):
    status: SubscriptionStatus
    tier: Optional[str] = None
    current_period_end: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    organization_id: str
    status: str
    tier: str
    current_period_end: Optional[datetime]

    class Config:
        from_attributes = True


class TenantProfileUpdate(BaseModel):
    unit_id: Optional[str] = None
    next_recertification_due: Optional[date] = None
    recertification_status: Optional[RecertificationStatus] = None
    eula_accepted: Optional[bool] = None


class TenantProfileResponse(BaseModel):
    organization_id: str
    user_id: str
    unit_id: Optional[str]
    recertification_status: str
    next_recertification_due: Optional[date]

    class Config:
        from_attributes = True


def _get_organization(db: Session, organization_id: str) -> Organization:
    organization = db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization", organization_id)
    return organization


@router.post("/organizations", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    organization_data: OrganizationCreate,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Create an organization with its initial subscription."""
    existing = db.query(Organization).filter(Organization.slug == organization_data.slug).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Organization with slug '{organization_data.slug}' already exists",
        )

    organization = Organization(
        name=organization_data.name,
        slug=organization_data.slug,
        hud_certification_number=organization_data.hud_certification_number,
    )
    db.add(organization)
    db.flush()

    db.add(
        Subscription(
            organization_id=organization.id,
            tier=organization_data.tier,
            status=organization_data.subscription_status.value,
        )
    )
    db.commit()
    db.refresh(organization)

    log_event(
        db,
        AuditAction.ORGANIZATION_CREATED,
        actor_id=principal.user_id,
        organization_id=organization.id,
        resource_type="organization",
        resource_id=organization.id,
        metadata={"slug": organization.slug},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return organization


@router.post(
    "/organizations/{organization_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    organization_id: str,
    member_data: MemberCreate,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Add a user to an organization with a role."""
    _get_organization(db, organization_id)

    existing = db.query(OrganizationMember).filter(OrganizationMember.user_id == member_data.user_id).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User '{member_data.user_id}' already belongs to an organization",
        )

    member = OrganizationMember(
        organization_id=organization_id,
        user_id=member_data.user_id,
        email=member_data.email,
        role=member_data.role.value,
        eula_accepted=member_data.eula_accepted,
        eula_accepted_at=utcnow() if member_data.eula_accepted else None,
    )
    db.add(member)
    db.commit()
    db.refresh(member)

    log_event(
        db,
        AuditAction.MEMBER_ADDED,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="organization_member",
        resource_id=member.user_id,
        metadata={"role": member.role},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return member


@router.put("/organizations/{organization_id}/subscription", response_model=SubscriptionResponse)
async def update_subscription(
    organization_id: str,
    subscription_data: SubscriptionUpdate,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Record the organization's current billing state."""
    _get_organization(db, organization_id)

    subscription = (
        db.query(Subscription)
        .filter(Subscription.organization_id == organization_id)
        .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
        .first()
    )
    if subscription is None:
        subscription = Subscription(organization_id=organization_id)
        db.add(subscription)

    previous_status = subscription.status
    subscription.status = subscription_data.status.value
    if subscription_data.tier is not None:
        subscription.tier = subscription_data.tier
    if subscription_data.current_period_end is not None:
        subscription.current_period_end = subscription_data.current_period_end
    db.commit()
    db.refresh(subscription)

    SnapshotResolver(db).invalidate(organization_id=organization_id)
    log_event(
        db,
        AuditAction.SUBSCRIPTION_UPDATED,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="subscription",
        resource_id=str(subscription.id),
        metadata={"from": previous_status, "to": subscription.status},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return subscription


@router.put("/members/{user_id}/tenant-profile", response_model=TenantProfileResponse)
async def update_tenant_profile(
    user_id: str,
    profile_data: TenantProfileUpdate,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Update a tenant's EULA and recertification state."""
    member = db.query(OrganizationMember).filter(OrganizationMember.user_id == user_id).first()
    if member is None or member.organization_id is None:
        raise NotFoundError("Organization member", user_id)
    if member.role != Role.TENANT.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"User '{user_id}' is not a tenant",
        )

    profile = (
        db.query(TenantProfile)
        .filter(
            TenantProfile.organization_id == member.organization_id,
            TenantProfile.user_id == user_id,
        )
        .first()
    )
    if profile is None:
        profile = TenantProfile(organization_id=member.organization_id, user_id=user_id)
        db.add(profile)

    if profile_data.unit_id is not None:
        profile.unit_id = profile_data.unit_id
    if profile_data.next_recertification_due is not None:
        profile.next_recertification_due = profile_data.next_recertification_due
    if profile_data.recertification_status is not None:
        profile.recertification_status = profile_data.recertification_status.value
    if profile_data.eula_accepted is not None:
        member.eula_accepted = profile_data.eula_accepted
        member.eula_accepted_at = utcnow() if profile_data.eula_accepted else None
    db.commit()
    db.refresh(profile)

    SnapshotResolver(db).invalidate(user_id=user_id)
    log_event(
        db,
        AuditAction.TENANT_PROFILE_UPDATED,
        actor_id=principal.user_id,
        organization_id=member.organization_id,
        resource_type="tenant_profile",
        resource_id=user_id,
        metadata=profile_data.model_dump(mode="json", exclude_none=True),
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return profile

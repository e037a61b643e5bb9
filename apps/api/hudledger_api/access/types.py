"""Access gate value types."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Organization member roles."""

    SUPER_ADMIN = "SUPER_ADMIN"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    TENANT = "TENANT"
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class SubscriptionStatus(str, Enum):
    """Billing state of an organization."""

    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    INCOMPLETE = "INCOMPLETE"


class RecertificationStatus(str, Enum):
    """Where a tenant stands against their annual income recertification."""

    CURRENT = "CURRENT"
    DUE_90 = "DUE_90"
    DUE_60 = "DUE_60"
    DUE_30 = "DUE_30"
    OVERDUE = "OVERDUE"


class AccessOutcome(str, Enum):
    ALLOW = "ALLOW"
    DENY_REDIRECT = "DENY_REDIRECT"


class DenialReason(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NO_ORGANIZATION = "NO_ORGANIZATION"
    SUBSCRIPTION_PAST_DUE = "SUBSCRIPTION_PAST_DUE"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    ROLE_FORBIDDEN = "ROLE_FORBIDDEN"
    EULA_NOT_ACCEPTED = "EULA_NOT_ACCEPTED"
    RECERTIFICATION_OVERDUE = "RECERTIFICATION_OVERDUE"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as resolved from the session."""

    user_id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    status: SubscriptionStatus
    tier: Optional[str] = None
    current_period_end: Optional[datetime] = None


@dataclass(frozen=True)
class RoleSnapshot:
    """A user's membership facts. ``organization_id`` is None without membership."""

    user_id: str
    role: Role
    organization_id: Optional[str] = None
    eula_accepted: bool = False
    recertification_status: RecertificationStatus = RecertificationStatus.CURRENT


@dataclass(frozen=True)
class AccessDecision:
    """Result of gating one request."""

    outcome: AccessOutcome
    redirect_target: Optional[str] = None
    reason: Optional[DenialReason] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == AccessOutcome.ALLOW

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(outcome=AccessOutcome.ALLOW)

    @classmethod
    def deny(cls, redirect_target: str, reason: DenialReason) -> "AccessDecision":
        return cls(
            outcome=AccessOutcome.DENY_REDIRECT,
            redirect_target=redirect_target,
            reason=reason,
        )


def recertification_status_for(due_date: Optional[date], today: date) -> RecertificationStatus:
    """Derive recertification status from the next due date."""
    if due_date is None:
        return RecertificationStatus.CURRENT
    days_left = (due_date - today).days
    if days_left < 0:
        return RecertificationStatus.OVERDUE
    if days_left <= 30:
        return RecertificationStatus.DUE_30
    if days_left <= 60:
        return RecertificationStatus.DUE_60
    if days_left <= 90:
        return RecertificationStatus.DUE_90
    return RecertificationStatus.CURRENT

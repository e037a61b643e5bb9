"""Access gate decision procedure.

``decide`` is a pure function of its inputs. Checks run in a fixed order and
the first failing one wins:

  public path           -> ALLOW
  no identity           -> /login              UNAUTHENTICATED
  unclassified path     -> ALLOW
  no organization       -> /onboarding         NO_ORGANIZATION
  subscription past due -> /billing            SUBSCRIPTION_PAST_DUE
  cancelled/incomplete  -> /                   SUBSCRIPTION_CANCELLED
  role not allowed      -> role home path      ROLE_FORBIDDEN
  tenant without EULA   -> /tenant-eula        EULA_NOT_ACCEPTED
  tenant overdue        -> documents upload    RECERTIFICATION_OVERDUE

A tenant already on a remediation page is not bounced to a later one, so the
tenant flows cannot redirect in a loop.
"""

from enum import Enum
from typing import Optional

from hudledger_api.access.routes import (
    BILLING_PATH,
    DOCUMENTS_PATH,
    EULA_PATH,
    HOME_PATH,
    LOGIN_PATH,
    ONBOARDING_PATH,
    ROUTE_TABLE,
    classify,
    home_path_for,
    is_public,
    normalize_path,
    path_matches,
)
from hudledger_api.access.types import (
    AccessDecision,
    DenialReason,
    Principal,
    RecertificationStatus,
    Role,
    RoleSnapshot,
    SubscriptionSnapshot,
    SubscriptionStatus,
)
from hudledger_api.errors import MalformedAccessInput

_CANCELLED_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.INCOMPLETE)


def _coerce(enum_cls: type[Enum], value, field_name: str):
    """Accept an enum member or its exact value; anything else is a contract violation."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise MalformedAccessInput(f"Unknown {field_name}: {value!r}") from None


def _on_any(path: str, *prefixes: str) -> bool:
    return any(path_matches(path, prefix) for prefix in prefixes)


def decide(
    identity: Optional[Principal],
    subscription: Optional[SubscriptionSnapshot],
    role_snapshot: Optional[RoleSnapshot],
    requested_path: str,
    route_table=ROUTE_TABLE,
) -> AccessDecision:
    """Decide whether a request may reach ``requested_path``.

    Denials are returned, never raised. MalformedAccessInput is raised only
    for inputs that break the calling contract (unknown enum values, a role
    snapshot for another user, a relative path).
    """
    path = normalize_path(requested_path)

    if is_public(path):
        return AccessDecision.allow()

    if identity is None:
        return AccessDecision.deny(LOGIN_PATH, DenialReason.UNAUTHENTICATED)
    if not isinstance(identity, Principal):
        raise MalformedAccessInput(f"identity must be a Principal, got {type(identity).__name__}")

    role = None
    if role_snapshot is not None:
        if role_snapshot.user_id != identity.user_id:
            raise MalformedAccessInput("Role snapshot belongs to a different user")
        role = _coerce(Role, role_snapshot.role, "role")
        recertification = _coerce(
            RecertificationStatus, role_snapshot.recertification_status, "recertification status"
        )
        if not isinstance(role_snapshot.eula_accepted, bool):
            raise MalformedAccessInput("eula_accepted must be a bool")

    status = None
    if subscription is not None:
        status = _coerce(SubscriptionStatus, subscription.status, "subscription status")

    rule = classify(path, route_table)
    if rule is None:
        return AccessDecision.allow()

    # 1. Organization membership
    organization_id = role_snapshot.organization_id if role_snapshot is not None else None
    if organization_id is None and not path_matches(path, ONBOARDING_PATH):
        if role_snapshot is None or rule.requires_organization:
            return AccessDecision.deny(ONBOARDING_PATH, DenialReason.NO_ORGANIZATION)
    if role_snapshot is None:
        return AccessDecision.allow()

    # 2-3. Subscription
    if rule.requires_active_subscription and organization_id is not None:
        if status is None:
            status = SubscriptionStatus.INCOMPLETE
        if status == SubscriptionStatus.PAST_DUE and not path_matches(path, BILLING_PATH):
            return AccessDecision.deny(BILLING_PATH, DenialReason.SUBSCRIPTION_PAST_DUE)
        if status in _CANCELLED_STATUSES and not path_matches(path, BILLING_PATH):
            return AccessDecision.deny(HOME_PATH, DenialReason.SUBSCRIPTION_CANCELLED)

    # 4. Role
    if not rule.allows(role.value):
        return AccessDecision.deny(home_path_for(role.value), DenialReason.ROLE_FORBIDDEN)

    if role != Role.TENANT:
        return AccessDecision.allow()

    # 5. Tenant EULA
    if not role_snapshot.eula_accepted and not _on_any(path, EULA_PATH, BILLING_PATH):
        return AccessDecision.deny(EULA_PATH, DenialReason.EULA_NOT_ACCEPTED)

    # 6. Tenant recertification
    if recertification == RecertificationStatus.OVERDUE and not _on_any(
        path, DOCUMENTS_PATH, EULA_PATH, BILLING_PATH
    ):
        return AccessDecision.deny(DOCUMENTS_PATH, DenialReason.RECERTIFICATION_OVERDUE)

    return AccessDecision.allow()

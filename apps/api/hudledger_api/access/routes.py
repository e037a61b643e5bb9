"""Route classification table for the access gate.

Rules match a path exactly or by whole-segment prefix, and the longest match
wins. Paths matched by no rule only require an authenticated identity.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Iterable, Optional

from hudledger_api.access.types import Role
from hudledger_api.errors import ConfigurationError, MalformedAccessInput

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
HOME_PATH = "/"
BILLING_PATH = "/billing"
EULA_PATH = "/tenant-eula"
DOCUMENTS_PATH = "/dashboard/tenant/documents"
ONBOARDING_PATH = "/onboarding"

ALL_ROLES = frozenset(role.value for role in Role)

# Landing page for each role after login or a role denial
ROLE_HOME_PATHS = {
    Role.SUPER_ADMIN.value: "/dashboard/super-admin",
    Role.PROPERTY_MANAGER.value: "/dashboard/property-manager",
    Role.TENANT.value: "/dashboard/tenant",
    Role.ADMIN.value: "/dashboard",
    Role.EDITOR.value: "/dashboard",
    Role.VIEWER.value: "/dashboard",
}

PUBLIC_PATHS = frozenset({HOME_PATH})

PUBLIC_PREFIXES = (
    LOGIN_PATH,
    "/signup",
    "/forgot-password",
    "/reset-password",
    "/verify-email",
    "/pricing",
    "/about",
    "/privacy-policy",
    "/msa",
    "/api/auth",
    "/api/webhooks",
    "/health",
    "/ready",
    "/metrics",
    "/docs",
    "/openapi.json",
)


@dataclass(frozen=True)
class RouteRule:
    """Requirements of every path under ``prefix``."""

    prefix: str
    allowed_roles: frozenset
    requires_organization: bool = True
    requires_active_subscription: bool = True

    def allows(self, role: str) -> bool:
        return role in self.allowed_roles


ROUTE_TABLE = (
    RouteRule(
        "/dashboard/super-admin",
        frozenset({Role.SUPER_ADMIN.value}),
        requires_organization=False,
        requires_active_subscription=False,
    ),
    RouteRule(
        "/dashboard/property-manager",
        frozenset({Role.PROPERTY_MANAGER.value, Role.SUPER_ADMIN.value}),
    ),
    RouteRule(
        "/dashboard/tenant",
        frozenset({Role.TENANT.value, Role.SUPER_ADMIN.value}),
    ),
    RouteRule(
        "/dashboard",
        ALL_ROLES - {Role.TENANT.value},
    ),
    RouteRule(
        BILLING_PATH,
        ALL_ROLES,
        requires_active_subscription=False,
    ),
    RouteRule(
        EULA_PATH,
        frozenset({Role.TENANT.value, Role.SUPER_ADMIN.value}),
    ),
    RouteRule(
        ONBOARDING_PATH,
        ALL_ROLES,
        requires_organization=False,
        requires_active_subscription=False,
    ),
    RouteRule(
        "/v1/ledger",
        frozenset({Role.SUPER_ADMIN.value, Role.PROPERTY_MANAGER.value, Role.ADMIN.value}),
    ),
    RouteRule(
        "/admin",
        frozenset({Role.SUPER_ADMIN.value}),
        requires_organization=False,
        requires_active_subscription=False,
    ),
)


def normalize_path(path: str) -> str:
    """Collapse dot segments and trailing slashes; query strings are not accepted."""
    if not isinstance(path, str) or not path.startswith("/"):
        raise MalformedAccessInput(f"Requested path must be absolute: {path!r}")
    if "?" in path or "#" in path:
        raise MalformedAccessInput(f"Requested path must not carry a query: {path!r}")
    normalized = posixpath.normpath(path)
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


def path_matches(path: str, prefix: str) -> bool:
    """Whole-segment prefix match: /a/b matches /a/b and /a/b/c, not /a/bc."""
    if prefix == "/":
        return path == "/"
    return path == prefix or path.startswith(prefix + "/")


def is_public(path: str) -> bool:
    path = normalize_path(path)
    if path in PUBLIC_PATHS:
        return True
    return any(path_matches(path, prefix) for prefix in PUBLIC_PREFIXES)


def classify(path: str, table: Iterable[RouteRule] = ROUTE_TABLE) -> Optional[RouteRule]:
    """Longest rule matching the path, or None for unclassified paths."""
    path = normalize_path(path)
    best = None
    for rule in table:
        if path_matches(path, rule.prefix) and (best is None or len(rule.prefix) > len(best.prefix)):
            best = rule
    return best


def home_path_for(role: str) -> str:
    return ROLE_HOME_PATHS.get(role, HOME_PATH)


def validate_route_table(
    table: Iterable[RouteRule] = ROUTE_TABLE,
    home_paths: Optional[dict] = None,
) -> None:
    """Fail loudly on a table that could misroute or loop.

    Raises ConfigurationError for unknown roles, malformed or duplicate
    prefixes, public/protected overlaps, a role whose home path forbids it,
    and remediation paths that would redirect back to themselves.
    """
    table = tuple(table)
    home_paths = ROLE_HOME_PATHS if home_paths is None else home_paths
    seen = set()

    for rule in table:
        if not rule.prefix.startswith("/") or (rule.prefix != "/" and rule.prefix.endswith("/")):
            raise ConfigurationError(
                f"Malformed route prefix: {rule.prefix!r}",
                details={"prefix": rule.prefix},
            )
        if rule.prefix in seen:
            raise ConfigurationError(
                f"Duplicate route prefix: {rule.prefix}",
                details={"prefix": rule.prefix},
            )
        seen.add(rule.prefix)

        unknown = set(rule.allowed_roles) - ALL_ROLES
        if unknown:
            raise ConfigurationError(
                f"Route {rule.prefix} names unknown roles: {sorted(unknown)}",
                details={"prefix": rule.prefix, "roles": sorted(unknown)},
            )
        if not rule.allowed_roles:
            raise ConfigurationError(
                f"Route {rule.prefix} allows no role",
                details={"prefix": rule.prefix},
            )
        if is_public(rule.prefix):
            raise ConfigurationError(
                f"Route {rule.prefix} is both public and protected",
                details={"prefix": rule.prefix},
            )

    for role in ALL_ROLES:
        if role not in home_paths:
            raise ConfigurationError(f"Role {role} has no home path", details={"role": role})

    for role, home in home_paths.items():
        if role not in ALL_ROLES:
            raise ConfigurationError(f"Home path for unknown role {role}", details={"role": role})
        rule = classify(home, table)
        if rule is not None and not rule.allows(role):
            raise ConfigurationError(
                f"Home path {home} forbids its own role {role}",
                details={"role": role, "path": home},
            )

    if not is_public(LOGIN_PATH) or not is_public(HOME_PATH):
        raise ConfigurationError("Login and home paths must be public")

    billing = classify(BILLING_PATH, table)
    if billing is not None and billing.requires_active_subscription:
        raise ConfigurationError(
            "Billing path requires an active subscription",
            details={"path": BILLING_PATH},
        )

    onboarding = classify(ONBOARDING_PATH, table)
    if onboarding is not None and onboarding.requires_organization:
        raise ConfigurationError(
            "Onboarding path requires an organization",
            details={"path": ONBOARDING_PATH},
        )

    for path in (EULA_PATH, DOCUMENTS_PATH):
        rule = classify(path, table)
        if rule is not None and not rule.allows(Role.TENANT.value):
            raise ConfigurationError(
                f"Tenant remediation path {path} forbids tenants",
                details={"path": path},
            )

    logger.info("Route table validated", extra={"rules": len(table)})

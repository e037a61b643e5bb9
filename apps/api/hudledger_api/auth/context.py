"""Route dependencies exposing what the access gate resolved."""

from fastapi import HTTPException, Request, status

from hudledger_api.access.types import Principal, RoleSnapshot


def get_principal(request: Request) -> Principal:
    """Authenticated principal of the current request."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return principal


def get_role_snapshot(request: Request) -> RoleSnapshot:
    """Membership of the current caller."""
    snapshot = getattr(request.state, "role_snapshot", None)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No organization membership")
    return snapshot


def get_organization_id(request: Request) -> str:
    """Organization the current caller acts for."""
    organization_id = get_role_snapshot(request).organization_id
    if organization_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No organization membership")
    return organization_id

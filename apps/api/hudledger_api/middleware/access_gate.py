"""Access gate middleware.

Resolves the caller and their snapshots once per request, asks the gate for
a decision and turns a denial into a redirect (pages) or a JSON error (API).
"""

import logging
from urllib.parse import urlencode

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, RedirectResponse

from hudledger_api.access.gate import decide
from hudledger_api.access.routes import LOGIN_PATH, is_public
from hudledger_api.access.types import AccessDecision, DenialReason
from hudledger_api.auth.session import principal_from_request
from hudledger_api.db.session import SessionLocal
from hudledger_api.identity.resolver import SnapshotResolver
from hudledger_api.utils.metrics import access_decisions

logger = logging.getLogger(__name__)

API_PREFIXES = ("/v1", "/admin")

DENIAL_STATUS = {
    DenialReason.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    DenialReason.SUBSCRIPTION_PAST_DUE: status.HTTP_402_PAYMENT_REQUIRED,
    DenialReason.SUBSCRIPTION_CANCELLED: status.HTTP_402_PAYMENT_REQUIRED,
}


def is_api_path(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in API_PREFIXES)


def denial_response(path: str, decision: AccessDecision):
    """Render a denial: JSON for API callers, a redirect for browsers."""
    if is_api_path(path):
        return JSONResponse(
            status_code=DENIAL_STATUS.get(decision.reason, status.HTTP_403_FORBIDDEN),
            content={
                "error_code": f"ERR_ACCESS_{decision.reason.value}",
                "message": "Access denied",
                "details": {
                    "reason": decision.reason.value,
                    "redirect_target": decision.redirect_target,
                },
            },
        )

    target = decision.redirect_target
    if target == LOGIN_PATH:
        target = f"{LOGIN_PATH}?{urlencode({'redirect': path})}"
    return RedirectResponse(url=target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Gate every non-public request before any route code runs."""

    async def dispatch(self, request: Request, call_next):
        """Decide access for the request."""
        path = request.url.path
        request.state.principal = None
        request.state.role_snapshot = None

        if is_public(path):
            return await call_next(request)

        principal = principal_from_request(request)
        role_snapshot = subscription = None
        if principal is not None:
            session_factory = getattr(request.app.state, "session_factory", SessionLocal)
            db = session_factory()
            try:
                resolver = SnapshotResolver(db)
                role_snapshot = resolver.role_snapshot(principal.user_id)
                if role_snapshot is not None:
                    subscription = resolver.subscription_snapshot(role_snapshot.organization_id)
            finally:
                db.close()

        decision = decide(principal, subscription, role_snapshot, path)
        access_decisions.labels(
            outcome=decision.outcome.value,
            reason=decision.reason.value if decision.reason else "",
        ).inc()

        if not decision.allowed:
            logger.info(
                "Access denied",
                extra={
                    "path": path,
                    "reason": decision.reason.value,
                    "redirect_target": decision.redirect_target,
                    "user_id": principal.user_id if principal else None,
                    "correlation_id": getattr(request.state, "correlation_id", None),
                },
            )
            return denial_response(path, decision)

        request.state.principal = principal
        request.state.role_snapshot = role_snapshot
        return await call_next(request)

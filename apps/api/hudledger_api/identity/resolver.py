"""Subscription and role snapshot resolution.

Status strings are normalised to the canonical uppercase enums here, at the
boundary, so the access gate only ever sees canonical values.
"""

import json
import logging
from datetime import date
from functools import lru_cache
from typing import Optional

import redis
from sqlalchemy.orm import Session

from hudledger_api.access.types import (
    RecertificationStatus,
    Role,
    RoleSnapshot,
    SubscriptionSnapshot,
    SubscriptionStatus,
    recertification_status_for,
)
from hudledger_api.errors import MalformedAccessInput
from hudledger_api.ledger.types import utcnow
from hudledger_api.models import OrganizationMember, Subscription, TenantProfile
from hudledger_api.settings import get_settings

logger = logging.getLogger(__name__)

# Spellings seen from billing providers and older rows
_STATUS_ALIASES = {
    "CANCELED": "CANCELLED",
    "INCOMPLETE_EXPIRED": "INCOMPLETE",
    "UNPAID": "PAST_DUE",
}


def normalize_enum(enum_cls, raw: Optional[str], aliases: Optional[dict] = None):
    """Map a stored status string onto its canonical enum member."""
    if raw is None:
        raise MalformedAccessInput(f"Missing {enum_cls.__name__} value")
    key = str(raw).strip().upper().replace("-", "_").replace(" ", "_")
    key = (aliases or {}).get(key, key)
    try:
        return enum_cls(key)
    except ValueError:
        logger.error("Unrecognised stored value", extra={"enum": enum_cls.__name__, "value": raw})
        raise MalformedAccessInput(f"Unknown {enum_cls.__name__} value: {raw!r}") from None


@lru_cache()
def get_snapshot_cache() -> redis.Redis:
    """Process-wide snapshot cache client; its connection pool is shared by every resolver."""
    return redis.from_url(get_settings().redis_url, decode_responses=True)


class SnapshotResolver:
    """Load RoleSnapshot and SubscriptionSnapshot for the access gate."""

    def __init__(
        self,
        db: Session,
        cache: Optional[redis.Redis] = None,
        ttl_seconds: Optional[int] = None,
        today: Optional[date] = None,
    ):
        """Initialize resolver; caching is active only with a client and a positive TTL."""
        self.db = db
        settings = get_settings()
        self.ttl_seconds = settings.snapshot_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        if cache is None and self.ttl_seconds > 0:
            cache = get_snapshot_cache()
        self.cache = cache if self.ttl_seconds > 0 else None
        self.today = today

    # Cache helpers

    def _cache_get(self, key: str) -> Optional[dict]:
        if self.cache is None:
            return None
        try:
            raw = self.cache.get(key)
        except redis.RedisError as e:
            logger.warning("Snapshot cache read failed", extra={"key": key, "error": str(e)})
            return None
        return json.loads(raw) if raw else None

    def _cache_set(self, key: str, value: dict) -> None:
        if self.cache is None:
            return
        try:
            self.cache.setex(key, self.ttl_seconds, json.dumps(value))
        except redis.RedisError as e:
            logger.warning("Snapshot cache write failed", extra={"key": key, "error": str(e)})

    # Role

    def role_snapshot(self, user_id: str) -> Optional[RoleSnapshot]:
        """Membership facts for a user, or None if they belong to no organization."""
        key = f"hudledger:snapshot:role:{user_id}"
        cached = self._cache_get(key)
        if cached is not None:
            return RoleSnapshot(
                user_id=cached["user_id"],
                role=Role(cached["role"]),
                organization_id=cached["organization_id"],
                eula_accepted=cached["eula_accepted"],
                recertification_status=RecertificationStatus(cached["recertification_status"]),
            )

        member = (
            self.db.query(OrganizationMember)
            .filter(OrganizationMember.user_id == user_id)
            .first()
        )
        if member is None:
            return None

        role = normalize_enum(Role, member.role)
        recertification = RecertificationStatus.CURRENT
        if role == Role.TENANT and member.organization_id is not None:
            recertification = self._recertification_status(member.organization_id, user_id)

        snapshot = RoleSnapshot(
            user_id=member.user_id,
            role=role,
            organization_id=member.organization_id,
            eula_accepted=bool(member.eula_accepted),
            recertification_status=recertification,
        )
        self._cache_set(
            key,
            {
                "user_id": snapshot.user_id,
                "role": snapshot.role.value,
                "organization_id": snapshot.organization_id,
                "eula_accepted": snapshot.eula_accepted,
                "recertification_status": snapshot.recertification_status.value,
            },
        )
        return snapshot

    def _recertification_status(self, organization_id: str, user_id: str) -> RecertificationStatus:
        profile = (
            self.db.query(TenantProfile)
            .filter(
                TenantProfile.organization_id == organization_id,
                TenantProfile.user_id == user_id,
            )
            .first()
        )
        if profile is None:
            return RecertificationStatus.CURRENT
        if profile.next_recertification_due is not None:
            today = self.today or utcnow().date()
            return recertification_status_for(profile.next_recertification_due, today)
        return normalize_enum(RecertificationStatus, profile.recertification_status)

    # Subscription

    def subscription_snapshot(self, organization_id: Optional[str]) -> Optional[SubscriptionSnapshot]:
        """Most recent subscription of an organization, or None."""
        if organization_id is None:
            return None

        key = f"hudledger:snapshot:subscription:{organization_id}"
        cached = self._cache_get(key)
        if cached is not None:
            return SubscriptionSnapshot(status=SubscriptionStatus(cached["status"]), tier=cached["tier"])

        subscription = (
            self.db.query(Subscription)
            .filter(Subscription.organization_id == organization_id)
            .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
            .first()
        )
        if subscription is None:
            return None

        snapshot = SubscriptionSnapshot(
            status=normalize_enum(SubscriptionStatus, subscription.status, _STATUS_ALIASES),
            tier=subscription.tier,
            current_period_end=subscription.current_period_end,
        )
        self._cache_set(key, {"status": snapshot.status.value, "tier": snapshot.tier})
        return snapshot

    def invalidate(self, user_id: Optional[str] = None, organization_id: Optional[str] = None) -> None:
        """Drop cached snapshots after a membership or billing change."""
        if self.cache is None:
            return
        keys = []
        if user_id:
            keys.append(f"hudledger:snapshot:role:{user_id}")
        if organization_id:
            keys.append(f"hudledger:snapshot:subscription:{organization_id}")
        if not keys:
            return
        try:
            self.cache.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Snapshot cache invalidation failed", extra={"keys": keys, "error": str(e)})

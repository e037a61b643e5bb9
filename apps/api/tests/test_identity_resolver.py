"""Tests for subscription and role snapshot resolution."""

import json
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest
import redis

from hudledger_api.access.types import RecertificationStatus, Role, SubscriptionStatus
from hudledger_api.errors import MalformedAccessInput
from hudledger_api.identity.resolver import (
    _STATUS_ALIASES,
    SnapshotResolver,
    get_snapshot_cache,
    normalize_enum,
)
from hudledger_api.models import OrganizationMember, Subscription, TenantProfile


def _member(db, organization, user_id, role, **fields):
    member = OrganizationMember(
        organization_id=organization.id if organization is not None else None,
        user_id=user_id,
        role=role,
        **fields,
    )
    db.add(member)
    db.commit()
    return member


class TestNormalizeEnum:
    """Test stored value normalisation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("active", SubscriptionStatus.ACTIVE),
            (" Past-Due ", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELLED),
            ("incomplete_expired", SubscriptionStatus.INCOMPLETE),
            ("unpaid", SubscriptionStatus.PAST_DUE),
        ],
    )
    def test_subscription_spellings(self, raw, expected):
        """Test that provider spellings map onto canonical statuses."""
        assert normalize_enum(SubscriptionStatus, raw, _STATUS_ALIASES) == expected

    def test_role_casing(self):
        """Test that lowercase roles are accepted."""
        assert normalize_enum(Role, "property_manager") == Role.PROPERTY_MANAGER

    @pytest.mark.parametrize("raw", [None, "", "JANITOR"])
    def test_unknown_value_raises(self, raw):
        """Test that unrecognised values are never guessed."""
        with pytest.raises(MalformedAccessInput):
            normalize_enum(Role, raw)


class TestSnapshotResolver:
    """Test snapshot loading from the database."""

    def test_unknown_user_has_no_snapshot(self, db):
        """Test that users without membership resolve to None."""
        assert SnapshotResolver(db).role_snapshot("nobody") is None

    def test_manager_snapshot(self, db, organization):
        """Test that membership facts are normalised."""
        _member(db, organization, "manager-2", "property_manager", eula_accepted=True)

        snapshot = SnapshotResolver(db).role_snapshot("manager-2")

        assert snapshot.role == Role.PROPERTY_MANAGER
        assert snapshot.organization_id == organization.id
        assert snapshot.eula_accepted is True
        assert snapshot.recertification_status == RecertificationStatus.CURRENT

    def test_super_admin_without_organization(self, db):
        """Test that platform administrators may have no organization."""
        _member(db, None, "root", "SUPER_ADMIN")

        snapshot = SnapshotResolver(db).role_snapshot("root")

        assert snapshot.role == Role.SUPER_ADMIN
        assert snapshot.organization_id is None

    @pytest.mark.parametrize(
        "due,expected",
        [
            (date(2026, 2, 28), RecertificationStatus.OVERDUE),
            (date(2026, 3, 20), RecertificationStatus.DUE_30),
            (date(2026, 12, 1), RecertificationStatus.CURRENT),
        ],
    )
    def test_tenant_recertification_from_due_date(self, db, organization, due, expected):
        """Test that the due date drives the recertification status."""
        _member(db, organization, "tenant-9", "TENANT")
        db.add(
            TenantProfile(
                organization_id=organization.id,
                user_id="tenant-9",
                recertification_status="CURRENT",
                next_recertification_due=due,
            )
        )
        db.commit()

        snapshot = SnapshotResolver(db, today=date(2026, 3, 1)).role_snapshot("tenant-9")

        assert snapshot.recertification_status == expected

    def test_tenant_recertification_from_stored_status(self, db, organization):
        """Test that the stored status is used when no due date is known."""
        _member(db, organization, "tenant-9", "TENANT")
        db.add(
            TenantProfile(
                organization_id=organization.id,
                user_id="tenant-9",
                recertification_status="overdue",
            )
        )
        db.commit()

        snapshot = SnapshotResolver(db).role_snapshot("tenant-9")

        assert snapshot.recertification_status == RecertificationStatus.OVERDUE

    def test_unknown_stored_role_raises(self, db, organization):
        """Test that corrupt membership rows surface instead of defaulting."""
        _member(db, organization, "mystery", "JANITOR")

        with pytest.raises(MalformedAccessInput):
            SnapshotResolver(db).role_snapshot("mystery")

    def test_latest_subscription_wins(self, db, organization):
        """Test that the most recently updated subscription is used."""
        db.add(
            Subscription(
                organization_id=organization.id,
                status="canceled",
                updated_at=datetime(2099, 1, 1),
            )
        )
        db.commit()

        snapshot = SnapshotResolver(db).subscription_snapshot(organization.id)

        assert snapshot.status == SubscriptionStatus.CANCELLED

    def test_no_organization_has_no_subscription(self, db):
        """Test that a missing organization id resolves to None."""
        assert SnapshotResolver(db).subscription_snapshot(None) is None


class TestSnapshotCache:
    """Test the redis snapshot cache."""

    def test_cache_hit_skips_database(self):
        """Test that cached snapshots are returned without a query."""
        db = MagicMock()
        cache = MagicMock()
        cache.get.return_value = json.dumps({"status": "PAST_DUE", "tier": "STARTER"})

        snapshot = SnapshotResolver(db, cache=cache, ttl_seconds=30).subscription_snapshot("org-1")

        assert snapshot.status == SubscriptionStatus.PAST_DUE
        cache.get.assert_called_once_with("hudledger:snapshot:subscription:org-1")
        db.query.assert_not_called()

    def test_cache_miss_populates_cache(self, db, organization):
        """Test that a database read is written back with the TTL."""
        _member(db, organization, "manager-3", "PROPERTY_MANAGER")
        cache = MagicMock()
        cache.get.return_value = None

        SnapshotResolver(db, cache=cache, ttl_seconds=30).role_snapshot("manager-3")

        key, ttl, payload = cache.setex.call_args[0]
        assert key == "hudledger:snapshot:role:manager-3"
        assert ttl == 30
        assert json.loads(payload)["role"] == "PROPERTY_MANAGER"

    def test_redis_failure_falls_back_to_database(self, db, organization):
        """Test that an unavailable cache does not block access decisions."""
        _member(db, organization, "manager-4", "PROPERTY_MANAGER")
        cache = MagicMock()
        cache.get.side_effect = redis.ConnectionError("down")
        cache.setex.side_effect = redis.ConnectionError("down")

        snapshot = SnapshotResolver(db, cache=cache, ttl_seconds=30).role_snapshot("manager-4")

        assert snapshot.role == Role.PROPERTY_MANAGER

    def test_zero_ttl_disables_cache(self, db):
        """Test that caching is off without a positive TTL."""
        cache = MagicMock()
        resolver = SnapshotResolver(db, cache=cache, ttl_seconds=0)

        resolver.role_snapshot("nobody")
        resolver.invalidate(user_id="nobody")

        cache.get.assert_not_called()
        cache.delete.assert_not_called()

    def test_invalidate_drops_both_keys(self, db):
        """Test that invalidation removes role and subscription entries."""
        cache = MagicMock()

        SnapshotResolver(db, cache=cache, ttl_seconds=30).invalidate(user_id="u1", organization_id="o1")

        cache.delete.assert_called_once_with(
            "hudledger:snapshot:role:u1",
            "hudledger:snapshot:subscription:o1",
        )

    def test_resolvers_share_one_client(self, db):
        """Test that caching resolvers reuse a single connection pool."""
        get_snapshot_cache.cache_clear()
        try:
            with patch("hudledger_api.identity.resolver.redis.from_url") as from_url:
                first = SnapshotResolver(db, ttl_seconds=30)
                second = SnapshotResolver(db, ttl_seconds=30)

            from_url.assert_called_once()
            assert first.cache is second.cache is from_url.return_value
        finally:
            get_snapshot_cache.cache_clear()

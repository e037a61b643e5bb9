"""Initial schema: organizations, memberships, ledger and audit log.

Revision ID: 001
Revises:
Create Date: 2026-01-05
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


# Postgres backstop for the ORM listeners: only the period-close flip may touch a row
LEDGER_GUARD_FUNCTION = """
CREATE OR REPLACE FUNCTION ledger_entries_write_once() RETURNS trigger AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        RAISE EXCEPTION 'ledger_entries rows cannot be deleted';
    END IF;
    IF (to_jsonb(NEW) - 'is_period_closed') <> (to_jsonb(OLD) - 'is_period_closed')
       OR (OLD.is_period_closed AND NOT NEW.is_period_closed) THEN
        RAISE EXCEPTION 'ledger_entries rows are write-once';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

LEDGER_GUARD_TRIGGER = """
CREATE TRIGGER ledger_entries_write_once
BEFORE UPDATE OR DELETE ON ledger_entries
FOR EACH ROW EXECUTE FUNCTION ledger_entries_write_once();
"""


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('hud_certification_number', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)

    op.create_table(
        'organization_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('eula_accepted', sa.Boolean(), nullable=False),
        sa.Column('eula_accepted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organization_members_id', 'organization_members', ['id'])
    op.create_index('ix_organization_members_organization_id', 'organization_members', ['organization_id'])
    op.create_index('ix_organization_members_user_id', 'organization_members', ['user_id'], unique=True)

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('tier', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_organization_id', 'subscriptions', ['organization_id'])

    op.create_table(
        'tenant_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('unit_id', sa.String(36), nullable=True),
        sa.Column('recertification_status', sa.String(20), nullable=False),
        sa.Column('next_recertification_due', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_tenant_profile_org_user'),
    )
    op.create_index('ix_tenant_profiles_id', 'tenant_profiles', ['id'])
    op.create_index('ix_tenant_profiles_organization_id', 'tenant_profiles', ['organization_id'])
    op.create_index('ix_tenant_profiles_user_id', 'tenant_profiles', ['user_id'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('chain_sequence', sa.BigInteger(), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('unit_id', sa.String(36), nullable=False),
        sa.Column('tenant_id', sa.String(36), nullable=True),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('accounting_period', sa.String(7), nullable=False),
        sa.Column('is_period_closed', sa.Boolean(), nullable=False),
        sa.Column('adjusts_entry_id', sa.String(36), nullable=True),
        sa.Column('cryptographic_hash', sa.String(64), nullable=False),
        sa.Column('previous_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['adjusts_entry_id'], ['ledger_entries.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cryptographic_hash'),
        sa.UniqueConstraint('organization_id', 'chain_sequence', name='uq_ledger_org_sequence'),
        sa.UniqueConstraint('organization_id', 'previous_hash', name='uq_ledger_org_previous_hash'),
    )
    op.create_index('ix_ledger_entries_organization_id', 'ledger_entries', ['organization_id'])
    op.create_index('ix_ledger_entries_property_id', 'ledger_entries', ['property_id'])
    op.create_index('ix_ledger_entries_tenant_id', 'ledger_entries', ['tenant_id'])
    op.create_index('ix_ledger_entries_transaction_type', 'ledger_entries', ['transaction_type'])
    op.create_index('ix_ledger_org_period', 'ledger_entries', ['organization_id', 'accounting_period'])

    op.create_table(
        'ledger_chain_heads',
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('last_sequence', sa.BigInteger(), nullable=False),
        sa.Column('tail_hash', sa.String(64), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('organization_id'),
    )

    op.create_table(
        'accounting_period_closes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('accounting_period', sa.String(7), nullable=False),
        sa.Column('closed_by', sa.String(255), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=False),
        sa.Column('entries_closed', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'accounting_period', name='uq_period_close_org_period'),
    )
    op.create_index('ix_accounting_period_closes_organization_id', 'accounting_period_closes', ['organization_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('organization_id', sa.String(36), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=True),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column('meta_data', sa.JSON(), nullable=True),
        sa.Column('correlation_id', sa.String(255), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_organization_id', 'audit_logs', ['organization_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])

    if op.get_bind().dialect.name == 'postgresql':
        op.execute(LEDGER_GUARD_FUNCTION)
        op.execute(LEDGER_GUARD_TRIGGER)


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP TRIGGER IF EXISTS ledger_entries_write_once ON ledger_entries")
        op.execute("DROP FUNCTION IF EXISTS ledger_entries_write_once()")

    op.drop_table('audit_logs')
    op.drop_table('accounting_period_closes')
    op.drop_table('ledger_chain_heads')
    op.drop_table('ledger_entries')
    op.drop_table('tenant_profiles')
    op.drop_table('subscriptions')
    op.drop_table('organization_members')
    op.drop_table('organizations')

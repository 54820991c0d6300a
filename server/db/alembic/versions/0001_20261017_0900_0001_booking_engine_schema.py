"""Booking engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table('resource_pools',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('kind', sa.String(length=10), nullable=False),
        sa.Column('external_ref', sa.String(length=128), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('parent_pool_id', sa.Integer(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('occupancy', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accepts_waitlist', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity > 0', name='ck_pool_capacity_positive'),
        sa.CheckConstraint('occupancy >= 0', name='ck_pool_occupancy_non_negative'),
        sa.CheckConstraint('occupancy <= capacity', name='ck_pool_occupancy_lte_capacity'),
        sa.CheckConstraint('length(external_ref) > 0', name='ck_pool_external_ref_not_empty'),
        sa.ForeignKeyConstraint(['parent_pool_id'], ['resource_pools.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('kind', 'external_ref', name='uq_pool_kind_external_ref')
    )
    op.create_index(op.f('ix_resource_pools_kind'), 'resource_pools', ['kind'], unique=False)
    op.create_index(op.f('ix_resource_pools_parent_pool_id'), 'resource_pools', ['parent_pool_id'], unique=False)
    op.create_index(op.f('ix_resource_pools_is_deleted'), 'resource_pools', ['is_deleted'], unique=False)

    op.create_table('booking_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pool_id', sa.Integer(), nullable=False),
        sa.Column('subject_id', sa.String(length=128), nullable=False),
        sa.Column('requester_id', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(subject_id) > 0', name='ck_booking_entry_subject_not_empty'),
        sa.CheckConstraint('length(requester_id) > 0', name='ck_booking_entry_requester_not_empty'),
        sa.ForeignKeyConstraint(['pool_id'], ['resource_pools.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_booking_entries_pool_id'), 'booking_entries', ['pool_id'], unique=False)
    op.create_index(op.f('ix_booking_entries_subject_id'), 'booking_entries', ['subject_id'], unique=False)
    op.create_index(op.f('ix_booking_entries_requester_id'), 'booking_entries', ['requester_id'], unique=False)
    op.create_index(op.f('ix_booking_entries_status'), 'booking_entries', ['status'], unique=False)
    op.create_index(
        'ix_booking_entries_queue',
        'booking_entries',
        ['pool_id', 'status', 'created_at', 'id'],
        unique=False
    )

    op.create_table('claim_offers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pool_id', sa.Integer(), nullable=False),
        sa.Column('booking_entry_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('offered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('expires_at > offered_at', name='ck_claim_offer_window_positive'),
        sa.ForeignKeyConstraint(['pool_id'], ['resource_pools.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_entry_id'], ['booking_entries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_entry_id')
    )
    op.create_index(op.f('ix_claim_offers_pool_id'), 'claim_offers', ['pool_id'], unique=False)
    op.create_index(op.f('ix_claim_offers_status'), 'claim_offers', ['status'], unique=False)
    op.create_index(op.f('ix_claim_offers_expires_at'), 'claim_offers', ['expires_at'], unique=False)
    # At most one open offer per pool
    op.create_index(
        'uq_claim_offers_open_per_pool',
        'claim_offers',
        ['pool_id'],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'")
    )

    op.create_table('capacity_adjustments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pool_id', sa.Integer(), nullable=False),
        sa.Column('capacity_before', sa.Integer(), nullable=False),
        sa.Column('capacity_after', sa.Integer(), nullable=False),
        sa.Column('occupancy_at_change', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity_after > 0', name='ck_capacity_adjustment_after_positive'),
        sa.CheckConstraint('occupancy_at_change <= capacity_after', name='ck_capacity_adjustment_occupancy_fits'),
        sa.CheckConstraint('length(actor) > 0', name='ck_capacity_adjustment_actor_not_empty'),
        sa.ForeignKeyConstraint(['pool_id'], ['resource_pools.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_capacity_adjustments_pool_id'), 'capacity_adjustments', ['pool_id'], unique=False)
    op.create_index(op.f('ix_capacity_adjustments_created_at'), 'capacity_adjustments', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f('ix_capacity_adjustments_created_at'), table_name='capacity_adjustments')
    op.drop_index(op.f('ix_capacity_adjustments_pool_id'), table_name='capacity_adjustments')
    op.drop_table('capacity_adjustments')

    op.drop_index('uq_claim_offers_open_per_pool', table_name='claim_offers')
    op.drop_index(op.f('ix_claim_offers_expires_at'), table_name='claim_offers')
    op.drop_index(op.f('ix_claim_offers_status'), table_name='claim_offers')
    op.drop_index(op.f('ix_claim_offers_pool_id'), table_name='claim_offers')
    op.drop_table('claim_offers')

    op.drop_index('ix_booking_entries_queue', table_name='booking_entries')
    op.drop_index(op.f('ix_booking_entries_status'), table_name='booking_entries')
    op.drop_index(op.f('ix_booking_entries_requester_id'), table_name='booking_entries')
    op.drop_index(op.f('ix_booking_entries_subject_id'), table_name='booking_entries')
    op.drop_index(op.f('ix_booking_entries_pool_id'), table_name='booking_entries')
    op.drop_table('booking_entries')

    op.drop_index(op.f('ix_resource_pools_is_deleted'), table_name='resource_pools')
    op.drop_index(op.f('ix_resource_pools_parent_pool_id'), table_name='resource_pools')
    op.drop_index(op.f('ix_resource_pools_kind'), table_name='resource_pools')
    op.drop_table('resource_pools')

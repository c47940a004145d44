"""Initial reservation schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table('inventory_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('capacity_total', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.Date(), nullable=True),
        sa.Column('window_end', sa.Date(), nullable=True),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('max_quantity', sa.Integer(), server_default='20', nullable=False),
        sa.Column('addons', sa.JSON(), server_default=sa.text("'{}'"), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity_total >= 0', name='ck_item_capacity_non_negative'),
        sa.CheckConstraint('unit_price >= 0', name='ck_item_price_non_negative'),
        sa.CheckConstraint('max_quantity > 0', name='ck_item_max_quantity_positive'),
        sa.CheckConstraint(
            'window_start IS NULL OR window_end IS NULL OR window_start < window_end',
            name='ck_item_window_ordered'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_inventory_items_kind'), 'inventory_items', ['kind'], unique=False)

    # One row per item per day; a single NULL-dated row for non-dated kinds
    op.create_table('capacity_slots',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('slot_date', sa.Date(), nullable=True),
        sa.Column('capacity_total', sa.Integer(), nullable=False),
        sa.Column('capacity_reserved', sa.Integer(), server_default='0', nullable=False),
        sa.CheckConstraint('capacity_reserved >= 0', name='ck_slot_reserved_non_negative'),
        sa.CheckConstraint('capacity_reserved <= capacity_total', name='ck_slot_reserved_within_total'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_id', 'slot_date', name='uq_capacity_slot_item_date')
    )
    op.create_index('ix_capacity_slots_item_date', 'capacity_slots', ['item_id', 'slot_date'], unique=False)

    op.create_table('inventory_holds',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('window_start', sa.Date(), nullable=True),
        sa.Column('window_end', sa.Date(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('committed_at', sa.DateTime(), nullable=True),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_hold_quantity_positive'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_inventory_holds_item_id'), 'inventory_holds', ['item_id'], unique=False)
    op.create_index(op.f('ix_inventory_holds_status'), 'inventory_holds', ['status'], unique=False)
    op.create_index(op.f('ix_inventory_holds_expires_at'), 'inventory_holds', ['expires_at'], unique=False)

    op.create_table('inventory_adjustments',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('actor', sa.String(length=128), nullable=False),
        sa.Column('capacity_total_before', sa.Integer(), nullable=False),
        sa.Column('capacity_total_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('delta != 0', name='ck_adjustment_delta_nonzero'),
        sa.CheckConstraint('length(reason) > 0', name='ck_adjustment_reason_not_empty'),
        sa.CheckConstraint('capacity_total_after >= 0', name='ck_adjustment_total_after_non_negative'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_inventory_adjustments_item_id'), 'inventory_adjustments', ['item_id'], unique=False)

    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('item_kind', sa.String(length=32), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('requester_id', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.Date(), nullable=True),
        sa.Column('window_end', sa.Date(), nullable=True),
        sa.Column('addons', sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column('price_breakdown', sa.JSON(), server_default=sa.text("'{}'"), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('payment_status', sa.String(length=32), nullable=False),
        sa.Column('payment_provider', sa.String(length=32), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('hold_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_booking_quantity_positive'),
        sa.CheckConstraint('amount >= 0', name='ck_booking_amount_non_negative'),
        sa.CheckConstraint('length(requester_id) > 0', name='ck_booking_requester_not_empty'),
        sa.CheckConstraint("status != 'confirmed' OR payment_status = 'paid'", name='ck_booking_confirmed_requires_paid'),
        sa.CheckConstraint(
            'refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= amount)',
            name='ck_booking_refund_within_amount'
        ),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['hold_id'], ['inventory_holds.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index(op.f('ix_bookings_code'), 'bookings', ['code'], unique=False)
    op.create_index(op.f('ix_bookings_hold_id'), 'bookings', ['hold_id'], unique=False)
    op.create_index(op.f('ix_bookings_payment_reference'), 'bookings', ['payment_reference'], unique=False)
    op.create_index('ix_bookings_requester_status', 'bookings', ['requester_id', 'status'], unique=False)
    op.create_index('ix_bookings_item_window', 'bookings', ['item_id', 'window_start', 'window_end'], unique=False)

    op.create_table('payment_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('gateway_reference', sa.String(length=255), nullable=False),
        sa.Column('expected_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('expected_amount >= 0', name='ck_payment_session_amount_non_negative'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_reference')
    )
    op.create_index(op.f('ix_payment_sessions_booking_id'), 'payment_sessions', ['booking_id'], unique=False)
    op.create_index(op.f('ix_payment_sessions_status'), 'payment_sessions', ['status'], unique=False)

    op.create_table('cancellation_requests',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('requester_id', sa.String(length=128), nullable=False),
        sa.Column('reason', sa.String(length=1000), nullable=False),
        sa.Column('priority', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_method', sa.String(length=32), nullable=True),
        sa.Column('reviewer_id', sa.String(length=128), nullable=True),
        sa.Column('reviewer_notes', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(reason) > 0', name='ck_cancellation_reason_not_empty'),
        sa.CheckConstraint('refund_amount IS NULL OR refund_amount >= 0', name='ck_cancellation_refund_non_negative'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cancellation_requests_booking_id'), 'cancellation_requests', ['booking_id'], unique=False)
    op.create_index(op.f('ix_cancellation_requests_requester_id'), 'cancellation_requests', ['requester_id'], unique=False)
    op.create_index(op.f('ix_cancellation_requests_status'), 'cancellation_requests', ['status'], unique=False)
    # At most one pending request per booking
    op.create_index(
        'uq_cancellation_pending_booking', 'cancellation_requests', ['booking_id'],
        unique=True, postgresql_where=sa.text("status = 'pending'")
    )

    op.create_table('idempotency_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('principal', sa.String(length=128), server_default='', nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('response_headers', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(method) > 0', name='ck_idempotency_method_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint('response_status_code >= 100', name='ck_idempotency_status_code_valid'),
        sa.CheckConstraint('response_status_code <= 599', name='ck_idempotency_status_code_max'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', 'method', 'principal', name='uq_idempotency_key_method_principal')
    )
    op.create_index(op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False)
    op.create_index(op.f('ix_idempotency_records_idempotency_key'), 'idempotency_records', ['idempotency_key'], unique=False)
    op.create_index(op.f('ix_idempotency_records_method'), 'idempotency_records', ['method'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('cancellation_requests')
    op.drop_table('payment_sessions')
    op.drop_table('bookings')
    op.drop_table('inventory_adjustments')
    op.drop_table('inventory_holds')
    op.drop_table('capacity_slots')
    op.drop_table('inventory_items')

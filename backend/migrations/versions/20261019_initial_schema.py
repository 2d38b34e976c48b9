"""initial schema

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the costing schema from scratch:
- properties / seasons / machines: farm scoping, season closing, hour meters
- products / batches: FIFO batch ledger with quantity CHECKs
- items: catalog resolution (stock, service, machine_hour)
- entries / entry_lines: committed entries with consumption breakdowns
- audit_events: append-only audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # properties / seasons / machines
    # ============================================================================
    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_properties_is_active', 'properties', ['is_active'])

    op.create_table(
        'seasons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(length=120), nullable=True),
        sa.Column('reopened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_seasons_property_id', 'seasons', ['property_id'])
    op.create_index('ix_seasons_property_closed', 'seasons', ['property_id', 'is_closed'])

    op.create_table(
        'machines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('hourly_rate', sa.Numeric(18, 4), nullable=True),
        sa.Column('hour_meter', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_machines_property_id', 'machines', ['property_id'])

    # ============================================================================
    # products / batches: FIFO batch ledger
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='unidade'),
        sa.Column('minimum_level', sa.Numeric(18, 4), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_property_id', 'products', ['property_id'])
    op.create_index('ix_products_property_name', 'products', ['property_id', 'name'])
    op.create_index('ix_products_property_active', 'products', ['property_id', 'is_active'])

    # remaining_quantity bounds are enforced here as well as in batch_service
    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('season_id', sa.Integer(), nullable=True),
        sa.Column('original_quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('remaining_quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('received_at', sa.Date(), nullable=False),
        sa.Column('expires_at', sa.Date(), nullable=True),
        sa.Column('invoice_ref', sa.String(length=64), nullable=True),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('original_quantity > 0', name='ck_batches_original_positive'),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_batches_remaining_nonnegative'),
        sa.CheckConstraint('remaining_quantity <= original_quantity', name='ck_batches_remaining_le_original'),
        sa.CheckConstraint('unit_cost >= 0', name='ck_batches_unit_cost_nonnegative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['season_id'], ['seasons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_batches_product_id', 'batches', ['product_id'])
    op.create_index('ix_batches_season_id', 'batches', ['season_id'])
    op.create_index('ix_batches_product_fifo', 'batches', ['product_id', 'received_at', 'created_at', 'id'])

    # ============================================================================
    # items: catalog resolution
    # ============================================================================
    op.create_table(
        'items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('item_type', sa.String(length=16), nullable=False, server_default='stock'),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='unidade'),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('machine_id', sa.Integer(), nullable=True),
        sa.Column('default_rate', sa.Numeric(18, 4), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint("item_type IN ('stock', 'service', 'machine_hour')", name='ck_items_item_type'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['machine_id'], ['machines.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_items_property_id', 'items', ['property_id'])
    op.create_index('ix_items_product_id', 'items', ['product_id'])
    op.create_index('ix_items_machine_id', 'items', ['machine_id'])
    op.create_index('ix_items_property_active', 'items', ['property_id', 'is_active'])

    # ============================================================================
    # entries / entry_lines
    # ============================================================================
    op.create_table(
        'entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('season_id', sa.Integer(), nullable=False),
        sa.Column('service_name', sa.String(length=255), nullable=False),
        sa.Column('plot_id', sa.Integer(), nullable=True),
        sa.Column('executed_on', sa.Date(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('total_cost', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMMITTED'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['season_id'], ['seasons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_entries_property_id', 'entries', ['property_id'])
    op.create_index('ix_entries_season_id', 'entries', ['season_id'])
    op.create_index('ix_entries_plot_id', 'entries', ['plot_id'])
    op.create_index('ix_entries_season_executed', 'entries', ['season_id', 'executed_on'])

    op.create_table(
        'entry_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('total_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('consumption_breakdown', sa.JSON(), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_entry_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['entry_id'], ['entries.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_entry_lines_entry_id', 'entry_lines', ['entry_id'])
    op.create_index('ix_entry_lines_item_id', 'entry_lines', ['item_id'])

    # ============================================================================
    # audit_events: append-only
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('season_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=120), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['season_id'], ['seasons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_property_id', 'audit_events', ['property_id'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_events_season_occurred', 'audit_events', ['season_id', 'occurred_at'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('entry_lines')
    op.drop_table('entries')
    op.drop_table('items')
    op.drop_table('batches')
    op.drop_table('products')
    op.drop_table('machines')
    op.drop_table('seasons')
    op.drop_table('properties')

"""initial ledger schema

Revision ID: bl001
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the branch ledger schema:
- tenants / branches: tenancy and invoice prefixes
- products: catalogue rows read by the ledger (prices in cents, GST in bps)
- stock_snapshots: materialized on-hand per (branch, product), never negative
- stock_ledger: append-only movement history
- bills / bill_items: checkout records
- serial_units: individually tracked units
- invoice_sequences: per-branch, per-business-day counters
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'bl001'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # tenants / branches
    # ============================================================================
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenants_code', 'tenants', ['code'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_branches_tenant_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_branches_tenant_id', 'branches', ['tenant_id'])

    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='pcs'),
        sa.Column('selling_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('purchase_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('gst_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_tracking_mode', sa.String(length=16), nullable=False, server_default='quantity'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'sku', name='uq_products_tenant_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_tenant_name', 'products', ['tenant_id', 'name'])

    # ============================================================================
    # stock_snapshots: materialized on-hand
    # ============================================================================
    op.create_table(
        'stock_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'product_id', name='uq_stock_snapshots_branch_product'),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_snapshots_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_snapshots_tenant_id', 'stock_snapshots', ['tenant_id'])
    op.create_index('ix_stock_snapshots_branch_id', 'stock_snapshots', ['branch_id'])
    op.create_index('ix_stock_snapshots_product_id', 'stock_snapshots', ['product_id'])

    # ============================================================================
    # stock_ledger: append-only movements
    # ============================================================================
    op.create_table(
        'stock_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('signed_quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('resulting_stock', sa.Integer(), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('resulting_stock = previous_stock + signed_quantity',
                           name='ck_stock_ledger_arithmetic'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_ledger_tenant_id', 'stock_ledger', ['tenant_id'])
    op.create_index('ix_stock_ledger_branch_id', 'stock_ledger', ['branch_id'])
    op.create_index('ix_stock_ledger_product_id', 'stock_ledger', ['product_id'])
    op.create_index('ix_stock_ledger_movement_type', 'stock_ledger', ['movement_type'])
    op.create_index('ix_stock_ledger_reference', 'stock_ledger', ['reference_id'])
    op.create_index('ix_stock_ledger_branch_product_created', 'stock_ledger',
                    ['branch_id', 'product_id', 'created_at'])

    # ============================================================================
    # bills / bill_items
    # ============================================================================
    op.create_table(
        'bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('gst_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('profit_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('due_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payment_mode', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'invoice_number', name='uq_bills_branch_invoice'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bills_tenant_id', 'bills', ['tenant_id'])
    op.create_index('ix_bills_branch_id', 'bills', ['branch_id'])
    op.create_index('ix_bills_branch_created', 'bills', ['branch_id', 'created_at'])

    op.create_table(
        'bill_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('purchase_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('gst_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gst_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('profit_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('serial_numbers', sa.JSON(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_items_bill_id', 'bill_items', ['bill_id'])

    # ============================================================================
    # serial_units
    # ============================================================================
    op.create_table(
        'serial_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'branch_id', 'product_id', 'serial_number',
                            name='uq_serial_units_branch_product_serial'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_serial_units_tenant_id', 'serial_units', ['tenant_id'])
    op.create_index('ix_serial_units_branch_id', 'serial_units', ['branch_id'])
    op.create_index('ix_serial_units_product_id', 'serial_units', ['product_id'])
    op.create_index('ix_serial_units_bill_id', 'serial_units', ['bill_id'])
    op.create_index('ix_serial_units_branch_product_status', 'serial_units',
                    ['branch_id', 'product_id', 'status'])

    # ============================================================================
    # invoice_sequences
    # ============================================================================
    op.create_table(
        'invoice_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'business_date', name='uq_invoice_sequences_branch_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_sequences_branch_id', 'invoice_sequences', ['branch_id'])


def downgrade():
    op.drop_table('invoice_sequences')
    op.drop_table('serial_units')
    op.drop_table('bill_items')
    op.drop_table('bills')
    op.drop_table('stock_ledger')
    op.drop_table('stock_snapshots')
    op.drop_table('products')
    op.drop_table('branches')
    op.drop_table('tenants')

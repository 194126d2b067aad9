"""Initial schema: shops, users, products, stock ledger, sales, transfers, imports

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

This migration creates:
1. shops and users
2. products (unique per shop + sku, stock >= 0) and stock_movements
3. sales and sale_lines
4. transfers
5. import_batches
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SHOPS AND USERS
    # ==========================================================================
    op.create_table('shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('location', sa.String(length=120), nullable=True),
        sa.Column('region', sa.String(length=120), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_shops'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shops', schema=None) as batch_op:
        batch_op.create_index('ix_shops_code', ['code'], unique=True)
        batch_op.create_index('ix_shops_region', ['region'], unique=False)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('must_change_credentials', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint("role IN ('admin', 'manager', 'sales')", name='ck_users_valid_role'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_users_shop_id_shops'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_email', ['email'], unique=True)
        batch_op.create_index('ix_users_shop_id', ['shop_id'], unique=False)

    # ==========================================================================
    # 2. PRODUCTS AND STOCK LEDGER
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=True),
        sa.Column('product_group', sa.String(length=32), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('supplier', sa.String(length=120), nullable=True),
        sa.Column('measurement_unit', sa.String(length=32), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_percent', sa.Float(), nullable=True),
        sa.Column('reorder_point', sa.Integer(), nullable=True),
        sa.Column('preferred_quantity', sa.Integer(), nullable=True),
        sa.Column('warning_quantity', sa.Integer(), nullable=True),
        sa.Column('is_tax_inclusive', sa.Boolean(), nullable=True),
        sa.Column('is_price_change_allowed', sa.Boolean(), nullable=True),
        sa.Column('is_service', sa.Boolean(), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_products_shop_id_shops'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('shop_id', 'sku', name='uq_products_shop_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_shop_id', ['shop_id'], unique=False)
        batch_op.create_index('ix_products_sku_shop', ['sku', 'shop_id'], unique=False)
        batch_op.create_index('ix_products_product_group', ['product_group'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint("type IN ('sale', 'restock', 'adjustment')", name='ck_stock_movements_valid_type'),
        sa.CheckConstraint('quantity <> 0', name='ck_stock_movements_non_zero_quantity'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_movements_product_id_products'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_stock_movements_shop_id_shops'),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], name='fk_stock_movements_actor_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index('ix_stock_movements_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_stock_movements_shop_id', ['shop_id'], unique=False)
        batch_op.create_index('ix_stock_movements_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_product_occurred', ['product_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_shop_type', ['shop_id', 'type'], unique=False)

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('mpesa_code', sa.String(length=32), nullable=True),
        sa.Column('payment_proof_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_sales_shop_id_shops'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_sales_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_sales'),
        sa.UniqueConstraint('mpesa_code', name='uq_sales_mpesa_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_shop_id', ['shop_id'], unique=False)
        batch_op.create_index('ix_sales_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_sales_shop_created', ['shop_id', 'created_at'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], name='fk_sale_lines_sale_id_sales'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_sale_lines_product_id_products'),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id'], name='fk_sale_lines_movement_id_stock_movements'),
        sa.PrimaryKeyConstraint('id', name='pk_sale_lines'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_lines_sale_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index('ix_sale_lines_sale_id', ['sale_id'], unique=False)

    # ==========================================================================
    # 4. TRANSFERS
    # ==========================================================================
    op.create_table('transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('from_shop_id', sa.Integer(), nullable=True),
        sa.Column('to_shop_id', sa.Integer(), nullable=False),
        sa.Column('region', sa.String(length=120), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('requested_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('received_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('payment_proof_url', sa.String(length=512), nullable=True),
        sa.Column('delivery_photo_url', sa.String(length=512), nullable=True),
        sa.Column('expected_arrival', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('payment_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity > 0', name='ck_transfers_positive_quantity'),
        sa.CheckConstraint("type IN ('intra_region', 'inter_region')", name='ck_transfers_valid_type'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_transfers_product_id_products'),
        sa.ForeignKeyConstraint(['from_shop_id'], ['shops.id'], name='fk_transfers_from_shop_id_shops'),
        sa.ForeignKeyConstraint(['to_shop_id'], ['shops.id'], name='fk_transfers_to_shop_id_shops'),
        sa.ForeignKeyConstraint(['requested_by_user_id'], ['users.id'], name='fk_transfers_requested_by_user_id_users'),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id'], name='fk_transfers_approved_by_user_id_users'),
        sa.ForeignKeyConstraint(['received_by_user_id'], ['users.id'], name='fk_transfers_received_by_user_id_users'),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], name='fk_transfers_cancelled_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_transfers'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transfers', schema=None) as batch_op:
        batch_op.create_index('ix_transfers_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_transfers_from_shop_id', ['from_shop_id'], unique=False)
        batch_op.create_index('ix_transfers_to_shop_id', ['to_shop_id'], unique=False)
        batch_op.create_index('ix_transfers_status', ['status'], unique=False)
        batch_op.create_index('ix_transfers_region_status', ['region', 'status'], unique=False)

    # ==========================================================================
    # 5. IMPORT BATCHES
    # ==========================================================================
    op.create_table('import_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('source_format', sa.String(length=16), nullable=False, server_default='csv'),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('total_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('imported_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors_json', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_import_batches_shop_id_shops'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_import_batches_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_import_batches'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('import_batches', schema=None) as batch_op:
        batch_op.create_index('ix_import_batches_shop_id', ['shop_id'], unique=False)
        batch_op.create_index('ix_import_batches_status', ['status'], unique=False)
        batch_op.create_index('ix_import_batches_shop_created', ['shop_id', 'created_at'], unique=False)


def downgrade():
    op.drop_table('import_batches')
    op.drop_table('transfers')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('stock_movements')
    op.drop_table('products')
    op.drop_table('users')
    op.drop_table('shops')

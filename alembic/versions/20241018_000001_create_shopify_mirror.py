"""Create Shopify mirror tables (stores, orders, items, refunds, products, inventory, KPIs)

Revision ID: 20241018_000001
Revises:
Create Date: 2024-10-18 09:00:00.000000

WHAT:
    Creates the tables Sierre writes from OAuth, the REST sync and webhooks:
    - shopify_stores: Encrypted offline token per connected shop
    - sync_status: Per-shop incremental sync checkpoints
    - orders / order_items / refunds: Order facts keyed on Shopify ids
    - products / product_variants: Catalog keyed on Shopify ids
    - inventory_snapshots: Append-only inventory levels
    - kpi_daily: Daily rollup, unique per (shop, date)
    - shopify_webhook_logs: Audit trail of verified webhooks

WHY:
    Child tables carry plain id columns instead of foreign keys because
    webhooks arrive out of order (a refund can land before its order).

REFERENCES:
    - sierre/models.py
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20241018_000001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # CONNECTED SHOPS
    # =========================================================================
    op.create_table(
        'shopify_stores',
        sa.Column('shop', sa.String(), primary_key=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('scope', sa.String(), nullable=True),
        sa.Column('installed_by', sa.String(), nullable=True),
        sa.Column('connected_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'sync_status',
        sa.Column('shop', sa.String(), primary_key=True),
        sa.Column('orders_last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('products_last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('inventory_last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # =========================================================================
    # ORDERS
    # =========================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('subtotal', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('discounts', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('financial_status', sa.String(), nullable=True),
        sa.Column('fulfillment_status', sa.String(), nullable=True),
        sa.Column('customer_id', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_orders_shop', 'orders', ['shop'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('order_id', sa.String(), nullable=False),
        sa.Column('product_id', sa.String(), nullable=True),
        sa.Column('variant_id', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price', sa.Numeric(18, 4), nullable=False, server_default='0'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('order_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_refunds_shop', 'refunds', ['shop'])
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])
    op.create_index('ix_refunds_created_at', 'refunds', ['created_at'])

    # =========================================================================
    # CATALOG & INVENTORY
    # =========================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('product_type', sa.String(), nullable=True),
        sa.Column('vendor', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_products_shop', 'products', ['shop'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('product_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('price', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('inventory_quantity', sa.Integer(), nullable=True),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    op.create_table(
        'inventory_snapshots',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('inventory_item_id', sa.String(), nullable=True),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('available', sa.Integer(), nullable=False),
        sa.Column('captured_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_inventory_snapshots_shop', 'inventory_snapshots', ['shop'])

    # =========================================================================
    # AGGREGATES & AUDIT
    # =========================================================================
    op.create_table(
        'kpi_daily',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('revenue', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('aov', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('refunds', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('ad_spend', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('roas', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('cac', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('shop', 'date', name='uq_kpi_daily_shop_date'),
    )
    op.create_index('ix_kpi_daily_shop', 'kpi_daily', ['shop'])

    op.create_table(
        'shopify_webhook_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=True),
        sa.Column('topic', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_shopify_webhook_logs_shop', 'shopify_webhook_logs', ['shop'])


def downgrade() -> None:
    op.drop_table('shopify_webhook_logs')
    op.drop_table('kpi_daily')
    op.drop_table('inventory_snapshots')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('refunds')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('sync_status')
    op.drop_table('shopify_stores')

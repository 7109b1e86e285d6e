from alembic import op
import sqlalchemy as sa

revision = "20250823142909"
down_revision = None

UTC_NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=240), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('brand', sa.String(length=120), nullable=True),
        sa.Column('model', sa.String(length=120), nullable=True),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), index=True, nullable=True),
        sa.Column('owner_email', sa.String(length=255), index=True, nullable=True),
        sa.Column('shipping_address_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=100), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('receiver_first_name', sa.String(length=50), nullable=False),
        sa.Column('receiver_last_name', sa.String(length=50), nullable=False),
        sa.Column('receiver_phone', sa.String(length=20), nullable=False),
        sa.Column('receiver_dni', sa.String(length=20), nullable=False),
        sa.Column('shipping_address_type', sa.String(length=32), nullable=True),
        sa.Column('shipping_street', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('shipping_number', sa.String(length=32), nullable=True),
        sa.Column('shipping_floor', sa.String(length=32), nullable=True),
        sa.Column('shipping_apartment', sa.String(length=32), nullable=True),
        sa.Column('shipping_tower', sa.String(length=32), nullable=True),
        sa.Column('shipping_between_streets', sa.String(length=255), nullable=True),
        sa.Column('shipping_postal_code', sa.String(length=32), nullable=True),
        sa.Column('shipping_province', sa.String(length=120), nullable=True),
        sa.Column('shipping_city', sa.String(length=120), nullable=True),
        sa.Column('shipping_observations', sa.Text(), nullable=True),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=32), index=True, nullable=False, server_default='pending_payment'),
        sa.Column('payment_method', sa.String(length=20), nullable=False, server_default='bank_transfer'),
        sa.Column('payment_receipt_url', sa.String(length=1024), nullable=True),
        sa.Column('payment_receipt_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('gateway_preference_id', sa.String(length=128), nullable=True),
        sa.Column('gateway_payment_id', sa.String(length=64), nullable=True),
        sa.Column('gateway_status', sa.String(length=32), nullable=True),
        sa.Column('gateway_payment_type', sa.String(length=32), nullable=True),
        sa.Column('payment_submitted_at', sa.DateTime(), nullable=True),
        sa.Column('payment_approved_at', sa.DateTime(), nullable=True),
        sa.Column('shipped_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        sa.Column('shipping_provider', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('expires_at', sa.DateTime(), index=True, nullable=True),
        sa.Column('stock_restored', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('product_name', sa.String(length=240), nullable=False),
        sa.Column('product_image_url', sa.String(length=1024), nullable=True),
        sa.Column('product_brand', sa.String(length=120), nullable=True),
        sa.Column('product_model', sa.String(length=120), nullable=True),
    )

def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')

from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(191), nullable=False),
        sa.Column('email', sa.String(191), nullable=True, unique=True),
        sa.Column('phone', sa.String(50), nullable=True, unique=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='client'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'restaurants',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(191), nullable=False),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('owner_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True)
    )
    op.create_table(
        'dishes',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('restaurant_id', sa.Integer, sa.ForeignKey('restaurants.id'), nullable=False, index=True),
        sa.Column('name', sa.String(191), nullable=False),
        sa.Column('price', sa.Integer, nullable=False),
        sa.Column('available', sa.Boolean, nullable=False, server_default=sa.true())
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('customer_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('customer_name', sa.String(191), nullable=False),
        sa.Column('restaurant_id', sa.Integer, sa.ForeignKey('restaurants.id'), nullable=False, index=True),
        sa.Column('subtotal', sa.Integer, nullable=False),
        sa.Column('service_fee', sa.Integer, nullable=False),
        sa.Column('delivery_fee', sa.Integer, nullable=False),
        sa.Column('discount', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total', sa.Integer, nullable=False),
        sa.Column('delivery_method', sa.String(20), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, index=True),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('estimated_distance_km', sa.Float, nullable=True),
        sa.Column('promo_code', sa.String(50), nullable=True),
        sa.Column('voucher_code', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dish_id', sa.Integer, sa.ForeignKey('dishes.id'), nullable=False),
        sa.Column('name', sa.String(191), nullable=False),
        sa.Column('unit_price', sa.Integer, nullable=False),
        sa.Column('override_price', sa.Integer, nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False)
    )
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False, index=True),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('provider', sa.String(50), nullable=True),
        sa.Column('provider_ref', sa.String(191), nullable=True, index=True),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'delivery_missions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False, unique=True),
        sa.Column('restaurant_id', sa.Integer, sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('courier_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True, index=True),
        sa.Column('restaurant_location', sa.String(255), nullable=False),
        sa.Column('customer_location', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, index=True),
        sa.Column('earning', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False, index=True),
        sa.Column('beneficiary', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('commission', sa.Integer, nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('order_id', 'beneficiary', name='uq_transactions_order_beneficiary')
    )
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('skey', sa.String(191), nullable=False, unique=True),
        sa.Column('svalue', sa.String(191), nullable=False)
    )

def downgrade():
    op.drop_table('settings')
    op.drop_table('transactions')
    op.drop_table('delivery_missions')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('dishes')
    op.drop_table('restaurants')
    op.drop_table('users')

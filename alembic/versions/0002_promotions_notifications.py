from alembic import op
import sqlalchemy as sa

revision = '0002_promotions_notifications'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('data', sa.JSON, nullable=True),
        sa.Column('read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'promo_codes',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('owner_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('points', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'promo_code_usages',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('promo_code_id', sa.Integer, sa.ForeignKey('promo_codes.id'), nullable=False, index=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('used_by_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'discount_vouchers',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('owner_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('shared_to_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('discount_percent', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('used_by_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('used_on_order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    # Carts waiting for a mobile money callback
    op.create_table(
        'staged_checkouts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_ref', sa.String(191), nullable=False, unique=True),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )

def downgrade():
    op.drop_table('staged_checkouts')
    op.drop_table('discount_vouchers')
    op.drop_table('promo_code_usages')
    op.drop_table('promo_codes')
    op.drop_table('notifications')

"""initial schema

Revision ID: 001
Revises:
Create Date: 2025-01-10
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password', sa.String(255), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('invitation_code', sa.String(32), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('wallet_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('commission_earned', MONEY, nullable=False, server_default='0'),
        sa.Column('tasks_completed_at_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tasks_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('credit_score', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('payment_name', sa.String(150), nullable=True),
        sa.Column('crypto_wallet', sa.String(100), nullable=True),
        sa.Column('wallet_address', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('image_path', sa.String(500), nullable=False),
        sa.Column('level1_price', MONEY, nullable=True),
        sa.Column('level2_price', MONEY, nullable=True),
        sa.Column('level3_price', MONEY, nullable=True),
        sa.Column('level4_price', MONEY, nullable=True),
        sa.Column('level5_price', MONEY, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_id', 'products', ['id'])
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table('user_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('assigned_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('amount_earned', MONEY, nullable=False, server_default='0'),
        sa.Column('commission_earned', MONEY, nullable=False, server_default='0'),
        sa.Column('manual_bonus', MONEY, nullable=False, server_default='0'),
        sa.Column('custom_price', MONEY, nullable=True),
        sa.Column('is_manual', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_id', 'assigned_date', name='uq_user_product_day'),
    )
    op.create_index('ix_user_products_id', 'user_products', ['id'])
    op.create_index('ix_user_products_user_id', 'user_products', ['user_id'])
    op.create_index('ix_user_products_assigned_date', 'user_products', ['assigned_date'])

    op.create_table('balance_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('reference_date', sa.Date(), nullable=True),
        sa.Column('details', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_balance_events_id', 'balance_events', ['id'])
    op.create_index('ix_balance_events_user_id', 'balance_events', ['user_id'])
    op.create_index('ix_balance_events_type', 'balance_events', ['type'])
    op.create_index('ix_balance_events_reference_date', 'balance_events', ['reference_date'])

    op.create_table('withdrawals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(100), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('wallet_address', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('request_date', sa.DateTime(), nullable=True),
        sa.Column('processed_date', sa.DateTime(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_withdrawals_id', 'withdrawals', ['id'])
    op.create_index('ix_withdrawals_user_id', 'withdrawals', ['user_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])

    op.create_table('level_settings',
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('daily_task_limit', sa.Integer(), nullable=True),
        sa.Column('total_tasks_required', sa.Integer(), nullable=True),
        sa.Column('min_withdrawal_balance', MONEY, nullable=True),
        sa.Column('max_withdrawal_amount', MONEY, nullable=True),
        sa.PrimaryKeyConstraint('level'),
    )

    op.create_table('commission_rates',
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('rate', sa.Numeric(6, 4), nullable=False),
        sa.PrimaryKeyConstraint('level'),
    )

    op.create_table('vouchers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('title', sa.String(150), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_path', sa.String(500), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vouchers_id', 'vouchers', ['id'])
    op.create_index('ix_vouchers_status', 'vouchers', ['status'])

    op.create_table('popups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(150), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('url', sa.String(500), nullable=True),
        sa.Column('image_path', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_popups_id', 'popups', ['id'])
    op.create_index('ix_popups_user_id', 'popups', ['user_id'])
    op.create_index('ix_popups_status', 'popups', ['status'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(150), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade():
    for table in ('notifications', 'popups', 'vouchers', 'commission_rates', 'level_settings',
                  'withdrawals', 'balance_events', 'user_products', 'products', 'users'):
        op.drop_table(table)

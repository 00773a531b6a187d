"""Initial schema: admin identities, security tables, gift-card ledger, orders, settings

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-15

This migration adds:
1. admin_users and admin_backup_codes (identities, TOTP enrollment, backup codes)
2. rate_limits (failure counters keyed by purpose + hashed subject)
3. audit_logs (append-only, digest per row)
4. gift_cards and gift_card_transactions (stored-value ledger)
5. orders (phone and shipping_address hold sealed envelopes)
6. site_settings (single-row configuration)
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
    # 1. ADMIN IDENTITIES
    # ==========================================================================
    op.create_table('admin_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=254), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='business_processing'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('mfa_secret', sa.String(length=64), nullable=True),
        sa.Column('mfa_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('NOT mfa_enabled OR mfa_secret IS NOT NULL', name='ck_admin_users_mfa_secret_present'),
        sa.CheckConstraint(
            "role IN ('website_admin', 'business_processing', 'customer')",
            name='ck_admin_users_role',
        ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('admin_users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_admin_users_email'), ['email'], unique=True)

    op.create_table('admin_backup_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('code_hash', sa.String(length=128), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['admin_users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('admin_backup_codes', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_admin_backup_codes_user_id'), ['user_id'], unique=False)
        batch_op.create_index('ix_admin_backup_codes_user_unused', ['user_id', 'used_at'], unique=False)

    # ==========================================================================
    # 2. RATE LIMITS
    # ==========================================================================
    op.create_table('rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purpose', sa.String(length=64), nullable=False),
        sa.Column('subject_hash', sa.String(length=64), nullable=False),
        sa.Column('first_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('window_seconds', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purpose', 'subject_hash', name='uq_rate_limits_purpose_subject'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rate_limits', schema=None) as batch_op:
        batch_op.create_index('ix_rate_limits_first_attempt', ['first_attempt_at'], unique=False)

    # ==========================================================================
    # 3. AUDIT LOGS
    # ==========================================================================
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_email', sa.String(length=254), nullable=True),
        sa.Column('resource_type', sa.String(length=64), nullable=True),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('record_digest', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_user_id'), ['user_id'], unique=False)
        batch_op.create_index('ix_audit_logs_created', ['created_at'], unique=False)
        batch_op.create_index('ix_audit_logs_action_created', ['action', 'created_at'], unique=False)
        batch_op.create_index('ix_audit_logs_user_email', ['user_email'], unique=False)

    # ==========================================================================
    # 4. GIFT CARD LEDGER
    # ==========================================================================
    op.create_table('gift_cards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=17), nullable=False),
        sa.Column('initial_balance', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('current_balance', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='GBP'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='purchase'),
        sa.Column('purchaser_email', sa.String(length=254), nullable=True),
        sa.Column('purchaser_name', sa.String(length=100), nullable=True),
        sa.Column('recipient_email', sa.String(length=254), nullable=True),
        sa.Column('recipient_name', sa.String(length=100), nullable=True),
        sa.Column('personal_message', sa.String(length=500), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('created_by', sa.String(length=254), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('current_balance >= 0', name='ck_gift_cards_balance_non_negative'),
        sa.CheckConstraint('current_balance <= initial_balance', name='ck_gift_cards_balance_le_initial'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('gift_cards', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_gift_cards_code'), ['code'], unique=True)
        batch_op.create_index('ix_gift_cards_status', ['status'], unique=False)

    op.create_table('gift_card_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gift_card_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('balance_after', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('performed_by_email', sa.String(length=254), nullable=True),
        sa.Column('performed_by_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['gift_card_id'], ['gift_cards.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('gift_card_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_gift_card_txn_card_id', ['gift_card_id', 'id'], unique=False)

    # ==========================================================================
    # 5. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('customer_email', sa.String(length=254), nullable=True),
        sa.Column('customer_name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('total', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_order_number'), ['order_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_orders_customer_email'), ['customer_email'], unique=False)
        batch_op.create_index('ix_orders_status_created', ['status', 'created_at'], unique=False)

    # ==========================================================================
    # 6. SITE SETTINGS
    # ==========================================================================
    op.create_table('site_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('settings_json', sa.JSON(), nullable=False),
        sa.Column('updated_by', sa.String(length=254), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade():
    op.drop_table('site_settings')

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index('ix_orders_status_created')
        batch_op.drop_index(batch_op.f('ix_orders_customer_email'))
        batch_op.drop_index(batch_op.f('ix_orders_order_number'))
    op.drop_table('orders')

    with op.batch_alter_table('gift_card_transactions', schema=None) as batch_op:
        batch_op.drop_index('ix_gift_card_txn_card_id')
    op.drop_table('gift_card_transactions')

    with op.batch_alter_table('gift_cards', schema=None) as batch_op:
        batch_op.drop_index('ix_gift_cards_status')
        batch_op.drop_index(batch_op.f('ix_gift_cards_code'))
    op.drop_table('gift_cards')

    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.drop_index('ix_audit_logs_user_email')
        batch_op.drop_index('ix_audit_logs_action_created')
        batch_op.drop_index('ix_audit_logs_created')
        batch_op.drop_index(batch_op.f('ix_audit_logs_user_id'))
    op.drop_table('audit_logs')

    with op.batch_alter_table('rate_limits', schema=None) as batch_op:
        batch_op.drop_index('ix_rate_limits_first_attempt')
    op.drop_table('rate_limits')

    with op.batch_alter_table('admin_backup_codes', schema=None) as batch_op:
        batch_op.drop_index('ix_admin_backup_codes_user_unused')
        batch_op.drop_index(batch_op.f('ix_admin_backup_codes_user_id'))
    op.drop_table('admin_backup_codes')

    with op.batch_alter_table('admin_users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_admin_users_email'))
    op.drop_table('admin_users')
